"""Authentication helpers and FastAPI security dependencies.

This module provides utilities to decode JWT tokens, a FastAPI
dependency `get_current_user` that validates the bearer token and
returns the corresponding reader or librarian, and `require_librarian`
for staff-only routes.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from .services import JWT_SECRET, JWT_ALGORITHM, AuthService
from sqlmodel import Session
from .database import get_session
from .models import ROLE_LIBRARIAN
from .schemas import UserOut

bearer_scheme = HTTPBearer()

def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        payload = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
        return payload
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_user(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
                     db: Session = Depends(get_session)) -> UserOut:
    """FastAPI dependency that returns the authenticated user.

    The function extracts the bearer token from the request, decodes it
    and looks up the reader or librarian it names. It raises an
    HTTPException(401) for any authentication issue.
    """
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    role = payload.get('role')
    if not user_id or not role:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = AuthService(db).get_user(user_id, role)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return UserOut(**user)


def require_librarian(user: UserOut = Depends(get_current_user)) -> UserOut:
    """Dependency that only lets librarians through (403 for readers)."""
    if user.role != ROLE_LIBRARIAN:
        raise HTTPException(status_code=403, detail='librarian access required')
    return user
