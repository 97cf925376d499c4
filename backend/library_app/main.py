"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the library backend.
Controllers are intentionally thin: they accept requests, check the
caller's role, delegate to services, and return JSON responses.

Endpoints implemented:
- POST /auth/login, GET /auth/me
- GET/POST /books, GET/PUT/DELETE /books/{id}
- GET/POST /readers, GET/PUT/DELETE /readers/{id}
- GET /librarians, GET /librarians/{id}
- GET/POST /lending/records, GET/PUT /lending/records/{id}
- PUT /lending/records/{id}/return
- GET/POST /notifications, PUT /notifications/mark-read
- POST /notifications/overdue-scan

Run locally from `backend/` with `uvicorn library_app.main:app --reload`.
"""

from fastapi import FastAPI, Depends, HTTPException, Request
from fastapi.responses import HTMLResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
from typing import List, Optional
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session
from . import services, models
from .auth import get_current_user, require_librarian
from .schemas import (
    BookIn, BookOut, LendingAction, LendingCreate, LendingOut, LibrarianOut, LoginIn,
    MarkReadIn, NotificationIn, NotificationOut, OverdueScanOut, ReaderIn, ReaderOut,
    TokenOut, UserOut,
)
from .config import settings

app = FastAPI(title="Library Management API")
logger = logging.getLogger("library.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

_LOGGED_METHODS = {"POST", "PUT", "DELETE"}

# Wide-open CORS keeps a locally served front-end working without extra config in dev.
if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.method in _LOGGED_METHODS:
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


def _raise_http(exc: ValueError):
    """Translate a service error into the matching HTTPException."""
    if isinstance(exc, services.NotFoundError):
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    if isinstance(exc, services.ConflictError):
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    if isinstance(exc, services.BorrowLimitError):
        raise HTTPException(status_code=400, detail={'message': str(exc), 'error_code': exc.error_code}) from exc
    raise HTTPException(status_code=400, detail=str(exc)) from exc


def _ensure_self_or_librarian(user: UserOut, owner_id: str):
    if user.role != models.ROLE_LIBRARIAN and user.id != owner_id:
        raise HTTPException(status_code=403, detail='not allowed to access another user\'s data')


# --- auth ---

@app.post('/auth/login', response_model=TokenOut)
def login(payload: LoginIn, db: Session = Depends(get_session)):
    """Authenticate a reader or librarian and return a JWT token.

    The username is the person's ID; the initial password is their date
    of birth as `DDMMYYYY`.
    """
    result = services.AuthService(db).authenticate(payload.username, payload.password)
    if not result:
        logger.warning("login failed for %s", payload.username)
        raise HTTPException(status_code=401, detail='invalid credentials')
    return result


@app.get('/auth/me', response_model=UserOut)
def me(user: UserOut = Depends(get_current_user)):
    """Return the authenticated user."""
    return user


# --- books ---

@app.get('/books', response_model=List[BookOut])
def list_books(q: Optional[str] = None, db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    """List the catalog, optionally filtered by `q` (title, author, publisher or category)."""
    svc = services.CatalogService(db)
    return [svc.to_dict(b) for b in svc.list_books(q)]


@app.get('/books/{book_id}', response_model=BookOut)
def get_book(book_id: str, db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    svc = services.CatalogService(db)
    try:
        return svc.to_dict(svc.get_book(book_id))
    except ValueError as e:
        _raise_http(e)


@app.post('/books', response_model=BookOut, status_code=201)
def add_book(payload: BookIn, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    """Add a title to the catalog. The category named by `type` is created on first use."""
    svc = services.CatalogService(db)
    try:
        book = svc.add_book(payload.model_dump())
    except ValueError as e:
        _raise_http(e)
    return svc.to_dict(book)


@app.put('/books/{book_id}', response_model=BookOut)
def update_book(book_id: str, payload: BookIn, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    svc = services.CatalogService(db)
    try:
        book = svc.update_book(book_id, payload.model_dump())
    except ValueError as e:
        _raise_http(e)
    return svc.to_dict(book)


@app.delete('/books/{book_id}')
def delete_book(book_id: str, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    """Delete a book. Books with copies still on loan are rejected with 409."""
    try:
        services.CatalogService(db).delete_book(book_id)
    except ValueError as e:
        _raise_http(e)
    return {'message': 'Book deleted successfully'}


# --- readers ---

@app.get('/readers', response_model=List[ReaderOut])
def list_readers(db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    return services.ReaderService(db).list_readers()


@app.get('/readers/{reader_id}', response_model=ReaderOut)
def get_reader(reader_id: str, db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    """Return one reader. Readers may only look themselves up."""
    _ensure_self_or_librarian(user, reader_id)
    try:
        return services.ReaderService(db).get_reader(reader_id)
    except ValueError as e:
        _raise_http(e)


@app.post('/readers', response_model=ReaderOut, status_code=201)
def create_reader(payload: ReaderIn, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    """Register a reader with the next `BD###` id.

    When a date of birth is supplied the reader can log in with it.
    """
    try:
        return services.ReaderService(db).create_reader(payload.model_dump())
    except ValueError as e:
        _raise_http(e)


@app.put('/readers/{reader_id}', response_model=ReaderOut)
def update_reader(reader_id: str, payload: ReaderIn, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    try:
        return services.ReaderService(db).update_reader(reader_id, payload.model_dump())
    except ValueError as e:
        _raise_http(e)


@app.delete('/readers/{reader_id}')
def delete_reader(reader_id: str, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    try:
        services.ReaderService(db).delete_reader(reader_id)
    except ValueError as e:
        _raise_http(e)
    return {'success': True}


# --- librarians ---

@app.get('/librarians', response_model=List[LibrarianOut])
def list_librarians(db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    return services.LibrarianService(db).list_librarians()


@app.get('/librarians/{librarian_id}', response_model=LibrarianOut)
def get_librarian(librarian_id: str, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    try:
        return services.LibrarianService(db).get_librarian(librarian_id)
    except ValueError as e:
        _raise_http(e)


# --- lending ---

@app.get('/lending/records', response_model=List[LendingOut])
def list_lending_records(reader_id: Optional[str] = None, db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    """List lending records, newest first.

    Librarians see everything (optionally filtered by `reader_id`);
    readers always get their own records.
    """
    if user.role == models.ROLE_READER:
        reader_id = user.id
    svc = services.LendingService(db)
    return [svc.to_dict(r) for r in svc.list_records(reader_id)]


@app.post('/lending/records', response_model=LendingOut, status_code=201)
def borrow_book(payload: LendingCreate, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    """Lend a book to a reader.

    Rejected when no copy is available or the reader already holds the
    maximum number of books (`error_code` = `BORROW_LIMIT_REACHED`).
    """
    svc = services.LendingService(db)
    try:
        record = svc.borrow(payload.book_id, payload.reader_id, librarian_id=user.id)
    except ValueError as e:
        _raise_http(e)
    return svc.to_dict(record)


@app.get('/lending/records/{record_id}', response_model=LendingOut)
def get_lending_record(record_id: int, db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    svc = services.LendingService(db)
    try:
        record = svc.get_record(record_id)
    except ValueError as e:
        _raise_http(e)
    _ensure_self_or_librarian(user, record.reader_id)
    return svc.to_dict(record)


@app.put('/lending/records/{record_id}', response_model=LendingOut)
def update_lending_record(record_id: int, payload: LendingAction, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    """Apply an action to a record. Only `{"action": "return"}` is supported."""
    if payload.action != 'return':
        raise HTTPException(status_code=400, detail='Invalid action. Only "return" is supported.')
    return return_book(record_id, db, user)


@app.put('/lending/records/{record_id}/return', response_model=LendingOut)
def return_book(record_id: int, db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    """Mark the book of a lending record as returned."""
    svc = services.LendingService(db)
    try:
        record = svc.return_book(record_id)
    except ValueError as e:
        _raise_http(e)
    return svc.to_dict(record)


# --- notifications ---

@app.get('/notifications', response_model=List[NotificationOut])
def list_notifications(user_id: Optional[str] = None, unread_only: bool = False,
                       db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    """List notifications for `user_id` (default: the caller), newest first."""
    target = user_id or user.id
    _ensure_self_or_librarian(user, target)
    svc = services.NotificationService(db)
    return [svc.to_dict(n) for n in svc.list_for_user(target, unread_only=unread_only)]


@app.post('/notifications', response_model=NotificationOut, status_code=201)
def create_notification(payload: NotificationIn, response: Response,
                        db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    """Create a notification.

    An unread notification with the same type and message for the same
    user is returned (status 200) instead of creating a duplicate, unless
    `skip_duplicate_check` is set.
    """
    _ensure_self_or_librarian(user, payload.user_id)
    svc = services.NotificationService(db)
    n, created = svc.create(payload.user_id, payload.message, payload.type,
                            skip_duplicate_check=payload.skip_duplicate_check)
    if not created:
        response.status_code = 200
    return svc.to_dict(n)


@app.put('/notifications/mark-read')
def mark_notifications_read(payload: MarkReadIn, db: Session = Depends(get_session), user: UserOut = Depends(get_current_user)):
    """Mark one notification, or all notifications of a user, as read."""
    svc = services.NotificationService(db)
    if payload.notification_id is not None:
        try:
            n = svc.get(payload.notification_id)
        except ValueError as e:
            _raise_http(e)
        _ensure_self_or_librarian(user, n.user_id)
        return svc.to_dict(svc.mark_read(n.id))
    if payload.user_id and payload.mark_all:
        _ensure_self_or_librarian(user, payload.user_id)
        return [svc.to_dict(n) for n in svc.mark_all_read(payload.user_id)]
    raise HTTPException(status_code=400, detail='Invalid request. Provide either notification_id or both user_id and mark_all=true')


@app.post('/notifications/overdue-scan', response_model=OverdueScanOut)
def overdue_scan(db: Session = Depends(get_session), user: UserOut = Depends(require_librarian)):
    """Create overdue reminders for every loan past its due date."""
    return services.NotificationService(db).notify_overdue()


@app.get("/", response_class=HTMLResponse)
def home():
    """Minimal homepage for quick manual testing."""
    return """
    <!DOCTYPE html>
    <html>
    <head>
      <meta charset="UTF-8" />
      <title>Library API</title>
      <style>
        body { font-family: Arial, sans-serif; margin: 32px; }
        a { color: #0a6; }
        .card { max-width: 640px; padding: 16px; border: 1px solid #ddd; border-radius: 8px; }
      </style>
    </head>
    <body>
      <div class="card">
        <h1>Library Management API</h1>
        <p>Quick links for local testing:</p>
        <ul>
          <li><a href="/docs">Swagger UI</a></li>
          <li><a href="/health">Health check</a></li>
        </ul>
        <p>Use <code>/auth/login</code> with a reader or librarian id and their birth date (<code>DDMMYYYY</code>) to get a token, then try <code>/books</code> or <code>/lending/records</code>.</p>
      </div>
    </body>
    </html>
    """


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
