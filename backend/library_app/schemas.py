"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

from datetime import date, datetime
from pydantic import BaseModel, Field, field_validator
from typing import List, Optional


def _max_publish_year() -> int:
    return date.today().year + 5


class LoginIn(BaseModel):
    """Payload for the login endpoint. `username` is a reader or librarian id."""
    username: str
    password: str


class UserOut(BaseModel):
    """The authenticated person as seen by clients."""
    id: str
    name: str
    role: str
    date_of_birth: Optional[date] = None


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    token_type: str = "bearer"
    user: UserOut


class BookIn(BaseModel):
    """Request body for creating or updating a catalog title."""
    type: str = Field(min_length=1)
    name: str = Field(min_length=1)
    quantity: int = Field(ge=0)
    author: str = Field(min_length=1)
    publisher: str = Field(min_length=1)
    publish_year: int = Field(ge=1000)
    import_date: Optional[date] = None

    @field_validator('type', 'name', 'author', 'publisher')
    @classmethod
    def _not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('must not be blank')
        return v.strip()

    @field_validator('publish_year')
    @classmethod
    def _not_too_far_ahead(cls, v: int) -> int:
        if v > _max_publish_year():
            raise ValueError('year cannot be too far in the future')
        return v


class BookOut(BaseModel):
    id: str
    type: str
    name: str
    quantity: int
    author: str
    publisher: str
    publish_year: int
    import_date: date
    borrowed_count: int
    times_borrowed: int
    available: int


class ReaderIn(BaseModel):
    """Request body for creating or updating a reader."""
    name: str = Field(min_length=1)
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None

    @field_validator('name')
    @classmethod
    def _name_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError('reader name is required')
        return v.strip()


class ReaderOut(BaseModel):
    id: str
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None


class LibrarianOut(BaseModel):
    id: str
    name: str
    date_of_birth: Optional[date] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class LendingCreate(BaseModel):
    """Borrow request: lend `book_id` to `reader_id`."""
    book_id: str = Field(min_length=1)
    reader_id: str = Field(min_length=1)


class LendingAction(BaseModel):
    """Body of `PUT /lending/records/{id}`; only `return` is supported."""
    action: str


class LendingOut(BaseModel):
    id: int
    book_id: str
    book_name: Optional[str] = None
    reader_id: str
    reader_name: Optional[str] = None
    librarian_id: Optional[str] = None
    borrow_date: date
    due_date: date
    return_date: Optional[date] = None
    status: str


class NotificationIn(BaseModel):
    """Request body for creating a notification."""
    user_id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    type: str = Field(min_length=1)
    skip_duplicate_check: bool = False


class NotificationOut(BaseModel):
    id: int
    user_id: str
    lending_record_id: Optional[int] = None
    message: str
    type: str
    timestamp: datetime
    is_read: bool


class MarkReadIn(BaseModel):
    """Mark one notification (`notification_id`) or all of a user's (`user_id` + `mark_all`)."""
    notification_id: Optional[int] = None
    user_id: Optional[str] = None
    mark_all: bool = False


class OverdueScanOut(BaseModel):
    checked: int
    created: int
    notification_ids: List[int] = []
