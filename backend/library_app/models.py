"""SQLModel data models.

This module defines the application's database tables using SQLModel.
People and catalog rows use short prefixed string keys (`BD001`,
`TT001`, `S001`, `TL001`); lending records and notifications use
autoincrement integers.
"""

from typing import Optional
from sqlmodel import SQLModel, Field
from datetime import datetime, date, timezone

ROLE_READER = "reader"
ROLE_LIBRARIAN = "librarian"

STATUS_BORROWING = "borrowing"
STATUS_RETURNED = "returned"
STATUS_OVERDUE = "overdue"

NOTIFICATION_OVERDUE = "overdue"
NOTIFICATION_NEW_BORROW = "new_borrow"
NOTIFICATION_GENERAL = "general"
NOTIFICATION_TYPES = (NOTIFICATION_OVERDUE, NOTIFICATION_NEW_BORROW, NOTIFICATION_GENERAL)


class Category(SQLModel, table=True):
    """A book category (genre).

    `book_count` is the number of catalog titles filed under it.
    """
    id: Optional[str] = Field(default=None, primary_key=True, max_length=25)
    name: str = Field(index=True, unique=True)
    book_count: int = 0


class Book(SQLModel, table=True):
    """A catalog title.

    Fields:
    - `quantity`: copies owned by the library
    - `borrowed_count`: copies currently lent out
    - `times_borrowed`: lifetime borrow statistic
    """
    id: Optional[str] = Field(default=None, primary_key=True, max_length=25)
    name: str = Field(index=True)
    author: str
    publisher: str
    publish_year: int
    category_id: str = Field(foreign_key='category.id')
    quantity: int = 0
    borrowed_count: int = 0
    times_borrowed: int = 0
    import_date: date = Field(default_factory=date.today)


class Reader(SQLModel, table=True):
    """A library patron."""
    id: Optional[str] = Field(default=None, primary_key=True, max_length=25)
    name: str
    phone: Optional[str] = None
    address: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None


class Librarian(SQLModel, table=True):
    """A staff member managing the catalog and lending."""
    id: Optional[str] = Field(default=None, primary_key=True, max_length=25)
    name: str
    date_of_birth: Optional[date] = None
    phone: Optional[str] = None
    address: Optional[str] = None


class Account(SQLModel, table=True):
    """Login credentials for a reader or librarian.

    `username` is the person's ID; `password_hash` is a passlib hash
    (never store plaintext).
    """
    username: str = Field(primary_key=True, max_length=25)
    password_hash: str
    role: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class LendingRecord(SQLModel, table=True):
    """One borrow transaction of a single book by a reader."""
    id: Optional[int] = Field(default=None, primary_key=True)
    reader_id: str = Field(foreign_key='reader.id', index=True)
    librarian_id: Optional[str] = Field(default=None, foreign_key='librarian.id')
    book_id: str = Field(foreign_key='book.id', index=True)
    borrow_date: date
    due_date: date
    return_date: Optional[date] = None
    status: str = STATUS_BORROWING


class Notification(SQLModel, table=True):
    """An in-app message for a user, optionally tied to a lending record."""
    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: str = Field(index=True)
    lending_record_id: Optional[int] = Field(default=None, foreign_key='lendingrecord.id')
    message: str
    type: str = NOTIFICATION_GENERAL
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    is_read: bool = False
