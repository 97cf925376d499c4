"""Repository classes encapsulating database operations.

Each repository is small and focused on a single table (categories,
books, readers, librarians, accounts, lending records, notifications).
Repositories return SQLModel objects. Single-row writes commit by
default; pass `commit=False` to stage the change inside a larger
transaction that the calling service commits.
"""

from datetime import date
from typing import List, Optional, Type
from sqlmodel import Session, SQLModel, select, or_
from sqlalchemy import func
from . import models


def next_prefixed_id(session: Session, model: Type[SQLModel], prefix: str, width: int = 3) -> str:
    """Return the next free `<prefix><number>` key for `model`.

    Existing keys such as `BD007` are scanned numerically so `BD1000`
    sorts after `BD999`. The number is zero-padded to `width` digits.
    """
    stmt = select(model.id).where(model.id.like(f"{prefix}%"))
    highest = 0
    for key in session.exec(stmt).all():
        suffix = key[len(prefix):]
        if suffix.isdigit():
            highest = max(highest, int(suffix))
    return f"{prefix}{highest + 1:0{width}d}"


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def _save(self, obj, commit: bool = True):
        self.session.add(obj)
        if commit:
            self.session.commit()
            self.session.refresh(obj)
        else:
            self.session.flush()
        return obj


class CategoryRepository(_Repository):
    """Lookups and counters for `Category` rows."""
    PREFIX = "TL"

    def get(self, category_id: str) -> Optional[models.Category]:
        return self.session.get(models.Category, category_id)

    def get_by_name(self, name: str) -> Optional[models.Category]:
        stmt = select(models.Category).where(models.Category.name == name)
        return self.session.exec(stmt).first()

    def list(self) -> List[models.Category]:
        return self.session.exec(select(models.Category).order_by(models.Category.id)).all()

    def get_or_create(self, name: str, commit: bool = True) -> models.Category:
        """Return the category called `name`, creating it with the next `TL` id if needed."""
        existing = self.get_by_name(name)
        if existing:
            return existing
        category = models.Category(id=next_prefixed_id(self.session, models.Category, self.PREFIX), name=name)
        return self._save(category, commit=commit)

    def adjust_count(self, category_id: str, delta: int, commit: bool = True):
        category = self.get(category_id)
        if category is None:
            return None
        category.book_count = max(0, category.book_count + delta)
        return self._save(category, commit=commit)


class BookRepository(_Repository):
    """CRUD operations for `Book` objects."""
    PREFIX = "S"

    def get(self, book_id: str) -> Optional[models.Book]:
        return self.session.get(models.Book, book_id)

    def list(self, search: Optional[str] = None) -> List[models.Book]:
        """Return all books, optionally filtered by a case-insensitive substring.

        The search term is matched against title, author, publisher and
        category name.
        """
        stmt = select(models.Book).join(models.Category, models.Book.category_id == models.Category.id)
        if search:
            term = search.strip().lower()
            stmt = stmt.where(or_(
                func.lower(models.Book.name).contains(term, autoescape=True),
                func.lower(models.Book.author).contains(term, autoescape=True),
                func.lower(models.Book.publisher).contains(term, autoescape=True),
                func.lower(models.Category.name).contains(term, autoescape=True),
            ))
        return self.session.exec(stmt.order_by(models.Book.id)).all()

    def create(self, book: models.Book, commit: bool = True) -> models.Book:
        """Persist a new book, assigning the next `S` id when none is set."""
        if not book.id:
            book.id = next_prefixed_id(self.session, models.Book, self.PREFIX)
        return self._save(book, commit=commit)

    def update(self, book: models.Book, commit: bool = True) -> models.Book:
        return self._save(book, commit=commit)

    def delete(self, book: models.Book, commit: bool = True):
        self.session.delete(book)
        if commit:
            self.session.commit()
        else:
            self.session.flush()

    def count_active_loans(self, book_id: str) -> int:
        stmt = select(func.count()).select_from(models.LendingRecord).where(
            models.LendingRecord.book_id == book_id,
            models.LendingRecord.return_date.is_(None)
        )
        return self.session.exec(stmt).one()


class ReaderRepository(_Repository):
    """CRUD operations for `Reader` objects."""
    PREFIX = "BD"

    def get(self, reader_id: str) -> Optional[models.Reader]:
        return self.session.get(models.Reader, reader_id)

    def list(self) -> List[models.Reader]:
        return self.session.exec(select(models.Reader).order_by(models.Reader.id)).all()

    def create(self, reader: models.Reader, commit: bool = True) -> models.Reader:
        """Persist a new reader, assigning the next `BD` id when none is set."""
        if not reader.id:
            reader.id = next_prefixed_id(self.session, models.Reader, self.PREFIX)
        return self._save(reader, commit=commit)

    def update(self, reader: models.Reader, commit: bool = True) -> models.Reader:
        return self._save(reader, commit=commit)

    def delete(self, reader: models.Reader, commit: bool = True):
        self.session.delete(reader)
        if commit:
            self.session.commit()
        else:
            self.session.flush()

    def count_active_loans(self, reader_id: str) -> int:
        stmt = select(func.count()).select_from(models.LendingRecord).where(
            models.LendingRecord.reader_id == reader_id,
            models.LendingRecord.return_date.is_(None)
        )
        return self.session.exec(stmt).one()


class LibrarianRepository(_Repository):
    """Read operations (plus seeding) for `Librarian` objects."""
    PREFIX = "TT"

    def get(self, librarian_id: str) -> Optional[models.Librarian]:
        return self.session.get(models.Librarian, librarian_id)

    def list(self) -> List[models.Librarian]:
        return self.session.exec(select(models.Librarian).order_by(models.Librarian.id)).all()

    def first(self) -> Optional[models.Librarian]:
        return self.session.exec(select(models.Librarian).order_by(models.Librarian.id)).first()

    def create(self, librarian: models.Librarian, commit: bool = True) -> models.Librarian:
        if not librarian.id:
            librarian.id = next_prefixed_id(self.session, models.Librarian, self.PREFIX)
        return self._save(librarian, commit=commit)


class AccountRepository(_Repository):
    """Credential rows keyed by reader/librarian id."""

    def get(self, username: str) -> Optional[models.Account]:
        return self.session.get(models.Account, username)

    def save(self, account: models.Account, commit: bool = True) -> models.Account:
        return self._save(account, commit=commit)

    def delete(self, username: str, commit: bool = True):
        account = self.get(username)
        if account is not None:
            self.session.delete(account)
        if commit:
            self.session.commit()
        else:
            self.session.flush()


class LendingRepository(_Repository):
    """Persist and query `LendingRecord` rows."""

    def get(self, record_id: int) -> Optional[models.LendingRecord]:
        return self.session.get(models.LendingRecord, record_id)

    def list(self, reader_id: Optional[str] = None) -> List[models.LendingRecord]:
        """Return records newest first, optionally limited to one reader."""
        stmt = select(models.LendingRecord)
        if reader_id:
            stmt = stmt.where(models.LendingRecord.reader_id == reader_id)
        stmt = stmt.order_by(models.LendingRecord.borrow_date.desc(), models.LendingRecord.id.desc())
        return self.session.exec(stmt).all()

    def create(self, record: models.LendingRecord, commit: bool = True) -> models.LendingRecord:
        return self._save(record, commit=commit)

    def update(self, record: models.LendingRecord, commit: bool = True) -> models.LendingRecord:
        return self._save(record, commit=commit)

    def count_active_for_reader(self, reader_id: str) -> int:
        stmt = select(func.count()).select_from(models.LendingRecord).where(
            models.LendingRecord.reader_id == reader_id,
            models.LendingRecord.return_date.is_(None)
        )
        return self.session.exec(stmt).one()

    def delete_closed(self, reader_id: Optional[str] = None, book_id: Optional[str] = None, commit: bool = True) -> int:
        """Delete returned records of a reader or book together with their notifications.

        Used before removing the reader or book itself so no row keeps
        a dangling foreign key.
        """
        stmt = select(models.LendingRecord).where(models.LendingRecord.return_date.is_not(None))
        if reader_id:
            stmt = stmt.where(models.LendingRecord.reader_id == reader_id)
        if book_id:
            stmt = stmt.where(models.LendingRecord.book_id == book_id)
        records = self.session.exec(stmt).all()
        for record in records:
            linked = select(models.Notification).where(models.Notification.lending_record_id == record.id)
            for n in self.session.exec(linked).all():
                self.session.delete(n)
            self.session.flush()
            self.session.delete(record)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
        return len(records)

    def list_overdue(self, today: date) -> List[models.LendingRecord]:
        """Return unreturned records whose due date is before `today`."""
        stmt = select(models.LendingRecord).where(
            models.LendingRecord.return_date.is_(None),
            models.LendingRecord.due_date < today
        ).order_by(models.LendingRecord.due_date, models.LendingRecord.id)
        return self.session.exec(stmt).all()


class NotificationRepository(_Repository):
    """Persist and query `Notification` rows."""

    def get(self, notification_id: int) -> Optional[models.Notification]:
        return self.session.get(models.Notification, notification_id)

    def create(self, notification: models.Notification, commit: bool = True) -> models.Notification:
        return self._save(notification, commit=commit)

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[models.Notification]:
        stmt = select(models.Notification).where(models.Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(models.Notification.is_read == False)  # noqa: E712
        stmt = stmt.order_by(models.Notification.created_at.desc(), models.Notification.id.desc())
        return self.session.exec(stmt).all()

    def find_unread_duplicate(self, user_id: str, type_: str, message: Optional[str] = None,
                              lending_record_id: Optional[int] = None) -> Optional[models.Notification]:
        """Return an unread notification matching the given user/type and message or record."""
        stmt = select(models.Notification).where(
            models.Notification.user_id == user_id,
            models.Notification.type == type_,
            models.Notification.is_read == False  # noqa: E712
        )
        if message is not None:
            stmt = stmt.where(models.Notification.message == message)
        if lending_record_id is not None:
            stmt = stmt.where(models.Notification.lending_record_id == lending_record_id)
        return self.session.exec(stmt).first()

    def mark_read(self, notification: models.Notification) -> models.Notification:
        notification.is_read = True
        return self._save(notification)

    def mark_all_read(self, user_id: str) -> int:
        """Mark every unread notification of `user_id` as read; return how many changed."""
        unread = self.list_for_user(user_id, unread_only=True)
        for n in unread:
            n.is_read = True
            self.session.add(n)
        self.session.commit()
        return len(unread)

    def delete_for_user(self, user_id: str, commit: bool = True):
        for n in self.list_for_user(user_id):
            self.session.delete(n)
        if commit:
            self.session.commit()
        else:
            self.session.flush()
