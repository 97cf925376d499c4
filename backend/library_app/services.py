"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the lending rules. Services are intentionally thin: they perform
validation, execute domain logic and persist rows via repositories.
Multi-step writes (adding a book with a new category, borrowing,
returning) run inside a single session transaction and roll back on
any error.

Services signal rejected operations with the `ValueError` subclasses
below; controllers map them to HTTP status codes.
"""

import logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional, Tuple
from passlib.context import CryptContext
import jwt
from sqlmodel import Session
from . import models, repositories
from .config import settings
from .utils.dates import compute_due_date, format_dob_password, is_overdue

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
JWT_SECRET = settings.JWT_SECRET
JWT_ALGORITHM = settings.JWT_ALGORITHM
JWT_EXPIRE_HOURS = settings.JWT_EXPIRE_HOURS

lending_logger = logging.getLogger("library.lending")
notification_logger = logging.getLogger("library.notifications")


class NotFoundError(ValueError):
    """The requested row does not exist."""


class ConflictError(ValueError):
    """The operation conflicts with existing state (e.g. active loans)."""


class UnavailableError(ValueError):
    """No copy of the requested book is left to lend."""


class AlreadyReturnedError(ValueError):
    """The lending record was already closed."""


class BorrowLimitError(ValueError):
    """The reader already holds the maximum number of books."""
    error_code = "BORROW_LIMIT_REACHED"


class AuthService:
    """Account provisioning and credential checks."""
    def __init__(self, session: Session):
        self.session = session
        self.account_repo = repositories.AccountRepository(session)
        self.reader_repo = repositories.ReaderRepository(session)
        self.librarian_repo = repositories.LibrarianRepository(session)

    def provision_account(self, person_id: str, role: str, date_of_birth: Optional[date], commit: bool = True) -> Optional[models.Account]:
        """Create or reset the account for a reader/librarian.

        The password is the date of birth as `DDMMYYYY`. People without a
        recorded date of birth get no account.
        """
        if date_of_birth is None:
            self.account_repo.delete(person_id, commit=commit)
            return None
        hashed = PWD_CTX.hash(format_dob_password(date_of_birth))
        account = self.account_repo.get(person_id)
        if account is None:
            account = models.Account(username=person_id, password_hash=hashed, role=role)
        else:
            account.password_hash = hashed
            account.role = role
        return self.account_repo.save(account, commit=commit)

    def _load_person(self, user_id: str, role: str):
        if role == models.ROLE_READER:
            return self.reader_repo.get(user_id)
        if role == models.ROLE_LIBRARIAN:
            return self.librarian_repo.get(user_id)
        return None

    def get_user(self, user_id: str, role: str) -> Optional[dict]:
        """Return the public user dict for `user_id` or `None` if the person is gone."""
        person = self._load_person(user_id, role)
        if person is None:
            return None
        return {'id': person.id, 'name': person.name, 'role': role, 'date_of_birth': person.date_of_birth}

    def issue_token(self, user_id: str, role: str) -> str:
        expire = datetime.now(timezone.utc) + timedelta(hours=JWT_EXPIRE_HOURS)
        payload = {"user_id": user_id, "role": role, "exp": int(expire.timestamp())}
        return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)

    def authenticate(self, username: str, password: str) -> Optional[dict]:
        """Verify credentials and return `{access_token, user}` on success.

        Reader accounts are tried before librarian accounts. Returns `None`
        if authentication fails.
        """
        account = self.account_repo.get(username)
        if not account:
            return None
        for role in (models.ROLE_READER, models.ROLE_LIBRARIAN):
            if account.role != role:
                continue
            user = self.get_user(username, role)
            if user and PWD_CTX.verify(password, account.password_hash):
                return {'access_token': self.issue_token(username, role), 'user': user}
        return None


class CatalogService:
    """Manage catalog titles and their categories."""
    def __init__(self, session: Session):
        self.session = session
        self.book_repo = repositories.BookRepository(session)
        self.category_repo = repositories.CategoryRepository(session)

    def to_dict(self, book: models.Book) -> dict:
        category = self.category_repo.get(book.category_id)
        return {
            'id': book.id,
            'type': category.name if category else None,
            'name': book.name,
            'quantity': book.quantity,
            'author': book.author,
            'publisher': book.publisher,
            'publish_year': book.publish_year,
            'import_date': book.import_date,
            'borrowed_count': book.borrowed_count,
            'times_borrowed': book.times_borrowed,
            'available': max(0, book.quantity - book.borrowed_count),
        }

    def list_books(self, search: Optional[str] = None) -> List[models.Book]:
        return self.book_repo.list(search)

    def get_book(self, book_id: str) -> models.Book:
        book = self.book_repo.get(book_id)
        if not book:
            raise NotFoundError("Book not found")
        return book

    def add_book(self, data: dict) -> models.Book:
        """Create a book, creating its category on first use.

        `data` carries the `BookIn` fields; `type` is the category name.
        """
        try:
            category = self.category_repo.get_or_create(data['type'], commit=False)
            self.category_repo.adjust_count(category.id, 1, commit=False)
            book = models.Book(
                name=data['name'],
                author=data['author'],
                publisher=data['publisher'],
                publish_year=data['publish_year'],
                quantity=data['quantity'],
                category_id=category.id,
                import_date=data.get('import_date') or date.today(),
            )
            self.book_repo.create(book, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(book)
        return book

    def update_book(self, book_id: str, data: dict) -> models.Book:
        """Update a book; moving it to another category adjusts both counters."""
        book = self.get_book(book_id)
        if data['quantity'] < book.borrowed_count:
            raise ValueError(f"quantity cannot be lower than the {book.borrowed_count} copies currently borrowed")
        try:
            category = self.category_repo.get_or_create(data['type'], commit=False)
            if category.id != book.category_id:
                self.category_repo.adjust_count(book.category_id, -1, commit=False)
                self.category_repo.adjust_count(category.id, 1, commit=False)
                book.category_id = category.id
            book.name = data['name']
            book.author = data['author']
            book.publisher = data['publisher']
            book.publish_year = data['publish_year']
            book.quantity = data['quantity']
            if data.get('import_date'):
                book.import_date = data['import_date']
            self.book_repo.update(book, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(book)
        return book

    def delete_book(self, book_id: str):
        """Delete a book unless copies of it are still on loan."""
        book = self.get_book(book_id)
        if self.book_repo.count_active_loans(book_id) > 0:
            raise ConflictError("Cannot delete a book that is currently borrowed")
        try:
            repositories.LendingRepository(self.session).delete_closed(book_id=book_id, commit=False)
            self.category_repo.adjust_count(book.category_id, -1, commit=False)
            self.book_repo.delete(book, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


class ReaderService:
    """Reader CRUD plus account provisioning."""
    def __init__(self, session: Session):
        self.session = session
        self.reader_repo = repositories.ReaderRepository(session)
        self.auth = AuthService(session)

    def list_readers(self) -> List[models.Reader]:
        return self.reader_repo.list()

    def get_reader(self, reader_id: str) -> models.Reader:
        reader = self.reader_repo.get(reader_id)
        if not reader:
            raise NotFoundError("Reader not found")
        return reader

    def create_reader(self, data: dict) -> models.Reader:
        """Create a reader with the next `BD` id and, given a birth date, an account."""
        try:
            reader = models.Reader(**data)
            self.reader_repo.create(reader, commit=False)
            self.auth.provision_account(reader.id, models.ROLE_READER, reader.date_of_birth, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(reader)
        return reader

    def update_reader(self, reader_id: str, data: dict) -> models.Reader:
        reader = self.get_reader(reader_id)
        dob_changed = data.get('date_of_birth') != reader.date_of_birth
        try:
            for key, value in data.items():
                setattr(reader, key, value)
            self.reader_repo.update(reader, commit=False)
            if dob_changed:
                self.auth.provision_account(reader.id, models.ROLE_READER, reader.date_of_birth, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(reader)
        return reader

    def delete_reader(self, reader_id: str):
        """Delete a reader, their account, notifications and closed loans."""
        reader = self.get_reader(reader_id)
        if self.reader_repo.count_active_loans(reader_id) > 0:
            raise ConflictError("Cannot delete reader with active borrowings")
        try:
            repositories.NotificationRepository(self.session).delete_for_user(reader_id, commit=False)
            repositories.LendingRepository(self.session).delete_closed(reader_id=reader_id, commit=False)
            self.auth.account_repo.delete(reader_id, commit=False)
            self.reader_repo.delete(reader, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise


class LibrarianService:
    """Read access to librarians; creation is used by seeding and tests."""
    def __init__(self, session: Session):
        self.session = session
        self.librarian_repo = repositories.LibrarianRepository(session)
        self.auth = AuthService(session)

    def list_librarians(self) -> List[models.Librarian]:
        return self.librarian_repo.list()

    def get_librarian(self, librarian_id: str) -> models.Librarian:
        librarian = self.librarian_repo.get(librarian_id)
        if not librarian:
            raise NotFoundError("Librarian not found")
        return librarian

    def create_librarian(self, data: dict) -> models.Librarian:
        try:
            librarian = models.Librarian(**data)
            self.librarian_repo.create(librarian, commit=False)
            self.auth.provision_account(librarian.id, models.ROLE_LIBRARIAN, librarian.date_of_birth, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(librarian)
        return librarian


class NotificationService:
    """Create, list and acknowledge notifications, including overdue reminders."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.NotificationRepository(session)

    @staticmethod
    def to_dict(n: models.Notification) -> dict:
        return {
            'id': n.id,
            'user_id': n.user_id,
            'lending_record_id': n.lending_record_id,
            'message': n.message,
            'type': n.type,
            'timestamp': n.created_at,
            'is_read': n.is_read,
        }

    def create(self, user_id: str, message: str, type_: str, skip_duplicate_check: bool = False,
               lending_record_id: Optional[int] = None, commit: bool = True) -> Tuple[models.Notification, bool]:
        """Create a notification unless an identical unread one exists.

        Unknown types are stored as `general`. Returns the notification and
        whether it was newly created.
        """
        if type_ not in models.NOTIFICATION_TYPES:
            notification_logger.warning("unknown notification type %r, storing as general", type_)
            type_ = models.NOTIFICATION_GENERAL
        if not skip_duplicate_check:
            existing = self.repo.find_unread_duplicate(user_id, type_, message=message)
            if existing:
                return existing, False
        n = models.Notification(user_id=user_id, message=message, type=type_, lending_record_id=lending_record_id)
        return self.repo.create(n, commit=commit), True

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[models.Notification]:
        return self.repo.list_for_user(user_id, unread_only=unread_only)

    def get(self, notification_id: int) -> models.Notification:
        n = self.repo.get(notification_id)
        if not n:
            raise NotFoundError("Notification not found")
        return n

    def mark_read(self, notification_id: int) -> models.Notification:
        return self.repo.mark_read(self.get(notification_id))

    def mark_all_read(self, user_id: str) -> List[models.Notification]:
        self.repo.mark_all_read(user_id)
        return self.repo.list_for_user(user_id)

    def notify_overdue(self, today: Optional[date] = None) -> dict:
        """Create one unread `overdue` reminder per overdue loan.

        A loan that already has an unread overdue reminder is skipped, so
        repeated scans do not pile up duplicates.
        """
        today = today or date.today()
        lending_repo = repositories.LendingRepository(self.session)
        book_repo = repositories.BookRepository(self.session)
        overdue = lending_repo.list_overdue(today)
        created = []
        for record in overdue:
            if self.repo.find_unread_duplicate(record.reader_id, models.NOTIFICATION_OVERDUE, lending_record_id=record.id):
                continue
            book = book_repo.get(record.book_id)
            title = book.name if book else record.book_id
            days = (today - record.due_date).days
            message = f"'{title}' was due on {record.due_date:%d/%m/%Y} and is {days} day(s) overdue."
            n, _ = self.create(record.reader_id, message, models.NOTIFICATION_OVERDUE,
                               skip_duplicate_check=True, lending_record_id=record.id, commit=False)
            created.append(n)
        self.session.commit()
        ids = [n.id for n in created]
        if ids:
            notification_logger.info("overdue scan created %d notification(s) for %d overdue loan(s)", len(ids), len(overdue))
        return {'checked': len(overdue), 'created': len(ids), 'notification_ids': ids}


class LendingService:
    """Borrow and return books, enforcing availability and the borrow limit."""
    def __init__(self, session: Session, period_days: Optional[int] = None, max_borrow: Optional[int] = None):
        self.session = session
        self.period_days = settings.LENDING_PERIOD_DAYS if period_days is None else period_days
        self.max_borrow = settings.MAX_BORROW_LIMIT if max_borrow is None else max_borrow
        if self.period_days <= 0 or self.max_borrow <= 0:
            raise ValueError("lending period and borrow limit must be positive")
        self.lending_repo = repositories.LendingRepository(session)
        self.book_repo = repositories.BookRepository(session)
        self.reader_repo = repositories.ReaderRepository(session)
        self.librarian_repo = repositories.LibrarianRepository(session)
        self.notifications = NotificationService(session)

    def status_of(self, record: models.LendingRecord, today: Optional[date] = None) -> str:
        if record.return_date is not None:
            return models.STATUS_RETURNED
        if is_overdue(record.due_date, record.return_date, today):
            return models.STATUS_OVERDUE
        return models.STATUS_BORROWING

    def to_dict(self, record: models.LendingRecord, today: Optional[date] = None) -> dict:
        book = self.book_repo.get(record.book_id)
        reader = self.reader_repo.get(record.reader_id)
        return {
            'id': record.id,
            'book_id': record.book_id,
            'book_name': book.name if book else None,
            'reader_id': record.reader_id,
            'reader_name': reader.name if reader else None,
            'librarian_id': record.librarian_id,
            'borrow_date': record.borrow_date,
            'due_date': record.due_date,
            'return_date': record.return_date,
            'status': self.status_of(record, today),
        }

    def list_records(self, reader_id: Optional[str] = None) -> List[models.LendingRecord]:
        return self.lending_repo.list(reader_id)

    def get_record(self, record_id: int) -> models.LendingRecord:
        record = self.lending_repo.get(record_id)
        if not record:
            raise NotFoundError("Lending record not found")
        return record

    def borrow(self, book_id: str, reader_id: str, librarian_id: Optional[str] = None,
               borrow_date: Optional[date] = None) -> models.LendingRecord:
        """Lend one copy of `book_id` to `reader_id`.

        The due date is `borrow_date + period_days`. The book's borrowed and
        lifetime counters are bumped and the reader gets a `new_borrow`
        notification, all in one transaction.
        """
        book = self.book_repo.get(book_id)
        if not book:
            raise NotFoundError("Book not found")
        reader = self.reader_repo.get(reader_id)
        if not reader:
            raise NotFoundError("Reader not found")
        if book.quantity - book.borrowed_count <= 0:
            lending_logger.warning("borrow rejected: no copies of %s left for %s", book_id, reader_id)
            raise UnavailableError("No copies of this book are available for borrowing")
        active = self.lending_repo.count_active_for_reader(reader_id)
        if active >= self.max_borrow:
            lending_logger.warning("borrow rejected: %s already holds %d book(s)", reader_id, active)
            raise BorrowLimitError(
                f"Reader has already borrowed the maximum of {self.max_borrow} books. "
                "Please return a book before borrowing another."
            )
        librarian = self.librarian_repo.get(librarian_id) if librarian_id else None
        if librarian is None:
            librarian = self.librarian_repo.first()
        borrow_date = borrow_date or date.today()
        due_date = compute_due_date(borrow_date, self.period_days)
        try:
            record = models.LendingRecord(
                reader_id=reader_id,
                librarian_id=librarian.id if librarian else None,
                book_id=book_id,
                borrow_date=borrow_date,
                due_date=due_date,
                status=models.STATUS_BORROWING,
            )
            self.lending_repo.create(record, commit=False)
            book.borrowed_count += 1
            book.times_borrowed += 1
            self.book_repo.update(book, commit=False)
            self.notifications.create(
                reader_id,
                f"You borrowed '{book.name}'. Please return it by {due_date:%d/%m/%Y}.",
                models.NOTIFICATION_NEW_BORROW,
                skip_duplicate_check=True,
                lending_record_id=record.id,
                commit=False,
            )
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(record)
        lending_logger.info("book %s lent to %s (record %s, due %s)", book_id, reader_id, record.id, due_date.isoformat())
        return record

    def return_book(self, record_id: int, return_date: Optional[date] = None) -> models.LendingRecord:
        """Close a lending record and put the copy back on the shelf."""
        record = self.get_record(record_id)
        if record.return_date is not None:
            raise AlreadyReturnedError("Book has already been returned")
        try:
            record.return_date = return_date or date.today()
            record.status = models.STATUS_RETURNED
            self.lending_repo.update(record, commit=False)
            book = self.book_repo.get(record.book_id)
            if book and book.borrowed_count > 0:
                book.borrowed_count -= 1
                self.book_repo.update(book, commit=False)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise
        self.session.refresh(record)
        lending_logger.info("record %s returned on %s", record.id, record.return_date.isoformat())
        return record
