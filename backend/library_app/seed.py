"""Demo data for local development.

`seed_demo_data` fills empty tables with a few categories, librarians,
readers, books and one open loan. Each table is only seeded when it is
empty so the function can be run repeatedly.
"""

import logging
from datetime import date, timedelta
from sqlmodel import Session, select
from sqlalchemy import func
from . import models, services

logger = logging.getLogger("library.seed")

CATEGORIES = ['Fiction', 'Science', 'History', 'Literature', 'Children']

LIBRARIANS = [
    {'name': 'Alice Nguyen', 'date_of_birth': date(1985, 5, 15), 'phone': '0901234567', 'address': 'Hanoi'},
    {'name': 'Brian Tran', 'date_of_birth': date(1990, 10, 20), 'phone': '0912345678', 'address': 'Ho Chi Minh City'},
]

READERS = [
    {'name': 'Chris Le', 'date_of_birth': date(1995, 3, 10), 'phone': '0923456789', 'address': 'Da Nang', 'gender': 'male'},
    {'name': 'Diana Pham', 'date_of_birth': date(1998, 7, 25), 'phone': '0934567890', 'address': 'Hai Phong', 'gender': 'female'},
    {'name': 'Evan Vo', 'date_of_birth': date(2000, 1, 1), 'phone': '0945678901', 'address': 'Can Tho', 'gender': 'male'},
]

BOOKS = [
    {'type': 'Children', 'name': 'The Adventures of a Cricket', 'author': 'To Hoai', 'publisher': 'Kim Dong', 'publish_year': 1941, 'quantity': 5},
    {'type': 'Literature', 'name': 'Dumb Luck', 'author': 'Vu Trong Phung', 'publisher': 'Literature House', 'publish_year': 1936, 'quantity': 3},
    {'type': 'History', 'name': 'A History of Vietnam', 'author': 'Various', 'publisher': 'Education House', 'publish_year': 2010, 'quantity': 4},
    {'type': 'Science', 'name': 'The Universe in a Nutshell', 'author': 'Stephen Hawking', 'publisher': 'Bantam', 'publish_year': 2001, 'quantity': 2},
    {'type': 'Fiction', 'name': 'The Alchemist', 'author': 'Paulo Coelho', 'publisher': 'HarperCollins', 'publish_year': 1988, 'quantity': 6},
]


def _is_empty(session: Session, model) -> bool:
    return session.exec(select(func.count()).select_from(model)).one() == 0


def seed_demo_data(session: Session) -> dict:
    """Seed empty tables and return how many rows were created per table."""
    summary = {'categories': 0, 'librarians': 0, 'readers': 0, 'books': 0, 'lending_records': 0}
    catalog = services.CatalogService(session)
    if _is_empty(session, models.Category):
        for name in CATEGORIES:
            catalog.category_repo.get_or_create(name)
            summary['categories'] += 1
    if _is_empty(session, models.Librarian):
        svc = services.LibrarianService(session)
        for data in LIBRARIANS:
            svc.create_librarian(dict(data))
            summary['librarians'] += 1
    if _is_empty(session, models.Reader):
        svc = services.ReaderService(session)
        for data in READERS:
            svc.create_reader(dict(data))
            summary['readers'] += 1
    if _is_empty(session, models.Book):
        for data in BOOKS:
            catalog.add_book(dict(data))
            summary['books'] += 1
    if _is_empty(session, models.LendingRecord):
        reader = session.exec(select(models.Reader).order_by(models.Reader.id)).first()
        book = session.exec(select(models.Book).order_by(models.Book.id)).first()
        if reader and book:
            # an already overdue loan so the overdue scan has something to report
            services.LendingService(session).borrow(book.id, reader.id, borrow_date=date.today() - timedelta(days=20))
            summary['lending_records'] += 1
    logger.info("seeded %s", summary)
    return summary
