from sqlmodel import select

from library_app import models, services
from library_app.seed import BOOKS, CATEGORIES, LIBRARIANS, READERS, seed_demo_data


def test_seed_fills_empty_tables(session):
    summary = seed_demo_data(session)
    assert summary == {
        'categories': len(CATEGORIES),
        'librarians': len(LIBRARIANS),
        'readers': len(READERS),
        'books': len(BOOKS),
        'lending_records': 1,
    }
    record = session.exec(select(models.LendingRecord)).one()
    assert record.reader_id == 'BD001'
    assert record.book_id == 'S001'
    assert services.LendingService(session).to_dict(record)['status'] == models.STATUS_OVERDUE
    assert services.AuthService(session).authenticate('TT001', '15051985') is not None


def test_seed_is_idempotent(session):
    seed_demo_data(session)
    again = seed_demo_data(session)
    assert set(again.values()) == {0}
    assert len(session.exec(select(models.Book)).all()) == len(BOOKS)
