from datetime import date, timedelta

from library_app import models, services


def _post(client, headers, **body):
    payload = {'type': 'general', 'message': 'Library closes early on Friday'}
    payload.update(body)
    return client.post('/notifications', json=payload, headers=headers)


def test_create_and_dedupe(client, reader_headers, reader_id):
    first = _post(client, reader_headers, user_id=reader_id)
    assert first.status_code == 201
    body = first.json()
    assert body['is_read'] is False
    assert body['type'] == 'general'
    assert body['timestamp']

    again = _post(client, reader_headers, user_id=reader_id)
    assert again.status_code == 200
    assert again.json()['id'] == body['id']

    forced = _post(client, reader_headers, user_id=reader_id, skip_duplicate_check=True)
    assert forced.status_code == 201
    assert forced.json()['id'] != body['id']
    assert len(client.get('/notifications', headers=reader_headers).json()) == 2


def test_same_message_different_type_is_not_a_duplicate(client, reader_headers, reader_id):
    a = _post(client, reader_headers, user_id=reader_id, type='general').json()
    b = _post(client, reader_headers, user_id=reader_id, type='overdue')
    assert b.status_code == 201
    assert b.json()['id'] != a['id']


def test_unknown_type_stored_as_general(client, reader_headers, reader_id):
    r = _post(client, reader_headers, user_id=reader_id, type='promo')
    assert r.status_code == 201
    assert r.json()['type'] == 'general'


def test_mark_one_read_then_duplicate_allowed(client, reader_headers, reader_id):
    n = _post(client, reader_headers, user_id=reader_id).json()
    r = client.put('/notifications/mark-read', json={'notification_id': n['id']}, headers=reader_headers)
    assert r.status_code == 200
    assert r.json()['is_read'] is True
    assert client.get('/notifications', params={'unread_only': True}, headers=reader_headers).json() == []
    fresh = _post(client, reader_headers, user_id=reader_id)
    assert fresh.status_code == 201
    assert fresh.json()['id'] != n['id']


def test_mark_all_read(client, reader_headers, reader_id):
    _post(client, reader_headers, user_id=reader_id, message='one')
    _post(client, reader_headers, user_id=reader_id, message='two')
    r = client.put('/notifications/mark-read', json={'user_id': reader_id, 'mark_all': True}, headers=reader_headers)
    assert r.status_code == 200
    assert [n['message'] for n in r.json()] == ['two', 'one']
    assert all(n['is_read'] for n in r.json())


def test_mark_read_errors(client, reader_headers, librarian_headers, reader_id, librarian_id):
    assert client.put('/notifications/mark-read', json={}, headers=reader_headers).status_code == 400
    assert client.put('/notifications/mark-read', json={'user_id': reader_id}, headers=reader_headers).status_code == 400
    assert client.put('/notifications/mark-read', json={'notification_id': 999}, headers=reader_headers).status_code == 404
    staff_note = _post(client, librarian_headers, user_id=librarian_id).json()
    r = client.put('/notifications/mark-read', json={'notification_id': staff_note['id']}, headers=reader_headers)
    assert r.status_code == 403


def test_readers_cannot_touch_other_users(client, reader_headers, librarian_headers, reader_id):
    assert _post(client, reader_headers, user_id='BD999').status_code == 403
    assert client.get('/notifications', params={'user_id': 'TT001'}, headers=reader_headers).status_code == 403
    # librarians may notify and inspect any reader
    assert _post(client, librarian_headers, user_id=reader_id).status_code == 201
    assert len(client.get('/notifications', params={'user_id': reader_id}, headers=librarian_headers).json()) == 1


def test_invalid_notification_body(client, reader_headers, reader_id):
    r = client.post('/notifications', json={'user_id': reader_id, 'type': 'general'}, headers=reader_headers)
    assert r.status_code == 422


def test_overdue_scan_creates_one_reminder_per_loan(session):
    services.LibrarianService(session).create_librarian({'name': 'Lib', 'date_of_birth': date(1980, 1, 1)})
    reader = services.ReaderService(session).create_reader({'name': 'Late Reader'})
    book = services.CatalogService(session).add_book({'type': 'Fiction', 'name': 'Slow Read', 'author': 'A',
                                                     'publisher': 'P', 'publish_year': 2000, 'quantity': 3})
    lending = services.LendingService(session)
    late = lending.borrow(book.id, reader.id, borrow_date=date(2024, 1, 1))
    lending.borrow(book.id, reader.id, borrow_date=date(2024, 1, 20))
    svc = services.NotificationService(session)

    result = svc.notify_overdue(today=date(2024, 1, 20))
    assert result['checked'] == 1
    assert result['created'] == 1
    note = svc.get(result['notification_ids'][0])
    assert note.type == models.NOTIFICATION_OVERDUE
    assert note.lending_record_id == late.id
    assert '15/01/2024' in note.message
    assert '5 day(s)' in note.message

    assert svc.notify_overdue(today=date(2024, 1, 21))['created'] == 0
    svc.mark_read(note.id)
    assert svc.notify_overdue(today=date(2024, 1, 21))['created'] == 1


def test_returned_loans_are_not_reported(session):
    services.LibrarianService(session).create_librarian({'name': 'Lib', 'date_of_birth': date(1980, 1, 1)})
    reader = services.ReaderService(session).create_reader({'name': 'Prompt Reader'})
    book = services.CatalogService(session).add_book({'type': 'Fiction', 'name': 'Quick Read', 'author': 'A',
                                                     'publisher': 'P', 'publish_year': 2000, 'quantity': 1})
    lending = services.LendingService(session)
    record = lending.borrow(book.id, reader.id, borrow_date=date(2024, 1, 1))
    lending.return_book(record.id, return_date=date(2024, 2, 1))
    result = services.NotificationService(session).notify_overdue(today=date(2024, 3, 1))
    assert result == {'checked': 0, 'created': 0, 'notification_ids': []}


def test_overdue_scan_endpoint(client, librarian_headers, reader_headers, reader_id, book_payload, app_session):
    book_id = client.post('/books', json=book_payload, headers=librarian_headers).json()['id']
    services.LendingService(app_session).borrow(book_id, reader_id, borrow_date=date.today() - timedelta(days=20))

    assert client.post('/notifications/overdue-scan', headers=reader_headers).status_code == 403
    r = client.post('/notifications/overdue-scan', headers=librarian_headers)
    assert r.status_code == 200
    assert r.json()['created'] == 1
    assert client.post('/notifications/overdue-scan', headers=librarian_headers).json()['created'] == 0

    types = [n['type'] for n in client.get('/notifications', headers=reader_headers).json()]
    assert sorted(types) == ['new_borrow', 'overdue']
    records = client.get('/lending/records', headers=reader_headers).json()
    assert records[0]['status'] == 'overdue'
