from datetime import date

from library_app import models, repositories, services


def test_add_book_creates_category_and_ids(client, librarian_headers, book_payload, app_session):
    r = client.post('/books', json=book_payload, headers=librarian_headers)
    assert r.status_code == 201
    book = r.json()
    assert book['id'] == 'S001'
    assert book['type'] == 'Fiction'
    assert book['available'] == 2
    assert book['borrowed_count'] == 0
    assert book['import_date'] == date.today().isoformat()

    second = client.post('/books', json={**book_payload, 'name': 'Brida'}, headers=librarian_headers).json()
    assert second['id'] == 'S002'
    category = repositories.CategoryRepository(app_session).get_by_name('Fiction')
    assert category.id == 'TL001'
    assert category.book_count == 2


def test_book_validation(client, librarian_headers, book_payload):
    bad = [
        {**book_payload, 'quantity': -1},
        {**book_payload, 'publish_year': 999},
        {**book_payload, 'publish_year': date.today().year + 6},
        {**book_payload, 'name': '   '},
        {k: v for k, v in book_payload.items() if k != 'author'},
    ]
    for payload in bad:
        assert client.post('/books', json=payload, headers=librarian_headers).status_code == 422


def test_list_search_and_get(client, librarian_headers, reader_headers, book_payload):
    client.post('/books', json=book_payload, headers=librarian_headers)
    client.post('/books', json={**book_payload, 'type': 'Science', 'name': 'A Brief History of Time', 'author': 'Stephen Hawking'}, headers=librarian_headers)
    all_books = client.get('/books', headers=reader_headers).json()
    assert [b['id'] for b in all_books] == ['S001', 'S002']
    hits = client.get('/books', params={'q': 'hawking'}, headers=reader_headers).json()
    assert [b['name'] for b in hits] == ['A Brief History of Time']
    by_category = client.get('/books', params={'q': 'SCIENCE'}, headers=reader_headers).json()
    assert len(by_category) == 1
    assert client.get('/books/S001', headers=reader_headers).json()['name'] == 'The Alchemist'
    assert client.get('/books/S999', headers=reader_headers).status_code == 404


def test_update_book_moves_category_counts(client, librarian_headers, book_payload, app_session):
    client.post('/books', json=book_payload, headers=librarian_headers)
    r = client.put('/books/S001', json={**book_payload, 'type': 'Classics', 'quantity': 4}, headers=librarian_headers)
    assert r.status_code == 200
    assert r.json()['type'] == 'Classics'
    assert r.json()['quantity'] == 4
    repo = repositories.CategoryRepository(app_session)
    assert repo.get_by_name('Fiction').book_count == 0
    assert repo.get_by_name('Classics').book_count == 1
    assert client.put('/books/S404', json=book_payload, headers=librarian_headers).status_code == 404


def test_update_quantity_below_borrowed_rejected(client, librarian_headers, book_payload, reader_id):
    client.post('/books', json=book_payload, headers=librarian_headers)
    client.post('/lending/records', json={'book_id': 'S001', 'reader_id': reader_id}, headers=librarian_headers)
    r = client.put('/books/S001', json={**book_payload, 'quantity': 0}, headers=librarian_headers)
    assert r.status_code == 400


def test_delete_book_blocked_while_borrowed(client, librarian_headers, book_payload, reader_id, app_session):
    client.post('/books', json=book_payload, headers=librarian_headers)
    record = client.post('/lending/records', json={'book_id': 'S001', 'reader_id': reader_id}, headers=librarian_headers).json()
    assert client.delete('/books/S001', headers=librarian_headers).status_code == 409
    client.put(f"/lending/records/{record['id']}/return", headers=librarian_headers)
    r = client.delete('/books/S001', headers=librarian_headers)
    assert r.status_code == 200
    assert client.get('/books/S001', headers=librarian_headers).status_code == 404
    assert repositories.CategoryRepository(app_session).get_by_name('Fiction').book_count == 0
    assert client.delete('/books/S001', headers=librarian_headers).status_code == 404


def test_prefixed_ids_sort_numerically(session):
    repo = repositories.ReaderRepository(session)
    repo.create(models.Reader(id='BD999', name='Last of three digits'))
    assert repositories.next_prefixed_id(session, models.Reader, 'BD') == 'BD1000'
    assert repositories.next_prefixed_id(session, models.Book, 'S') == 'S001'


def test_search_treats_wildcards_literally(session):
    svc = services.CatalogService(session)
    common = {'type': 'Reference', 'author': 'A', 'publisher': 'P', 'publish_year': 2020, 'quantity': 1}
    svc.add_book({**common, 'name': 'Plain Title'})
    svc.add_book({**common, 'name': '100% Data'})
    assert svc.list_books('_') == []
    assert [b.name for b in svc.list_books('%')] == ['100% Data']
    assert [b.name for b in svc.list_books('0% d')] == ['100% Data']


def test_catalog_service_round_trip(session):
    svc = services.CatalogService(session)
    book = svc.add_book({'type': 'History', 'name': 'SPQR', 'author': 'Mary Beard', 'publisher': 'Profile',
                         'publish_year': 2015, 'quantity': 1, 'import_date': date(2024, 2, 1)})
    out = svc.to_dict(book)
    assert out['type'] == 'History'
    assert out['import_date'] == date(2024, 2, 1)
    assert [b.id for b in svc.list_books('beard')] == [book.id]
