"""CLI script to create the tables and load demo data into the backend DB.
Usage: python scripts/seed_db.py [--reset]
"""
import sys
import argparse
import pathlib
# Ensure `backend/` is on sys.path so `library_app` package imports work when running this script directly
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session, SQLModel
from library_app.database import engine, create_db_and_tables
from library_app.seed import seed_demo_data, LIBRARIANS, READERS
from library_app.utils.dates import format_dob_password


def main(reset: bool = False):
    """Create tables (dropping them first with `reset`) and seed demo rows.

    Prints a per-table summary and the demo logins for a quick CLI
    feedback loop.
    """
    print('Using database:', engine.url)
    if reset:
        print('Dropping all tables')
        SQLModel.metadata.drop_all(engine)
    create_db_and_tables()
    with Session(engine) as session:
        summary = seed_demo_data(session)
    for table, count in summary.items():
        print(f'Seeded {table}: {count}')
    print('Demo logins (username = id, password = birth date DDMMYYYY):')
    for prefix, people in (('TT', LIBRARIANS), ('BD', READERS)):
        for i, person in enumerate(people, start=1):
            print(f'  {prefix}{i:03d}  {format_dob_password(person["date_of_birth"])}  {person["name"]}')


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('--reset', action='store_true', help='Drop all tables before seeding')
    args = parser.parse_args()
    main(reset=args.reset)
