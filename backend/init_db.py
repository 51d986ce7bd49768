# init_db.py (in backend folder)

import sys

from sqlalchemy import inspect

from drop_relay.core.config import get_settings
from drop_relay.infra.database import Database


def init_db(reset: bool = False):
    """Create the relay tables, dropping them first when ``reset`` is set"""
    database = Database(get_settings().DATABASE_URL)

    if reset:
        print("Dropping all tables...")
        database.drop_all()

    print("Creating tables...")
    database.create_all()

    inspector = inspect(database.engine)
    for table in inspector.get_table_names():
        print(f"\n{table}:")
        for col in inspector.get_columns(table):
            print(f"  - {col['name']}: {col['type']}")

    database.dispose()


if __name__ == "__main__":
    init_db(reset="--reset" in sys.argv[1:])
