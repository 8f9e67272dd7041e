#!/usr/bin/env python3
"""
Create (or drop) the PostgreSQL database used when tests run with
TEST_DATABASE_URL, and create the booking tables in it.

    python scripts/setup_test_db.py            # create
    python scripts/setup_test_db.py cleanup    # drop
"""

import asyncio
import os
import sys

import asyncpg
from sqlalchemy.engine import make_url

import app.models  # noqa: F401  (registers every table on Base.metadata)
from app.core.config import settings
from app.core.database import Base, build_engine

TEST_DB_URL = os.getenv(
    "TEST_DATABASE_URL",
    make_url(settings.DATABASE_URL).set(database="test_salon_booking").render_as_string(
        hide_password=False
    ),
)


def _admin_connect_kwargs() -> dict:
    url = make_url(TEST_DB_URL)
    return {
        "host": url.host or "localhost",
        "port": url.port or 5432,
        "user": url.username,
        "password": url.password,
        "database": "postgres",
    }


async def setup_test_database() -> bool:
    test_db_name = make_url(TEST_DB_URL).database
    print(f"Setting up test database: {test_db_name}")

    try:
        admin_conn = await asyncpg.connect(**_admin_connect_kwargs())
        await admin_conn.execute(f'DROP DATABASE IF EXISTS "{test_db_name}"')
        await admin_conn.execute(f'CREATE DATABASE "{test_db_name}"')
        await admin_conn.close()

        engine = build_engine(TEST_DB_URL)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        await engine.dispose()
    except (OSError, asyncpg.PostgresError) as e:
        print(f"Error setting up test database: {e}")
        print("Make sure PostgreSQL is running and TEST_DATABASE_URL is correct.")
        return False

    print(f"Test database ready. Run tests with TEST_DATABASE_URL={TEST_DB_URL}")
    return True


async def cleanup_test_database() -> bool:
    test_db_name = make_url(TEST_DB_URL).database
    try:
        admin_conn = await asyncpg.connect(**_admin_connect_kwargs())
        await admin_conn.execute(f'DROP DATABASE IF EXISTS "{test_db_name}"')
        await admin_conn.close()
    except (OSError, asyncpg.PostgresError) as e:
        print(f"Error cleaning up test database: {e}")
        return False

    print(f"Dropped test database: {test_db_name}")
    return True


if __name__ == "__main__":
    if len(sys.argv) > 1 and sys.argv[1] == "cleanup":
        ok = asyncio.run(cleanup_test_database())
    else:
        ok = asyncio.run(setup_test_database())
    sys.exit(0 if ok else 1)
