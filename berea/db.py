# berea/db.py
import os
import uuid
from datetime import date, datetime

import psycopg2
from psycopg2 import errors as pg_errors

from berea.config import DB

SCHEMA_PATH = os.path.join(os.path.dirname(__file__), "schema.sql")


def get_conn():
    conn = psycopg2.connect(**DB)
    try:
        yield conn
    finally:
        conn.close()


def new_id() -> str:
    return uuid.uuid4().hex


def to_json_row(row: dict | None) -> dict | None:
    if row is None:
        return None
    return {
        key: value.isoformat() if isinstance(value, (datetime, date)) else value
        for key, value in dict(row).items()
    }


def is_unique_violation(exc: Exception) -> bool:
    return isinstance(exc, pg_errors.UniqueViolation)


def apply_schema(conn, path: str = SCHEMA_PATH) -> None:
    with open(path, "r", encoding="utf-8") as f:
        ddl = f.read()
    with conn.cursor() as cur:
        cur.execute(ddl)


def main():
    conn = psycopg2.connect(**DB)
    conn.autocommit = False
    try:
        apply_schema(conn)
        conn.commit()
        print(f"OK schema applied db={DB['dbname']} host={DB['host']}")
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


if __name__ == "__main__":
    main()
