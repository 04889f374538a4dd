import logging
import os
from pathlib import Path
from typing import Callable
from urllib.parse import urlparse

from psycopg import Connection, connect
from psycopg.rows import dict_row

logger = logging.getLogger(__name__)

SCHEMA_PATH = Path(__file__).resolve().parent.parent / "data" / "schema.sql"
TEST_DATABASE_PREFIX = "symptom_memory_test_"

# connect to postgres DB
def get_connection():
    database_url = os.getenv("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required")
    conn = connect(database_url, row_factory=dict_row)
    return conn

# refuse to truncate anything but a throwaway test database
def assert_test_database_safety() -> None:
    if os.getenv("APP_ENV", "").strip().lower() != "test":
        raise RuntimeError("APP_ENV must be 'test' before touching the test database")
    database_url = os.getenv("DATABASE_URL", "").strip()
    database_name = urlparse(database_url).path.lstrip("/")
    if not database_name.startswith(TEST_DATABASE_PREFIX):
        raise RuntimeError(f"refusing to use non-test database: {database_name or '<none>'}")

# test table presence before altering
def _table_exists(conn: Connection, table_name: str) -> bool:
    row = conn.execute(
        """
        SELECT 1
        FROM information_schema.tables
        WHERE table_schema = 'public'
          AND table_name = %s
        LIMIT 1
        """,
        (table_name,),
    ).fetchone()
    return row is not None

# prevents second startup after migration from causing duplicate column errors
def _column_exists(conn: Connection, table_name: str, column_name: str) -> bool:
    if not _table_exists(conn, table_name):
        return False
    row = conn.execute(
        """
        SELECT 1
        FROM information_schema.columns
        WHERE table_schema = 'public'
          AND table_name = %s
          AND column_name = %s
        LIMIT 1
        """,
        (table_name, column_name),
    ).fetchone()
    return row is not None


def _add_missing_columns(conn: Connection, table_name: str, columns: list[tuple[str, str]]) -> None:
    for column_name, column_type in columns:
        if not _column_exists(conn, table_name, column_name):
            conn.execute(f"ALTER TABLE {table_name} ADD COLUMN {column_name} {column_type}")

# user feedback outcomes live apart from log-derived counts so rebuilds can recompute the latter
def _migration_001_memory_feedback_counters(conn: Connection) -> None:
    _add_missing_columns(
        conn,
        "memories",
        [
            ("feedback_success_count", "INTEGER NOT NULL DEFAULT 0"),
            ("feedback_failure_count", "INTEGER NOT NULL DEFAULT 0"),
        ],
    )

# environmental context feeding pattern mining
def _migration_002_log_environment(conn: Connection) -> None:
    _add_missing_columns(
        conn,
        "log_entries",
        [
            ("atmospheric_pressure", "TEXT"),
            ("moon_phase", "TEXT"),
            ("season", "TEXT"),
        ],
    )


def _migration_003_allergy_medications(conn: Connection) -> None:
    _add_missing_columns(
        conn,
        "allergies",
        [("helpful_medications_json", "TEXT NOT NULL DEFAULT '[]'")],
    )


# local clock offset of each entry, for time-of-day bucketing after utc storage
def _migration_004_log_utc_offset(conn: Connection) -> None:
    _add_missing_columns(
        conn,
        "log_entries",
        [("utc_offset_minutes", "INTEGER")],
    )


def _apply_migrations(conn: Connection) -> None:
    migrations: list[Callable[[Connection], None]] = [
        _migration_001_memory_feedback_counters,
        _migration_002_log_environment,
        _migration_003_allergy_medications,
        _migration_004_log_utc_offset,
    ]
    for migration in migrations:
        migration(conn)


def _execute_script(conn: Connection, script: str) -> None:
    with conn.cursor() as cursor:
        cursor.execute(script)


def initialize_database():
    conn = get_connection()
    try:
        if not _table_exists(conn, "users"):
            logger.info("Creating base schema from %s", SCHEMA_PATH.name)
            with open(SCHEMA_PATH, "r") as f:
                schema_sql = f.read()
            _execute_script(conn, schema_sql)
        _apply_migrations(conn)
        conn.commit()
    finally:
        conn.close()
