"""Connection handling for the SQLite and MySQL storage backends."""

from __future__ import annotations

import logging
import sqlite3
from typing import Iterable, Optional, Tuple, Type

from .config import Settings

logger = logging.getLogger(__name__)


def _import_pymysql():
    try:
        import pymysql  # type: ignore
        from pymysql.cursors import DictCursor  # type: ignore
    except ModuleNotFoundError as exc:  # pragma: no cover - import guard
        raise RuntimeError(
            "The MySQL backend requires the 'pymysql' package. "
            "Install it or unset DB_HOST/DB_NAME/DB_USER/DB_PASS to use SQLite."
        ) from exc
    return pymysql, DictCursor


class SQLiteCursorWrapper:
    def __init__(self, cursor: sqlite3.Cursor) -> None:
        self._cursor = cursor

    def __enter__(self) -> "SQLiteCursorWrapper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    @staticmethod
    def _normalize_query(query: str) -> str:
        return query.replace("%s", "?")

    def execute(self, query: str, params: Optional[Iterable] = None):
        normalized_query = self._normalize_query(query)
        if params is None:
            params = []
        self._cursor.execute(normalized_query, tuple(params))
        return self

    def fetchone(self):
        row = self._cursor.fetchone()
        if row is None:
            return None
        return dict(row)

    def fetchall(self):
        return [dict(row) for row in self._cursor.fetchall()]

    @property
    def rowcount(self) -> int:
        return self._cursor.rowcount

    def close(self) -> None:
        self._cursor.close()


class SQLiteConnectionWrapper:
    is_sqlite = True

    def __init__(self, connection: sqlite3.Connection) -> None:
        self._connection = connection

    def __enter__(self) -> "SQLiteConnectionWrapper":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        try:
            if exc_type is None:
                self._connection.commit()
            else:
                self._connection.rollback()
        finally:
            self.close()

    def cursor(self) -> SQLiteCursorWrapper:
        return SQLiteCursorWrapper(self._connection.cursor())

    def commit(self) -> None:
        self._connection.commit()

    def rollback(self) -> None:
        self._connection.rollback()

    def close(self) -> None:
        self._connection.close()


SQLITE_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT NOT NULL PRIMARY KEY,
        email TEXT NOT NULL UNIQUE,
        name TEXT,
        role TEXT,
        extra_json TEXT,
        created_at TEXT NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS assignments (
        id TEXT NOT NULL PRIMARY KEY,
        document_json TEXT,
        created_at TEXT NOT NULL,
        created_by TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS submissions (
        id TEXT NOT NULL PRIMARY KEY,
        document_json TEXT,
        submitted_at TEXT NOT NULL,
        submitted_by TEXT,
        status TEXT NOT NULL,
        feedback TEXT,
        reviewed_at TEXT,
        reviewed_by TEXT
    )
    """,
]

MYSQL_SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS users (
        id CHAR(24) NOT NULL PRIMARY KEY,
        email VARCHAR(255) COLLATE utf8mb4_bin NOT NULL,
        name VARCHAR(255),
        role VARCHAR(32),
        extra_json LONGTEXT,
        created_at VARCHAR(40) NOT NULL,
        UNIQUE KEY uniq_users_email (email)
    ) CHARACTER SET utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS assignments (
        id CHAR(24) NOT NULL PRIMARY KEY,
        document_json LONGTEXT,
        created_at VARCHAR(40) NOT NULL,
        created_by VARCHAR(255)
    ) CHARACTER SET utf8mb4
    """,
    """
    CREATE TABLE IF NOT EXISTS submissions (
        id CHAR(24) NOT NULL PRIMARY KEY,
        document_json LONGTEXT,
        submitted_at VARCHAR(40) NOT NULL,
        submitted_by VARCHAR(255),
        status VARCHAR(64) NOT NULL,
        feedback LONGTEXT,
        reviewed_at VARCHAR(40),
        reviewed_by VARCHAR(255)
    ) CHARACTER SET utf8mb4
    """,
]


class Database:
    """Long-lived handle that opens one connection per unit of work.

    ``with database.connect() as conn`` commits on success and rolls back on
    error for SQLite; MySQL connections run in autocommit mode.
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings

    @property
    def is_sqlite(self) -> bool:
        return self.settings.use_sqlite

    @property
    def integrity_errors(self) -> Tuple[Type[Exception], ...]:
        if self.is_sqlite:
            return (sqlite3.IntegrityError,)
        pymysql, _ = _import_pymysql()
        return (pymysql.err.IntegrityError,)

    def connect(self):
        if self.is_sqlite:
            connection = sqlite3.connect(str(self.settings.sqlite_path))
            connection.row_factory = sqlite3.Row
            return SQLiteConnectionWrapper(connection)

        pymysql, DictCursor = _import_pymysql()
        db_config = {
            "database": self.settings.db_name,
            "user": self.settings.db_user,
            "password": self.settings.db_password,
            "host": self.settings.db_host,
            "cursorclass": DictCursor,
            "charset": "utf8mb4",
            "autocommit": True,
        }
        if self.settings.db_port:
            db_config["port"] = self.settings.db_port
        if self.settings.db_connect_timeout:
            db_config["connect_timeout"] = self.settings.db_connect_timeout
        return pymysql.connect(**db_config)

    def init_schema(self) -> None:
        statements = SQLITE_SCHEMA if self.is_sqlite else MYSQL_SCHEMA
        with self.connect() as conn:
            with conn.cursor() as cur:
                for statement in statements:
                    cur.execute(statement)

    def ping(self) -> bool:
        try:
            with self.connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT 1 AS ok")
                    row = cur.fetchone()
        except Exception as exc:
            logger.error("Storage ping failed: %s", exc)
            return False
        return bool(row)
