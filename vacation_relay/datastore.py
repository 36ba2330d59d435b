"""
Datastore access for the relay.

Both backends expose the same three asynchronous primitives:

    insert(table, record)          -> record
    update(table, filter, patch)   -> number of rows touched
    select(table, filter, ...)     -> list of row dicts

Every call opens its own connection and runs the blocking driver call in a
worker thread, so concurrent dispatches never share a connection and the
event loop keeps serving other sockets while a query is in flight. There is
no transaction spanning several calls.
"""

import asyncio
import logging
import re
import sqlite3
from typing import Any, Dict, List, Optional, Sequence, Tuple

import pymysql
import pymysql.cursors

from .config import RelaySettings
from .errors import PersistenceError, PersistenceTimeout

log = logging.getLogger(__name__)

_IDENT = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

TABLES_IN_ORDER = [
    # drop in dependency-friendly order
    "messages",
    "conversation_participants",
    "conversations",
    "users",
]

CREATE_STMTS = [
    """
    CREATE TABLE IF NOT EXISTS users (
        uid       VARCHAR(64)  PRIMARY KEY,
        username  VARCHAR(255) NOT NULL
    )
    """,
    # updatedAt is the conversation's last-activity marker
    """
    CREATE TABLE IF NOT EXISTS conversations (
        id         VARCHAR(64) PRIMARY KEY,
        updatedAt  VARCHAR(40) NOT NULL
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS conversation_participants (
        conversationId  VARCHAR(64) NOT NULL,
        userId          VARCHAR(64) NOT NULL,
        PRIMARY KEY (conversationId, userId)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS messages (
        id              VARCHAR(64) PRIMARY KEY,
        conversationId  VARCHAR(64) NOT NULL,
        senderId        VARCHAR(64) NOT NULL,
        content         TEXT        NOT NULL,
        createdAt       VARCHAR(40) NOT NULL
    )
    """,
]

INDEXES = [
    ("messages", "idx_msg_conversation_ts", "CREATE INDEX idx_msg_conversation_ts ON messages (conversationId, createdAt)"),
    ("conversation_participants", "idx_participant_user", "CREATE INDEX idx_participant_user ON conversation_participants (userId)"),
]


def q(sql: str) -> str:
    """Translate SQLite-style '?' placeholders to MySQL '%s'."""
    return sql.replace("?", "%s")


def _ident(name: str) -> str:
    if not _IDENT.match(name or ""):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def _where(filter: Optional[Dict[str, Any]]) -> Tuple[str, Tuple[Any, ...]]:
    if not filter:
        return "", ()
    clause = " AND ".join(f"{_ident(k)} = ?" for k in filter)
    return f" WHERE {clause}", tuple(filter.values())


class Datastore:
    """Common SQL building and thread offloading; subclasses supply connections."""

    name = "datastore"
    driver_error: Tuple[type, ...] = ()

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    # ---------------------------- BACKEND HOOKS ----------------------------
    def _connect(self):
        raise NotImplementedError

    def _sql(self, sql: str) -> str:
        return sql

    def _rows(self, cursor) -> List[Dict[str, Any]]:
        return [dict(r) for r in (cursor.fetchall() or [])]

    def _create_index(self, cursor, table: str, index: str, sql: str) -> None:
        raise NotImplementedError

    # ---------------------------- SYNC CORE ----------------------------
    def _execute(self, sql: str, params: Sequence[Any] = (), fetch: bool = False):
        conn = self._connect()
        try:
            c = conn.cursor()
            c.execute(self._sql(sql), tuple(params))
            rows = self._rows(c) if fetch else None
            conn.commit()
            return rows if fetch else c.rowcount
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        conn = self._connect()
        try:
            c = conn.cursor()
            for sql in CREATE_STMTS:
                c.execute(sql)
            for table, index, sql in INDEXES:
                self._create_index(c, table, index, sql)
            conn.commit()
        finally:
            conn.close()

    def drop_tables(self) -> None:
        conn = self._connect()
        try:
            c = conn.cursor()
            for t in TABLES_IN_ORDER:
                c.execute(f"DROP TABLE IF EXISTS {t}")
            conn.commit()
        finally:
            conn.close()

    # ---------------------------- ASYNC API ----------------------------
    async def _call(self, op: str, table: str, sql: str, params: Sequence[Any], fetch: bool = False):
        call = asyncio.to_thread(self._execute, sql, params, fetch)
        try:
            if self.timeout is None:
                return await call
            return await asyncio.wait_for(call, self.timeout)
        except asyncio.TimeoutError as e:
            # the worker thread keeps running; its statement may still commit
            raise PersistenceTimeout(
                f"{op} timed out after {self.timeout}s, outcome unknown", table=table, backend=self.name
            ) from e
        except self.driver_error as e:
            raise PersistenceError(f"{op} failed: {e}", table=table, backend=self.name) from e

    async def insert(self, table: str, record: Dict[str, Any]) -> Dict[str, Any]:
        if not record:
            raise ValueError("Cannot insert an empty record")
        cols = ", ".join(_ident(k) for k in record)
        marks = ", ".join("?" for _ in record)
        sql = f"INSERT INTO {_ident(table)} ({cols}) VALUES ({marks})"
        await self._call("insert", table, sql, tuple(record.values()))
        return dict(record)

    async def update(self, table: str, filter: Dict[str, Any], patch: Dict[str, Any]) -> int:
        if not patch:
            raise ValueError("Cannot update with an empty patch")
        sets = ", ".join(f"{_ident(k)} = ?" for k in patch)
        where, where_params = _where(filter)
        sql = f"UPDATE {_ident(table)} SET {sets}{where}"
        return await self._call("update", table, sql, tuple(patch.values()) + where_params)

    async def select(
        self,
        table: str,
        filter: Optional[Dict[str, Any]] = None,
        columns: Optional[Sequence[str]] = None,
        order_by: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        cols = ", ".join(_ident(c) for c in columns) if columns else "*"
        where, params = _where(filter)
        sql = f"SELECT {cols} FROM {_ident(table)}{where}"
        if order_by:
            sql += f" ORDER BY {_ident(order_by)} ASC"
        return await self._call("select", table, sql, params, fetch=True)


class SqliteDatastore(Datastore):
    name = "sqlite"
    driver_error = (sqlite3.Error,)

    def __init__(self, path: str, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        self.path = path

    def _connect(self):
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        return conn

    def _create_index(self, cursor, table, index, sql):
        cursor.execute(sql.replace("CREATE INDEX", "CREATE INDEX IF NOT EXISTS", 1))


class MySQLDatastore(Datastore):
    name = "mysql"
    driver_error = (pymysql.Error,)

    def __init__(self, host: str, user: Optional[str], password: Optional[str],
                 database: Optional[str], port: int = 3306, timeout: Optional[float] = None):
        super().__init__(timeout=timeout)
        self.database = database
        self.connect_kw = dict(
            host=host,
            user=user,
            password=password,
            port=port,
            connect_timeout=10,
            autocommit=True,
            charset='utf8mb4',
        )

    def _connect_no_db(self):
        return pymysql.connect(**self.connect_kw)

    def _connect(self):
        return pymysql.connect(
            database=self.database, cursorclass=pymysql.cursors.DictCursor, **self.connect_kw
        )

    def _sql(self, sql):
        return q(sql)

    def ensure_database(self) -> None:
        conn = self._connect_no_db()
        try:
            c = conn.cursor()
            # backticks to avoid weird names
            c.execute(f"CREATE DATABASE IF NOT EXISTS `{self.database}` DEFAULT CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci")
            conn.commit()
        finally:
            conn.close()

    def ensure_tables(self) -> None:
        self.ensure_database()
        super().ensure_tables()

    def drop_tables(self) -> None:
        # the schema may not exist yet on a fresh server
        self.ensure_database()
        super().drop_tables()

    def _create_index(self, cursor, table, index, sql):
        cursor.execute("""
            SELECT EXISTS(
                SELECT 1 FROM information_schema.statistics
                WHERE table_schema = DATABASE()
                  AND table_name = %s
                  AND index_name = %s
            ) AS present
        """, (table, index))
        if not cursor.fetchone()["present"]:
            cursor.execute(sql)


def create_datastore(settings: RelaySettings) -> Datastore:
    if settings.db_backend == "sqlite":
        return SqliteDatastore(settings.db_path, timeout=settings.db_timeout)
    if settings.db_backend == "mysql":
        return MySQLDatastore(
            host=settings.db_host,
            user=settings.db_user,
            password=settings.db_password,
            database=settings.db_name,
            port=settings.db_port,
            timeout=settings.db_timeout,
        )
    raise ValueError(f"Unknown DB_BACKEND: {settings.db_backend!r} (expected 'sqlite' or 'mysql')")
