"""Module db: SQLite persistence for jobs, webhooks and webhook deliveries."""
#
# PURPOSE:
# One aiosqlite connection per process, opened lazily, in WAL mode. Every
# statement goes through a single asyncio.Lock so the compare-and-set UPDATEs
# the job manager and the retry scheduler rely on see a consistent row.
#
# WHAT GETS STORED:
# - jobs: one row per tool invocation, mutated only by the JobManager
# - webhooks: subscriber endpoints plus cumulative delivery counters
# - webhook_deliveries: one row per (event, webhook) with attempt bookkeeping
#
# KEY CONCEPTS:
# - Timestamps are TEXT, ISO-8601 UTC with millisecond precision, so string
#   comparison orders them (next_retry_at <= now).
# - JSON columns (input, output, payload, events, headers) are TEXT.
#

import asyncio
import logging
import os
import sqlite3
from pathlib import Path
from typing import Any, List, Optional, Union

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS jobs (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    tool_name TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending','running','completed','failed','cancelled')),
    input_data TEXT NOT NULL,
    output_data TEXT,
    progress INTEGER NOT NULL DEFAULT 0 CHECK (progress BETWEEN 0 AND 100),
    error_message TEXT,
    priority INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    started_at TEXT,
    completed_at TEXT
);
CREATE INDEX IF NOT EXISTS idx_jobs_status ON jobs(status);
CREATE INDEX IF NOT EXISTS idx_jobs_owner ON jobs(owner_id);

CREATE TABLE IF NOT EXISTS webhooks (
    id TEXT PRIMARY KEY,
    owner_id TEXT NOT NULL,
    url TEXT NOT NULL,
    secret TEXT NOT NULL,
    events TEXT NOT NULL,
    headers TEXT NOT NULL DEFAULT '{}',
    description TEXT,
    is_active INTEGER NOT NULL DEFAULT 1,
    total_deliveries INTEGER NOT NULL DEFAULT 0,
    successful_deliveries INTEGER NOT NULL DEFAULT 0,
    failed_deliveries INTEGER NOT NULL DEFAULT 0,
    last_delivery_at TEXT,
    last_error TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_webhooks_owner ON webhooks(owner_id, is_active);

CREATE TABLE IF NOT EXISTS webhook_deliveries (
    id TEXT PRIMARY KEY,
    webhook_id TEXT NOT NULL REFERENCES webhooks(id) ON DELETE CASCADE,
    event_type TEXT NOT NULL,
    payload TEXT NOT NULL,
    status TEXT NOT NULL CHECK (status IN ('pending','success','failed','retrying')),
    http_status INTEGER,
    response_body TEXT,
    error_message TEXT,
    attempts INTEGER NOT NULL DEFAULT 0,
    max_attempts INTEGER NOT NULL DEFAULT 5,
    next_retry_at TEXT,
    delivered_at TEXT,
    created_at TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_deliveries_retry ON webhook_deliveries(status, next_retry_at);
CREATE INDEX IF NOT EXISTS idx_deliveries_webhook ON webhook_deliveries(webhook_id, created_at);
"""


class Database:
    """Lazily-opened aiosqlite connection with serialized access."""

    def __init__(self, db_path: Union[str, Path]):
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            os.makedirs(os.path.dirname(os.path.abspath(self.db_path)), exist_ok=True)

        self._initialized = False
        # asyncio locks are created lazily inside the running loop
        self._init_lock: Optional[asyncio.Lock] = None
        self._db_lock: Optional[asyncio.Lock] = None
        self._db_connection: Optional[aiosqlite.Connection] = None

    async def init(self) -> None:
        if self._initialized:
            return
        if self._init_lock is None:
            self._init_lock = asyncio.Lock()
        if self._db_lock is None:
            self._db_lock = asyncio.Lock()

        async with self._init_lock:
            if self._initialized:
                return
            try:
                self._db_connection = await aiosqlite.connect(self.db_path, timeout=5.0)
                self._db_connection.row_factory = aiosqlite.Row
                await self._db_connection.execute("PRAGMA journal_mode=WAL;")
                await self._db_connection.execute("PRAGMA synchronous=NORMAL;")
                await self._db_connection.execute("PRAGMA busy_timeout=5000;")
                await self._db_connection.execute("PRAGMA foreign_keys=ON;")
                await self._db_connection.executescript(SCHEMA)
                await self._db_connection.commit()
                self._initialized = True
                logger.info(f"[Database] Initialized at {self.db_path} (WAL mode)")
            except (sqlite3.Error, OSError) as e:
                logger.error(f"[Database] Init failed: {e}")
                raise

    async def close(self) -> None:
        if self._db_connection is not None:
            await self._db_connection.close()
            self._db_connection = None
            self._initialized = False
            logger.info("[Database] Connection closed.")

    async def _connection(self) -> aiosqlite.Connection:
        if not self._initialized:
            await self.init()
        assert self._db_connection is not None
        return self._db_connection

    async def execute(self, query: str, params: tuple = ()) -> int:
        """Run a write statement and commit. Returns the affected row count."""
        conn = await self._connection()
        async with self._db_lock:
            cursor = await conn.execute(query, params)
            await conn.commit()
            return cursor.rowcount

    async def fetch_one(self, query: str, params: tuple = ()) -> Optional[aiosqlite.Row]:
        conn = await self._connection()
        async with self._db_lock:
            async with conn.execute(query, params) as cursor:
                return await cursor.fetchone()

    async def fetch_all(self, query: str, params: tuple = ()) -> List[Any]:
        conn = await self._connection()
        async with self._db_lock:
            async with conn.execute(query, params) as cursor:
                return await cursor.fetchall()
