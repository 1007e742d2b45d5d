import asyncio
import logging
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any

import aiosqlite

SQLITE_BUSY_TIMEOUT_MS = 5000
WRITE_RETRY_ATTEMPTS = 3
WRITE_RETRY_BASE_DELAY_SEC = 0.05

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    """Current UTC timestamp in ISO-8601."""
    return datetime.now(timezone.utc).isoformat()


async def apply_sqlite_pragmas(db: aiosqlite.Connection) -> None:
    """Apply SQLite settings for concurrent webhook deliveries."""
    await db.execute("PRAGMA journal_mode=WAL;")
    await db.execute("PRAGMA synchronous=NORMAL;")
    await db.execute(f"PRAGMA busy_timeout={SQLITE_BUSY_TIMEOUT_MS};")


@asynccontextmanager
async def open_db(db_path: str) -> AsyncIterator[aiosqlite.Connection]:
    """Open connection with row factory and required PRAGMA settings."""
    async with aiosqlite.connect(db_path) as db:
        db.row_factory = aiosqlite.Row
        await apply_sqlite_pragmas(db)
        yield db


async def execute_write_with_retry(
    db: aiosqlite.Connection,
    query: str,
    params: Sequence[Any] = (),
) -> aiosqlite.Cursor:
    """Execute write query with lightweight retry on lock contention."""
    for attempt in range(WRITE_RETRY_ATTEMPTS):
        try:
            cursor = await db.execute(query, params)
            await db.commit()
            return cursor
        except aiosqlite.OperationalError as error:
            if "database is locked" not in str(error).lower():
                raise
            if attempt < WRITE_RETRY_ATTEMPTS - 1:
                backoff = WRITE_RETRY_BASE_DELAY_SEC * (2**attempt)
                logger.warning("SQLite locked (attempt %s), retrying in %.2fs", attempt + 1, backoff)
                await asyncio.sleep(backoff)
                continue
            raise
    raise RuntimeError("Unexpected retry loop state")


async def init_db(db_path: str) -> None:
    """Ініціалізація бази даних: створення таблиць."""
    async with open_db(db_path) as db:
        # Поточний план підписника (один рядок на email).
        await db.execute(
            """CREATE TABLE IF NOT EXISTS subscriber_plans (
                email TEXT PRIMARY KEY,
                plan TEXT NOT NULL,
                plan_expires_at TEXT DEFAULT NULL,
                last_payment_id TEXT DEFAULT NULL,
                updated_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            """CREATE TABLE IF NOT EXISTS businesses (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                owner_email TEXT NOT NULL UNIQUE,
                owner_user_id TEXT DEFAULT NULL,
                plan TEXT NOT NULL DEFAULT 'free',
                status TEXT NOT NULL DEFAULT 'pending',
                payment_status TEXT DEFAULT NULL,
                external_reference TEXT DEFAULT NULL,
                last_payment_id TEXT DEFAULT NULL,
                pending_plan TEXT DEFAULT NULL,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )"""
        )
        # Журнал платежів, як їх бачить процесор (upsert по id платежу).
        await db.execute(
            """CREATE TABLE IF NOT EXISTS payments (
                id TEXT PRIMARY KEY,
                status TEXT DEFAULT NULL,
                status_detail TEXT DEFAULT NULL,
                transaction_amount REAL DEFAULT NULL,
                currency_id TEXT DEFAULT NULL,
                external_reference TEXT DEFAULT NULL,
                email TEXT DEFAULT NULL,
                plan TEXT DEFAULT NULL,
                channel TEXT DEFAULT NULL,
                payer_email TEXT DEFAULT NULL,
                order_id TEXT DEFAULT NULL,
                raw_json TEXT DEFAULT NULL,
                updated_at TEXT NOT NULL
            )"""
        )
        # Сирі вхідні нотифікації, лише для діагностики/replay.
        await db.execute(
            """CREATE TABLE IF NOT EXISTS payment_notifications (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                topic TEXT NOT NULL,
                payload_json TEXT NOT NULL,
                received_at TEXT NOT NULL
            )"""
        )
        # Акаунти заповнює окремий flow реєстрації; тут лише читаємо.
        await db.execute(
            """CREATE TABLE IF NOT EXISTS accounts (
                user_id TEXT PRIMARY KEY,
                email TEXT NOT NULL UNIQUE,
                created_at TEXT NOT NULL
            )"""
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_payments_email ON payments (email)"
        )
        await db.commit()
