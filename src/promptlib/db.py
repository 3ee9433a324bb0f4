"""SQLite storage for users and prompts."""

import asyncio
import json
import logging
import sqlite3
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, AsyncIterator, Optional

import aiosqlite

from .errors import PromptExists
from .models import Prompt, PromptDraft, as_utc, utcnow

logger = logging.getLogger(__name__)

USERS_SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    email TEXT UNIQUE NOT NULL,
    password_hash TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""

PROMPTS_SCHEMA = """
CREATE TABLE IF NOT EXISTS prompts (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    content TEXT NOT NULL,
    title TEXT NOT NULL,
    context TEXT,
    description TEXT,
    tags TEXT NOT NULL DEFAULT '[]',
    ai_tool TEXT,
    use_case TEXT,
    rating INTEGER,
    from_image INTEGER NOT NULL DEFAULT 0,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_prompts_user_id ON prompts(user_id);
"""

PROMPT_COLUMNS = (
    "id, content, title, context, description, tags, ai_tool, use_case, "
    "rating, from_image, created_at, updated_at"
)

# Columns a PATCH may touch, mapped to how they are stored
_UPDATABLE = {
    "content": lambda v: v,
    "title": lambda v: v,
    "context": lambda v: v,
    "description": lambda v: v,
    "tags": lambda v: json.dumps(v or []),
    "ai_tool": lambda v: v,
    "use_case": lambda v: v,
    "rating": lambda v: v,
    "from_image": lambda v: int(bool(v)),
}


def _timestamp(value: datetime) -> str:
    """Fixed-width UTC text so ORDER BY on the column is chronological."""
    return as_utc(value).isoformat(timespec="microseconds")


async def _configure(conn: aiosqlite.Connection) -> None:
    conn.row_factory = aiosqlite.Row
    await conn.execute("PRAGMA journal_mode=WAL")
    await conn.execute("PRAGMA foreign_keys=ON")
    await conn.execute("PRAGMA busy_timeout=5000")


async def _migrate_prompts(conn: aiosqlite.Connection) -> bool:
    """Drop a pre-multi-user prompts table. Returns True if it was dropped.

    Prompts saved before accounts existed have no owner and cannot be kept.
    """
    cursor = await conn.execute("PRAGMA table_info(prompts)")
    columns = {row["name"] for row in await cursor.fetchall()}
    if columns and "user_id" not in columns:
        await conn.execute("DROP TABLE prompts")
        return True
    return False


async def init_db(db_path: Path) -> None:
    """Create tables if needed and run the one-time prompts migration."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    async with aiosqlite.connect(db_path) as conn:
        await _configure(conn)
        await conn.executescript(USERS_SCHEMA)
        if await _migrate_prompts(conn):
            logger.warning("[DB] Dropped legacy prompts table without user_id; it will be recreated empty")
        await conn.executescript(PROMPTS_SCHEMA)
        await conn.commit()
    logger.info(f"[DB] Initialized database at {db_path}")


class Database:
    """A bounded pool of SQLite connections.

    Built once at start-up and handed to whoever needs it; there is no
    module-level connection.
    """

    def __init__(self, db_path: Path, pool_size: int = 10):
        self.db_path = db_path
        self.pool_size = pool_size
        self._pool: asyncio.Queue[aiosqlite.Connection] = asyncio.Queue(maxsize=pool_size)
        self._connections: list[aiosqlite.Connection] = []

    async def open(self) -> "Database":
        for _ in range(self.pool_size):
            conn = await aiosqlite.connect(self.db_path)
            await _configure(conn)
            self._connections.append(conn)
            self._pool.put_nowait(conn)
        logger.debug(f"[DB] Opened {self.pool_size} connection(s) to {self.db_path}")
        return self

    async def close(self) -> None:
        while self._connections:
            conn = self._connections.pop()
            await conn.close()
        # Drain so a reopened pool starts empty
        while not self._pool.empty():
            self._pool.get_nowait()

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        """Borrow a connection; waits while all of them are in use."""
        conn = await self._pool.get()
        try:
            yield conn
        finally:
            self._pool.put_nowait(conn)


async def open_database(db_path: Path, pool_size: int = 10) -> Database:
    """Initialize the schema and open a connection pool."""
    await init_db(db_path)
    return await Database(db_path, pool_size).open()


# --- users ---


async def create_user(db: Database, email: str, password_hash: str) -> dict:
    """Insert a user. Raises sqlite3.IntegrityError if the email exists."""
    user = {
        "id": str(uuid.uuid4()),
        "email": email,
        "created_at": _timestamp(utcnow()),
    }
    async with db.connection() as conn:
        await conn.execute(
            "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
            (user["id"], email, password_hash, user["created_at"]),
        )
        await conn.commit()
    return user


async def find_user_by_email(db: Database, email: str) -> dict | None:
    async with db.connection() as conn:
        cursor = await conn.execute(
            "SELECT id, email, password_hash, created_at FROM users WHERE email = ?",
            (email,),
        )
        row = await cursor.fetchone()
    return dict(row) if row else None


# --- prompts ---


async def list_prompts(db: Database, owner_id: str) -> list[Prompt]:
    """All prompts of one owner, most recently touched first."""
    async with db.connection() as conn:
        cursor = await conn.execute(
            f"SELECT {PROMPT_COLUMNS} FROM prompts WHERE user_id = ? "
            "ORDER BY updated_at DESC, created_at DESC",
            (owner_id,),
        )
        rows = await cursor.fetchall()
    return [Prompt.from_row(dict(row)) for row in rows]


async def get_prompt(db: Database, owner_id: str, prompt_id: str) -> Prompt | None:
    async with db.connection() as conn:
        cursor = await conn.execute(
            f"SELECT {PROMPT_COLUMNS} FROM prompts WHERE id = ? AND user_id = ?",
            (prompt_id, owner_id),
        )
        row = await cursor.fetchone()
    return Prompt.from_row(dict(row)) if row else None


async def insert_prompt(
    db: Database,
    owner_id: str,
    draft: PromptDraft,
    created_at: datetime,
    updated_at: datetime,
) -> Prompt:
    """Insert a new prompt row.

    Raises:
        PromptExists: If a prompt with this id is already stored.
    """
    async with db.connection() as conn:
        try:
            await conn.execute(
                f"INSERT INTO prompts (user_id, {PROMPT_COLUMNS}) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    owner_id,
                    draft.id,
                    draft.content,
                    draft.title,
                    draft.context,
                    draft.description,
                    json.dumps(draft.tags),
                    draft.ai_tool,
                    draft.use_case,
                    draft.rating,
                    int(draft.from_image),
                    _timestamp(created_at),
                    _timestamp(updated_at),
                ),
            )
            await conn.commit()
        except sqlite3.IntegrityError as e:
            await conn.rollback()
            if "prompts.id" in str(e):
                raise PromptExists(draft.id) from e
            raise

    return Prompt(
        id=draft.id,
        content=draft.content,
        title=draft.title,
        context=draft.context,
        description=draft.description,
        tags=draft.tags,
        ai_tool=draft.ai_tool,
        use_case=draft.use_case,
        rating=draft.rating,
        from_image=draft.from_image,
        created_at=created_at,
        updated_at=updated_at,
    )


async def update_prompt(
    db: Database,
    owner_id: str,
    prompt_id: str,
    changes: dict[str, Any],
    updated_at: datetime,
) -> Optional[Prompt]:
    """Apply changes to an owned prompt. Returns None if no such owned prompt."""
    assignments = ["updated_at = ?"]
    params: list[Any] = [_timestamp(updated_at)]
    for column, value in changes.items():
        if column not in _UPDATABLE:
            raise ValueError(f"Column {column!r} cannot be updated")
        assignments.append(f"{column} = ?")
        params.append(_UPDATABLE[column](value))
    params.extend([prompt_id, owner_id])

    async with db.connection() as conn:
        cursor = await conn.execute(
            f"UPDATE prompts SET {', '.join(assignments)} WHERE id = ? AND user_id = ?",
            params,
        )
        await conn.commit()
        if cursor.rowcount == 0:
            return None

    return await get_prompt(db, owner_id, prompt_id)


async def delete_prompt(db: Database, owner_id: str, prompt_id: str) -> bool:
    """Delete an owned prompt. Returns True if a row was removed.

    Missing or foreign ids are a no-op.
    """
    async with db.connection() as conn:
        cursor = await conn.execute(
            "DELETE FROM prompts WHERE id = ? AND user_id = ?",
            (prompt_id, owner_id),
        )
        await conn.commit()
    return cursor.rowcount > 0
