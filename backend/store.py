"""
PostgreSQL persistence for users and learning paths.

Document-shaped fields (skills, steps, completed steps, metadata) live in
JSONB columns. Every path query is scoped to its owner.
"""

import logging
import uuid
from typing import Optional

from fastapi import Request
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb
from psycopg_pool import AsyncConnectionPool

logger = logging.getLogger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS users (
    id TEXT PRIMARY KEY,
    username TEXT NOT NULL UNIQUE,
    email TEXT NOT NULL UNIQUE,
    name TEXT,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL DEFAULT 'user',
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS learning_paths (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
    goal TEXT NOT NULL,
    skills JSONB NOT NULL DEFAULT '[]',
    steps JSONB NOT NULL,
    completed_steps JSONB NOT NULL DEFAULT '[]',
    generated_by TEXT,
    metadata JSONB NOT NULL DEFAULT '{}',
    created_at TIMESTAMPTZ NOT NULL DEFAULT now(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT now()
);

CREATE INDEX IF NOT EXISTS learning_paths_user_created
    ON learning_paths (user_id, created_at DESC);
"""

USER_FIELDS = ("username", "email", "name", "password_hash", "role", "is_active")


class PathStore:
    """Async data access over a shared psycopg connection pool."""

    def __init__(self, pool: AsyncConnectionPool):
        self.pool = pool

    async def setup(self) -> None:
        async with self.pool.connection() as conn:
            await conn.execute(SCHEMA)
        logger.info("[Store] Schema ready")

    async def _fetchone(self, query: str, params=None) -> Optional[dict]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchone()

    async def _fetchall(self, query: str, params=None) -> list[dict]:
        async with self.pool.connection() as conn:
            async with conn.cursor(row_factory=dict_row) as cur:
                await cur.execute(query, params)
                return await cur.fetchall()

    # --- Users ---

    async def create_user(self, username: str, email: str, name: str, password_hash: str) -> dict:
        return await self._fetchone(
            """
            INSERT INTO users (id, username, email, name, password_hash)
            VALUES (%s, %s, %s, %s, %s)
            RETURNING *
            """,
            (str(uuid.uuid4()), username, email, name, password_hash),
        )

    async def get_user(self, user_id: str) -> Optional[dict]:
        return await self._fetchone("SELECT * FROM users WHERE id = %s", (user_id,))

    async def find_user_by_login(self, login: str) -> Optional[dict]:
        """Look a user up by username or (case-insensitive) email."""
        return await self._fetchone(
            "SELECT * FROM users WHERE username = %s OR email = lower(%s)",
            (login, login),
        )

    async def find_user_by_email(self, email: str) -> Optional[dict]:
        return await self._fetchone("SELECT * FROM users WHERE email = lower(%s)", (email,))

    async def update_user(self, user_id: str, **fields) -> Optional[dict]:
        unknown = set(fields) - set(USER_FIELDS)
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)}")
        if not fields:
            return await self.get_user(user_id)

        # Column names come from USER_FIELDS only
        assignments = ", ".join(f"{column} = %s" for column in fields)
        return await self._fetchone(
            f"UPDATE users SET {assignments}, updated_at = now() WHERE id = %s RETURNING *",
            (*fields.values(), user_id),
        )

    async def delete_user(self, user_id: str) -> bool:
        row = await self._fetchone("DELETE FROM users WHERE id = %s RETURNING id", (user_id,))
        return row is not None

    # --- Learning paths ---

    async def create_path(
        self,
        user_id: str,
        goal: str,
        skills: list[str],
        steps: list[dict],
        generated_by: str,
    ) -> dict:
        return await self._fetchone(
            """
            INSERT INTO learning_paths (id, user_id, goal, skills, steps, generated_by)
            VALUES (%s, %s, %s, %s, %s, %s)
            RETURNING *
            """,
            (str(uuid.uuid4()), user_id, goal, Jsonb(skills), Jsonb(steps), generated_by),
        )

    async def list_paths(self, user_id: str, limit: Optional[int] = None) -> list[dict]:
        return await self._fetchall(
            "SELECT * FROM learning_paths WHERE user_id = %s ORDER BY created_at DESC LIMIT %s",
            (user_id, limit),
        )

    async def get_path(self, path_id: str, user_id: str) -> Optional[dict]:
        return await self._fetchone(
            "SELECT * FROM learning_paths WHERE id = %s AND user_id = %s",
            (path_id, user_id),
        )

    async def set_completed_steps(self, path_id: str, user_id: str, completed: list[int]) -> Optional[dict]:
        return await self._fetchone(
            """
            UPDATE learning_paths SET completed_steps = %s, updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING *
            """,
            (Jsonb(completed), path_id, user_id),
        )

    async def update_path_metadata(self, path_id: str, user_id: str, metadata: dict) -> Optional[dict]:
        return await self._fetchone(
            """
            UPDATE learning_paths SET metadata = %s, updated_at = now()
            WHERE id = %s AND user_id = %s
            RETURNING *
            """,
            (Jsonb(metadata), path_id, user_id),
        )

    async def delete_path(self, path_id: str, user_id: str) -> bool:
        row = await self._fetchone(
            "DELETE FROM learning_paths WHERE id = %s AND user_id = %s RETURNING id",
            (path_id, user_id),
        )
        return row is not None

    # --- Aggregates ---

    async def count_paths(self, user_id: Optional[str] = None) -> int:
        if user_id is None:
            row = await self._fetchone("SELECT count(*) AS total FROM learning_paths")
        else:
            row = await self._fetchone(
                "SELECT count(*) AS total FROM learning_paths WHERE user_id = %s", (user_id,)
            )
        return row["total"]

    async def recent_paths(self, limit: int = 10) -> list[dict]:
        return await self._fetchall(
            """
            SELECT id, goal, skills, generated_by, created_at
            FROM learning_paths ORDER BY created_at DESC LIMIT %s
            """,
            (limit,),
        )

    async def popular_skills(self, limit: int = 8) -> list[dict]:
        return await self._fetchall(
            """
            SELECT skill, count(*) AS count
            FROM learning_paths, jsonb_array_elements_text(skills) AS skill
            GROUP BY skill ORDER BY count DESC, skill LIMIT %s
            """,
            (limit,),
        )

    async def popular_goals(self, limit: int = 8) -> list[dict]:
        return await self._fetchall(
            """
            SELECT goal, count(*) AS count
            FROM learning_paths GROUP BY goal ORDER BY count DESC, goal LIMIT %s
            """,
            (limit,),
        )


async def open_pool(conninfo: str, timeout: float = 5.0) -> AsyncConnectionPool:
    pool = AsyncConnectionPool(
        conninfo=conninfo,
        max_size=20,
        kwargs={"autocommit": True, "prepare_threshold": 0},
        open=False,
    )
    await pool.open(wait=True, timeout=timeout)
    return pool


def get_store(request: Request) -> Optional[PathStore]:
    """FastAPI dependency: the store, or None when running without a database."""
    return getattr(request.app.state, "store", None)
