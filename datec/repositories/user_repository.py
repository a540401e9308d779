"""
User Repository - PostgreSQL storage for users

Storage: PostgreSQL (users table)
"""
import logging
from typing import Any, Dict, List, Optional

import asyncpg

from datec.models.domain.dataset import FileReference
from datec.models.domain.user import User
from .base import contains_pattern, postgres_errors

logger = logging.getLogger(__name__)

USER_CONFLICTS = {
    'users_pkey': ("User is already registered", False),
    'users_username_key': ("Username is already taken", False),
    'users_email_key': ("Email is already registered", False),
}

# Columns a profile update may touch
UPDATABLE_COLUMNS = {'email', 'full_name', 'birth_date', 'avatar_ref', 'is_admin'}


def _row_to_user(row) -> User:
    avatar = row['avatar_ref']
    return User(
        user_id=row['user_id'],
        username=row['username'],
        email=row['email'],
        full_name=row['full_name'],
        password_hash=row['password_hash'],
        is_admin=row['is_admin'],
        birth_date=row['birth_date'],
        avatar=FileReference.from_dict(avatar) if avatar else None,
        created_at=row['created_at'],
        updated_at=row['updated_at'],
    )


class UserRepository:
    """
    Repository for User domain model
    """

    def __init__(self, db_pool: asyncpg.Pool):
        self.db_pool = db_pool

    # =========================================================================
    # READ OPERATIONS
    # =========================================================================

    async def get_by_id(self, user_id: str) -> Optional[User]:
        with postgres_errors("users.get_by_id"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM users WHERE user_id = $1", user_id)
        return _row_to_user(row) if row else None

    async def get_by_username(self, username: str) -> Optional[User]:
        with postgres_errors("users.get_by_username"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("SELECT * FROM users WHERE username = $1", username)
        return _row_to_user(row) if row else None

    async def get_by_email(self, email: str) -> Optional[User]:
        with postgres_errors("users.get_by_email"):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(
                    "SELECT * FROM users WHERE lower(email) = lower($1)", email
                )
        return _row_to_user(row) if row else None

    async def search(self, query: str, limit: int = 20) -> List[User]:
        """Case-insensitive substring match on username or full name"""
        pattern = contains_pattern(query)
        with postgres_errors("users.search"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch("""
                    SELECT * FROM users
                    WHERE username ILIKE $1 OR full_name ILIKE $1
                    ORDER BY username ASC
                    LIMIT $2
                """, pattern, limit)
        return [_row_to_user(row) for row in rows]

    async def list_all(self) -> List[User]:
        """Every user, newest first"""
        with postgres_errors("users.list_all"):
            async with self.db_pool.acquire() as conn:
                rows = await conn.fetch("SELECT * FROM users ORDER BY created_at DESC")
        return [_row_to_user(row) for row in rows]

    # =========================================================================
    # WRITE OPERATIONS
    # =========================================================================

    async def create(self, user: User) -> User:
        """
        Insert a new user.

        Raises:
            ConflictError: user id, username or email already exists
        """
        with postgres_errors("users.create", USER_CONFLICTS):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow("""
                    INSERT INTO users (
                        user_id, username, email, full_name, password_hash,
                        is_admin, birth_date, avatar_ref, created_at, updated_at
                    )
                    VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $9)
                    RETURNING *
                """,
                    user.user_id,
                    user.username,
                    user.email,
                    user.full_name,
                    user.password_hash,
                    user.is_admin,
                    user.birth_date,
                    user.avatar.to_dict() if user.avatar else None,
                    user.created_at,
                )

        logger.info(f"Created user {user.username} ({user.user_id})")
        return _row_to_user(row)

    async def update(self, user_id: str, fields: Dict[str, Any]) -> Optional[User]:
        """
        Update profile columns and refresh updated_at.

        Args:
            user_id: User id
            fields: column -> value, restricted to UPDATABLE_COLUMNS

        Returns:
            Updated user, or None if the user does not exist
        """
        unknown = set(fields) - UPDATABLE_COLUMNS
        if unknown:
            raise ValueError(f"Cannot update user columns: {sorted(unknown)}")
        if not fields:
            return await self.get_by_id(user_id)

        columns = list(fields)
        assignments = ", ".join(f"{col} = ${i}" for i, col in enumerate(columns, start=2))
        with postgres_errors("users.update", USER_CONFLICTS):
            async with self.db_pool.acquire() as conn:
                row = await conn.fetchrow(
                    f"UPDATE users SET {assignments}, updated_at = now() "
                    f"WHERE user_id = $1 RETURNING *",
                    user_id, *[fields[col] for col in columns]
                )
        return _row_to_user(row) if row else None
