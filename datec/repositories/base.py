"""
Shared helpers for the PostgreSQL repositories
"""
import asyncio
from contextlib import contextmanager
from typing import Dict, Optional, Tuple

import asyncpg

from datec.errors import ConflictError, DatecError, UpstreamStoreError

METADATA_STORE = "metadata"

DRIVER_ERRORS = (asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError)

# constraint name -> (message, retryable)
ConflictMessages = Dict[str, Tuple[str, bool]]


@contextmanager
def postgres_errors(operation: str, conflicts: Optional[ConflictMessages] = None):
    """
    Translate asyncpg errors raised inside the block.

    Unique violations become ConflictError (message looked up by constraint
    name), everything else from the driver becomes UpstreamStoreError.
    """
    try:
        yield
    except DatecError:
        raise
    except asyncpg.UniqueViolationError as e:
        constraint = getattr(e, 'constraint_name', None)
        message, retryable = (conflicts or {}).get(
            constraint, (f"Duplicate value violates {constraint or 'a unique constraint'}", False)
        )
        raise ConflictError(message, constraint=constraint, retryable=retryable) from e
    except DRIVER_ERRORS as e:
        raise UpstreamStoreError(METADATA_STORE, operation, e) from e


def affected_rows(status: str) -> int:
    """Row count from an asyncpg command status such as 'UPDATE 1'"""
    try:
        return int(status.split()[-1])
    except (AttributeError, IndexError, ValueError):
        return 0


def contains_pattern(value: str) -> str:
    """ILIKE pattern matching `value` anywhere, with wildcards escaped"""
    escaped = value.replace('\\', '\\\\').replace('%', '\\%').replace('_', '\\_')
    return f"%{escaped}%"
