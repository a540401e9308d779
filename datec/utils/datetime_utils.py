"""
Datetime helpers shared by the store adapters
"""
from datetime import date, datetime, timezone
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def neo4j_datetime_to_python(value) -> Optional[datetime]:
    """
    Convert a Neo4j DateTime (or ISO string) to a Python datetime.

    Returns None for None and for values that cannot be converted.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        return value

    if hasattr(value, 'to_native'):
        return value.to_native()

    if isinstance(value, str):
        return parse_iso(value)

    logger.warning(f"Unexpected datetime type: {type(value)}")
    return None


def parse_iso(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp, tolerating a trailing 'Z'."""
    if value is None or isinstance(value, datetime):
        return value
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        logger.warning(f"Failed to parse datetime string: {value}")
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
