"""
Identifier generation for datec entities.

Formats:
- user:      uuid5 over "{username}:{email}" (lower-cased) - deterministic
- dataset:   {owner}_{YYYYMMDD}_{NNN}  - per-owner daily sequence
- comment:   cmt_{dataset_id}_{epoch_ms}_{rand4}
- vote:      vote_{dataset_id}_user_{user_hex}

Blob document ids:
- file_{dataset_id}_{NNN}
- photo_{dataset_id}_header
- avatar_{user_id}
"""
import re
import secrets
import uuid
from datetime import date, datetime
from typing import Optional

from datec.utils.datetime_utils import utc_now

# Base36 alphabet (lowercase letters + digits)
ALPHABET = "0123456789abcdefghijklmnopqrstuvwxyz"

# Namespace for deterministic user ids
USER_ID_NAMESPACE = uuid.UUID('6ba7b810-9dad-11d1-80b4-00c04fd430c8')

SEQUENCE_WIDTH = 3
MAX_DATASET_SEQUENCE = 10 ** SEQUENCE_WIDTH - 1

FILE_DOC_PATTERN = re.compile(r'^file_(?P<dataset_id>.+)_(?P<index>\d{3,})$')
HEADER_DOC_PATTERN = re.compile(r'^photo_(?P<dataset_id>.+)_header$')


def _random_base36(length: int = 4) -> str:
    """Generate random base36 string"""
    return ''.join(ALPHABET[secrets.randbelow(len(ALPHABET))] for _ in range(length))


def generate_user_id(username: str, email: str) -> str:
    """
    Derive the user id from username and email.

    The same pair always yields the same id, so a repeated registration is
    detectable before any store is touched.
    """
    key = f"{username.strip().lower()}:{email.strip().lower()}"
    return str(uuid.uuid5(USER_ID_NAMESPACE, key))


def normalize_dataset_name(name: str) -> str:
    """Trim, collapse whitespace runs to a hyphen and lower-case."""
    return re.sub(r'\s+', '-', name.strip()).lower()


def dataset_id_prefix(owner_username: str, on: date) -> str:
    return f"{owner_username}_{on:%Y%m%d}_"


def format_dataset_id(owner_username: str, on: date, sequence: int) -> str:
    return f"{dataset_id_prefix(owner_username, on)}{sequence:0{SEQUENCE_WIDTH}d}"


def parse_dataset_sequence(dataset_id: str, prefix: str) -> Optional[int]:
    """Return the sequence part of `dataset_id` if it carries `prefix`."""
    if not dataset_id.startswith(prefix):
        return None
    suffix = dataset_id[len(prefix):]
    if not suffix.isdigit():
        return None
    return int(suffix)


def generate_comment_id(dataset_id: str, now: Optional[datetime] = None) -> str:
    now = now or utc_now()
    millis = int(now.timestamp() * 1000)
    return f"cmt_{dataset_id}_{millis}_{_random_base36(4)}"


def generate_message_id(now: Optional[datetime] = None) -> str:
    now = now or utc_now()
    millis = int(now.timestamp() * 1000)
    return f"msg_{millis}_{_random_base36(6)}"


def generate_vote_id(dataset_id: str, user_id: str) -> str:
    return f"vote_{dataset_id}_user_{user_id.replace('-', '')}"


def file_document_id(dataset_id: str, index: int) -> str:
    return f"file_{dataset_id}_{index:0{SEQUENCE_WIDTH}d}"


def header_document_id(dataset_id: str) -> str:
    return f"photo_{dataset_id}_header"


def avatar_document_id(user_id: str) -> str:
    return f"avatar_{user_id}"


def file_document_index(document_id: str) -> Optional[int]:
    """Index of a dataset file document, or None for other documents."""
    match = FILE_DOC_PATTERN.match(document_id)
    return int(match.group('index')) if match else None


def dataset_id_from_document(document_id: str) -> Optional[str]:
    """Dataset id a blob document belongs to, or None (e.g. avatars)."""
    match = FILE_DOC_PATTERN.match(document_id) or HEADER_DOC_PATTERN.match(document_id)
    return match.group('dataset_id') if match else None
