"""
User domain model
"""
from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from .dataset import FileReference


@dataclass
class User:
    """
    User domain model

    Storage: PostgreSQL (users table), mirrored as a (:User) node in Neo4j.

    user_id is derived from username + email, see
    utils.id_generator.generate_user_id.
    """
    user_id: str
    username: str
    email: str
    full_name: str
    password_hash: str
    is_admin: bool = False
    birth_date: Optional[date] = None
    avatar: Optional[FileReference] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def to_public_dict(self) -> dict:
        """Profile fields safe to hand to other users"""
        return {
            'user_id': self.user_id,
            'username': self.username,
            'full_name': self.full_name,
            'is_admin': self.is_admin,
            'avatar_document_id': self.avatar.document_id if self.avatar else None,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
