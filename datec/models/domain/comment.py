"""
Comment domain model
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Comment:
    """
    Comment domain model

    Storage: PostgreSQL (comments table)

    Comments thread under a dataset through parent_comment_id. Comments are
    never deleted; admins disable and re-enable them (is_active).

    ID format: cmt_{dataset_id}_{epoch_ms}_{rand4}
    """
    comment_id: str
    dataset_id: str
    author_user_id: str
    author_username: str
    content: str
    parent_comment_id: Optional[str] = None
    is_active: bool = True
    created_at: Optional[datetime] = None

    # Moderation attribution
    disabled_at: Optional[datetime] = None
    disabled_by: Optional[str] = None
    enabled_at: Optional[datetime] = None
    enabled_by: Optional[str] = None

    @property
    def is_reply(self) -> bool:
        return self.parent_comment_id is not None

    def to_dict(self) -> dict:
        return {
            'comment_id': self.comment_id,
            'dataset_id': self.dataset_id,
            'author_user_id': self.author_user_id,
            'author_username': self.author_username,
            'content': self.content,
            'parent_comment_id': self.parent_comment_id,
            'is_active': self.is_active,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'disabled_at': self.disabled_at.isoformat() if self.disabled_at else None,
            'disabled_by': self.disabled_by,
        }


@dataclass
class CommentNode:
    """A comment with its ordered replies"""
    comment: Comment
    replies: List['CommentNode'] = field(default_factory=list)

    def to_dict(self) -> dict:
        data = self.comment.to_dict()
        data['replies'] = [reply.to_dict() for reply in self.replies]
        return data
