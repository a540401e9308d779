"""
Private message domain model
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Message:
    """
    Private message between two users

    Storage: PostgreSQL (messages table)

    Messages are immutable once sent. A thread is every message between two
    users in either direction, oldest first.

    ID format: msg_{epoch_ms}_{rand6}
    """
    message_id: str
    from_user_id: str
    from_username: str
    to_user_id: str
    content: str
    created_at: Optional[datetime] = None

    def to_dict(self, viewer_user_id: Optional[str] = None) -> dict:
        data = {
            'message_id': self.message_id,
            'from_user_id': self.from_user_id,
            'from_username': self.from_username,
            'to_user_id': self.to_user_id,
            'content': self.content,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }
        if viewer_user_id is not None:
            data['is_own_message'] = self.from_user_id == viewer_user_id
        return data


@dataclass
class MessageThread:
    """Conversation between two users as seen by one of them"""
    participant_1: str
    participant_2: str
    viewer_user_id: str
    messages: List[Message] = field(default_factory=list)

    @property
    def message_count(self) -> int:
        return len(self.messages)

    def to_dict(self) -> dict:
        return {
            'participant_1': self.participant_1,
            'participant_2': self.participant_2,
            'message_count': self.message_count,
            'messages': [m.to_dict(self.viewer_user_id) for m in self.messages],
        }
