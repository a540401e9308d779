"""
Repository layer - PostgreSQL access for the metadata store
"""
from .metadata_store import MetadataStore
from .user_repository import UserRepository
from .dataset_repository import DatasetRepository
from .comment_repository import CommentRepository
from .vote_repository import VoteRepository
from .message_repository import MessageRepository

__all__ = [
    'MetadataStore',
    'UserRepository',
    'DatasetRepository',
    'CommentRepository',
    'VoteRepository',
    'MessageRepository',
]
