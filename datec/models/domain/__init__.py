"""
Domain models - storage-agnostic representations of datec entities
"""
from .user import User
from .dataset import (
    Dataset,
    DatasetStatus,
    DownloadStats,
    FileReference,
    ReviewAction,
    VideoPlatform,
    VideoReference,
)
from .comment import Comment, CommentNode
from .message import Message, MessageThread
from .vote import Vote, VoteSummary

__all__ = [
    "User",
    "Dataset",
    "DatasetStatus",
    "DownloadStats",
    "FileReference",
    "ReviewAction",
    "VideoPlatform",
    "VideoReference",
    "Comment",
    "CommentNode",
    "Message",
    "MessageThread",
    "Vote",
    "VoteSummary",
]
