"""
Dataset domain model
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Optional
from urllib.parse import urlparse

from datec.utils.datetime_utils import parse_iso


class DatasetStatus(str, Enum):
    """Dataset review lifecycle"""
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ReviewAction(str, Enum):
    """Admin review decision"""
    APPROVE = "approve"
    REJECT = "reject"

    @property
    def resulting_status(self) -> DatasetStatus:
        return DatasetStatus.APPROVED if self is ReviewAction.APPROVE else DatasetStatus.REJECTED


class VideoPlatform(str, Enum):
    YOUTUBE = "youtube"
    VIMEO = "vimeo"
    OTHER = "other"


@dataclass
class FileReference:
    """Pointer from a metadata record to a blob document"""
    document_id: str
    filename: str
    mime_type: str
    size: int
    uploaded_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            'document_id': self.document_id,
            'filename': self.filename,
            'mime_type': self.mime_type,
            'size': self.size,
            'uploaded_at': self.uploaded_at.isoformat() if self.uploaded_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'FileReference':
        return cls(
            document_id=data['document_id'],
            filename=data['filename'],
            mime_type=data.get('mime_type') or 'application/octet-stream',
            size=int(data.get('size') or 0),
            uploaded_at=parse_iso(data.get('uploaded_at')),
        )


@dataclass
class VideoReference:
    """External tutorial video"""
    url: str
    platform: VideoPlatform = VideoPlatform.OTHER

    @classmethod
    def from_url(cls, url: str) -> 'VideoReference':
        host = (urlparse(url.strip()).hostname or '').lower()
        if host.endswith('youtube.com') or host == 'youtu.be':
            platform = VideoPlatform.YOUTUBE
        elif host.endswith('vimeo.com'):
            platform = VideoPlatform.VIMEO
        else:
            platform = VideoPlatform.OTHER
        return cls(url=url.strip(), platform=platform)

    def to_dict(self) -> dict:
        return {'url': self.url, 'platform': self.platform.value}

    @classmethod
    def from_dict(cls, data: dict) -> 'VideoReference':
        return cls(url=data['url'], platform=VideoPlatform(data.get('platform', 'other')))


@dataclass
class Dataset:
    """
    Dataset domain model - storage-agnostic representation

    Storage:
    - PostgreSQL (datasets table) - authoritative for existence and status
    - CouchDB - one document per data file plus optional header photo
    - Neo4j - (:Dataset) node, target of DOWNLOADED edges
    - Redis - download_count / vote_count mirrors

    ID format: {owner_username}_{YYYYMMDD}_{NNN}

    Invariant: is_public requires status == APPROVED.
    """
    dataset_id: str
    owner_user_id: str
    owner_username: str
    dataset_name: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    status: DatasetStatus = DatasetStatus.PENDING
    is_public: bool = False
    files: List[FileReference] = field(default_factory=list)
    header_photo: Optional[FileReference] = None
    video: Optional[VideoReference] = None
    parent_dataset_id: Optional[str] = None

    # Counters (download/vote mirrored in Redis, comment authoritative here)
    download_count: int = 0
    vote_count: int = 0
    comment_count: int = 0

    # Timestamps and review attribution
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    review_comment: Optional[str] = None

    def __post_init__(self):
        if isinstance(self.status, str):
            self.status = DatasetStatus(self.status)
        if self.is_public and self.status != DatasetStatus.APPROVED:
            raise ValueError(f"Dataset {self.dataset_id} cannot be public while {self.status.value}")

    @property
    def is_listed(self) -> bool:
        """Visible to everyone"""
        return self.is_public and self.status == DatasetStatus.APPROVED

    @property
    def is_clone(self) -> bool:
        return self.parent_dataset_id is not None

    def is_owned_by(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.owner_user_id == user_id

    def find_blob(self, document_id: str) -> Optional[FileReference]:
        """Data file or header photo with the given document id"""
        for ref in self.files:
            if ref.document_id == document_id:
                return ref
        if self.header_photo and self.header_photo.document_id == document_id:
            return self.header_photo
        return None

    def blob_document_ids(self) -> List[str]:
        ids = [ref.document_id for ref in self.files]
        if self.header_photo:
            ids.append(self.header_photo.document_id)
        return ids

    def to_dict(self) -> dict:
        return {
            'dataset_id': self.dataset_id,
            'owner_user_id': self.owner_user_id,
            'owner_username': self.owner_username,
            'dataset_name': self.dataset_name,
            'description': self.description,
            'tags': list(self.tags),
            'status': self.status.value,
            'is_public': self.is_public,
            'files': [ref.to_dict() for ref in self.files],
            'header_photo': self.header_photo.to_dict() if self.header_photo else None,
            'video': self.video.to_dict() if self.video else None,
            'parent_dataset_id': self.parent_dataset_id,
            'download_count': self.download_count,
            'vote_count': self.vote_count,
            'comment_count': self.comment_count,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'reviewed_at': self.reviewed_at.isoformat() if self.reviewed_at else None,
            'reviewed_by': self.reviewed_by,
            'review_comment': self.review_comment,
        }


@dataclass
class DownloadStats:
    """Download statistics visible to the owner and admins"""
    dataset_id: str
    total_downloads: int
    unique_downloaders: int
    recent_downloads: List[dict] = field(default_factory=list)
