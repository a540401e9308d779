"""
Vote domain model
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional


@dataclass
class Vote:
    """
    One rating per (dataset, voter).

    Storage: PostgreSQL (votes table), count mirrored in Redis.
    """
    vote_id: str
    dataset_id: str
    voter_user_id: str
    rating: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self):
        if not 1 <= self.rating <= 5:
            raise ValueError(f"Rating must be between 1 and 5, got {self.rating}")

    def to_dict(self) -> dict:
        return {
            'vote_id': self.vote_id,
            'dataset_id': self.dataset_id,
            'voter_user_id': self.voter_user_id,
            'rating': self.rating,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass
class VoteSummary:
    dataset_id: str
    total_votes: int
    average_rating: Optional[float]
    votes: List[Vote] = field(default_factory=list)
