"""
Comment service - bounded-depth threads with admin soft-delete

A root comment has depth 0. Replying to a comment at max_depth (5) is
rejected, so no active comment ever sits deeper than max_depth.
"""
import logging
from typing import List, Optional

from datec.errors import (
    ConflictError,
    ForbiddenError,
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
)
from datec.models.api.identity import Identity
from datec.models.domain.comment import Comment, CommentNode
from datec.utils.datetime_utils import utc_now
from datec.utils.id_generator import generate_comment_id
from .access import can_read, require_admin
from .comment_tree import build_comment_tree

logger = logging.getLogger(__name__)


class CommentService:

    def __init__(self, metadata, max_depth: int = 5, max_length: int = 2000):
        self.metadata = metadata
        self.max_depth = max_depth
        self.max_length = max_length

    async def depth(self, comment_id: str) -> int:
        """
        Number of parent hops from `comment_id` to its root.

        The walk is bounded by max_depth; a longer chain or a cycle can only
        come from corrupted data and raises InvalidStateError. A parent that
        no longer exists ends the walk as if the comment were a root.
        """
        comment = await self.metadata.comments.get_by_id(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")

        hops = 0
        seen = {comment.comment_id}
        while comment.parent_comment_id:
            if comment.parent_comment_id in seen:
                raise InvalidStateError(f"Comment thread of {comment_id} contains a cycle")
            parent = await self.metadata.comments.get_by_id(comment.parent_comment_id)
            if parent is None:
                break
            hops += 1
            if hops > self.max_depth:
                raise InvalidStateError(f"Comment thread of {comment_id} exceeds depth {self.max_depth}")
            seen.add(parent.comment_id)
            comment = parent
        return hops

    async def add_comment(self, dataset_id: str, author: Identity, content: str,
                          parent_comment_id: Optional[str] = None) -> Comment:
        content = (content or "").strip()
        if not content:
            raise InvalidInputError("Comment content is required")
        if len(content) > self.max_length:
            raise InvalidInputError(f"Comment content must be at most {self.max_length} characters")

        dataset = await self.metadata.datasets.get_by_id(dataset_id)
        if dataset is None:
            raise NotFoundError("Dataset not found")
        if not can_read(dataset, author):
            raise ForbiddenError("You cannot comment on this dataset")

        if parent_comment_id:
            parent = await self.metadata.comments.get_by_id(parent_comment_id)
            if parent is None:
                raise NotFoundError("Parent comment not found")
            if not parent.is_active:
                raise InvalidStateError("Cannot reply to a disabled comment")
            if parent.dataset_id != dataset_id:
                raise InvalidStateError("Parent comment belongs to a different dataset")
            if await self.depth(parent.comment_id) >= self.max_depth:
                raise InvalidStateError(f"Replies cannot be nested more than {self.max_depth} levels deep")

        now = utc_now()
        comment = Comment(
            comment_id=generate_comment_id(dataset_id, now),
            dataset_id=dataset_id,
            author_user_id=author.user_id,
            author_username=author.username,
            content=content,
            parent_comment_id=parent_comment_id or None,
            created_at=now,
        )
        return await self.metadata.comments.create(comment)

    async def list_tree(self, dataset_id: str, requester: Optional[Identity] = None) -> List[CommentNode]:
        """All comments of a dataset as threads, disabled ones flagged inactive"""
        dataset = await self.metadata.datasets.get_by_id(dataset_id)
        if dataset is None:
            raise NotFoundError("Dataset not found")
        if not can_read(dataset, requester):
            raise ForbiddenError("You cannot view comments on this dataset")
        comments = await self.metadata.comments.list_by_dataset(dataset_id)
        return build_comment_tree(comments)

    async def disable(self, comment_id: str, admin: Identity) -> Comment:
        return await self._set_active(comment_id, admin, False)

    async def enable(self, comment_id: str, admin: Identity) -> Comment:
        return await self._set_active(comment_id, admin, True)

    async def _set_active(self, comment_id: str, admin: Identity, is_active: bool) -> Comment:
        require_admin(admin)

        state = "enabled" if is_active else "disabled"
        comment = await self.metadata.comments.get_by_id(comment_id)
        if comment is None:
            raise NotFoundError("Comment not found")
        if comment.is_active == is_active:
            raise ConflictError(f"Comment is already {state}")

        updated = await self.metadata.comments.set_active(comment_id, is_active, admin.username)
        if updated is None:
            raise ConflictError(f"Comment is already {state}")

        logger.info(f"Comment {comment_id} {state} by {admin.username}")
        return updated
