"""
Comment tree assembly

build_comment_tree turns the flat comment list of a dataset into ordered
threads. It never trusts the stored parent links: a parent that is missing,
points at itself, or closes a cycle makes the comment a root.
"""
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional

from datec.models.domain.comment import Comment, CommentNode

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)

_VISITING = 1
_DONE = 2


def _created(comment: Comment) -> datetime:
    return comment.created_at or _EPOCH


def _resolve_parents(comments: List[Comment], index: Dict[str, CommentNode]) -> Dict[str, Optional[str]]:
    """Parent id per comment, with dangling links and cycles cut to None"""
    parent_of: Dict[str, Optional[str]] = {}
    for comment in comments:
        parent_id = comment.parent_comment_id
        if parent_id not in index or parent_id == comment.comment_id:
            parent_id = None
        parent_of[comment.comment_id] = parent_id

    state: Dict[str, int] = {}
    for start in parent_of:
        path = []
        current = start
        while current is not None and current not in state:
            state[current] = _VISITING
            path.append(current)
            current = parent_of[current]

        if current is not None and state[current] == _VISITING:
            cycle = path[path.index(current):]
            # earliest comment of the cycle becomes the root
            root = min(cycle, key=lambda cid: (_created(index[cid].comment), cid))
            parent_of[root] = None

        for comment_id in path:
            state[comment_id] = _DONE

    return parent_of


def build_comment_tree(comments: Iterable[Comment]) -> List[CommentNode]:
    """
    Assemble threads from a flat list of comments.

    Roots and every reply list are ordered by creation time ascending; ties
    keep input order. Duplicate ids keep the first occurrence.
    """
    unique: List[Comment] = []
    index: Dict[str, CommentNode] = {}
    for comment in comments:
        if comment.comment_id in index:
            continue
        index[comment.comment_id] = CommentNode(comment)
        unique.append(comment)

    parent_of = _resolve_parents(unique, index)

    roots: List[CommentNode] = []
    for comment in unique:
        node = index[comment.comment_id]
        parent_id = parent_of[comment.comment_id]
        if parent_id is None:
            roots.append(node)
        else:
            index[parent_id].replies.append(node)

    for node in index.values():
        node.replies.sort(key=lambda child: _created(child.comment))
    roots.sort(key=lambda root: _created(root.comment))
    return roots


def count_nodes(roots: Iterable[CommentNode]) -> int:
    total = 0
    stack = list(roots)
    while stack:
        node = stack.pop()
        total += 1
        stack.extend(node.replies)
    return total
