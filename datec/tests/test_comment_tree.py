"""
Tests for comment thread assembly.

build_comment_tree must produce the same forest regardless of input order
and must never loop on corrupted parent links.
"""
from datetime import datetime, timedelta, timezone

from datec.models.domain.comment import Comment
from datec.services.comment_tree import build_comment_tree, count_nodes

T0 = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def comment(comment_id, parent=None, minute=0):
    return Comment(
        comment_id=comment_id,
        dataset_id="alice_20250101_001",
        author_user_id="u1",
        author_username="alice",
        content=f"text of {comment_id}",
        parent_comment_id=parent,
        created_at=T0 + timedelta(minutes=minute),
    )


def shape(nodes):
    return [(node.comment.comment_id, shape(node.replies)) for node in nodes]


class TestOrdering:

    def test_roots_and_replies_sorted_by_creation(self):
        comments = [
            comment("c3", minute=3),
            comment("r2", parent="c1", minute=5),
            comment("c1", minute=1),
            comment("r1", parent="c1", minute=2),
        ]
        assert shape(build_comment_tree(comments)) == [
            ("c1", [("r1", []), ("r2", [])]),
            ("c3", []),
        ]

    def test_input_order_does_not_matter(self):
        comments = [
            comment("a", minute=0),
            comment("b", parent="a", minute=1),
            comment("c", parent="b", minute=2),
            comment("d", minute=3),
        ]
        forward = shape(build_comment_tree(comments))
        backward = shape(build_comment_tree(list(reversed(comments))))
        assert forward == backward

    def test_rebuilding_from_flattened_tree_is_stable(self):
        comments = [
            comment("a", minute=0),
            comment("b", parent="a", minute=1),
            comment("c", parent="a", minute=2),
        ]
        first = build_comment_tree(comments)

        flattened = []
        stack = list(first)
        while stack:
            node = stack.pop()
            flattened.append(node.comment)
            stack.extend(node.replies)

        assert shape(build_comment_tree(flattened)) == shape(first)

    def test_empty(self):
        assert build_comment_tree([]) == []


class TestCorruptedLinks:

    def test_dangling_parent_becomes_root(self):
        roots = build_comment_tree([comment("a", parent="gone", minute=0)])
        assert shape(roots) == [("a", [])]

    def test_self_parent_becomes_root(self):
        roots = build_comment_tree([comment("a", parent="a")])
        assert shape(roots) == [("a", [])]

    def test_cycle_is_broken_at_earliest_comment(self):
        comments = [
            comment("x", parent="z", minute=0),
            comment("y", parent="x", minute=1),
            comment("z", parent="y", minute=2),
        ]
        roots = build_comment_tree(comments)
        assert shape(roots) == [("x", [("y", [("z", [])])])]
        assert count_nodes(roots) == 3

    def test_duplicate_ids_keep_first(self):
        first = comment("a", minute=0)
        duplicate = comment("a", parent="b", minute=9)
        roots = build_comment_tree([first, duplicate, comment("b", minute=1)])
        assert shape(roots) == [("a", []), ("b", [])]

    def test_to_dict_nests_replies(self):
        roots = build_comment_tree([comment("a"), comment("b", parent="a", minute=1)])
        data = roots[0].to_dict()
        assert data["comment_id"] == "a"
        assert data["replies"][0]["comment_id"] == "b"
        assert data["replies"][0]["replies"] == []
