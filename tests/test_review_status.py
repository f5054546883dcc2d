"""Tests for review marks and snapshot rendering."""

import pytest

from fakes import MemoryStore, make_leaf
from reviewtree.grouping import group_by_author
from reviewtree.render import render_rich_tree, tree_to_dict
from reviewtree.review_status import PENDING_KEY, REVIEWED_KEY, ReviewStatusStore
from reviewtree.storage import PersistenceError


class TestReviewStatusStore:
    def test_toggle_round_trip(self):
        backing = MemoryStore()
        status = ReviewStatusStore(backing)

        assert status.toggle_pending(5) is True
        assert status.is_pending(5)
        assert backing.data[PENDING_KEY] == [5]

        assert status.toggle_pending(5) is False
        assert not status.is_pending(5)
        assert backing.data[PENDING_KEY] == []

    def test_loads_existing_marks(self):
        status = ReviewStatusStore(MemoryStore({PENDING_KEY: [1, 2], REVIEWED_KEY: [3]}))
        assert status.counts([1, 3, 4]) == (1, 1)

    def test_clear_all(self):
        backing = MemoryStore({PENDING_KEY: [1, 2], REVIEWED_KEY: [3]})
        status = ReviewStatusStore(backing)
        assert status.clear_all() == 3
        assert status.counts([1, 2, 3]) == (0, 0)
        assert backing.data == {PENDING_KEY: [], REVIEWED_KEY: []}


    def test_failed_second_write_keeps_memory_in_step_with_disk(self):
        class ReviewedWriteFails(MemoryStore):
            def persist(self, key, value):
                if key == REVIEWED_KEY:
                    raise PersistenceError("disk full")
                super().persist(key, value)

        backing = ReviewedWriteFails({PENDING_KEY: [1], REVIEWED_KEY: [2]})
        status = ReviewStatusStore(backing)

        with pytest.raises(PersistenceError):
            status.clear_all()

        assert status.is_pending(1) == (1 in backing.data[PENDING_KEY])
        assert status.is_reviewed(2) == (2 in backing.data[REVIEWED_KEY])
        assert status.counts([1, 2]) == (0, 1)

    def test_unreadable_marks_start_empty(self):
        backing = MemoryStore({PENDING_KEY: "garbage", REVIEWED_KEY: [3]})
        status = ReviewStatusStore(backing)

        assert status.counts([3]) == (0, 1)
        assert backing.data[PENDING_KEY] == "garbage"


class TestRender:
    def test_tree_to_dict_carries_review_counts(self):
        status = ReviewStatusStore(MemoryStore({PENDING_KEY: [1], REVIEWED_KEY: [2, 3]}))
        tree = group_by_author([make_leaf(1, "Alice"), make_leaf(2, "Alice"), make_leaf(3, "Bob")], generation=4)

        data = tree_to_dict(tree, status)

        assert data["mode"] == "byAuthor"
        assert data["generation"] == 4
        alice = data["groups"][0]
        assert alice["key"] == "Alice"
        assert (alice["count"], alice["pending"], alice["reviewed"]) == (2, 1, 1)
        assert alice["authors"][0]["leaves"][0] == {
            "id": 1,
            "title": "PR 1",
            "author": "Alice",
            "status": "active",
            "isDraft": False,
            "pending": True,
            "reviewed": False,
        }

    def test_rich_tree_labels(self):
        tree = group_by_author([make_leaf(1, "Alice")])
        rendered = render_rich_tree(tree)
        assert len(rendered.children) == 1
        assert "Alice (1)" in str(rendered.children[0].label)
