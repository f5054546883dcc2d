"""Tests for the grouping coordinator — refresh, depth, mode and publishing."""

import pytest

from fakes import FailingStore, MemoryStore, scenario_source
from reviewtree.coordinator import GroupingCoordinator, RefreshError
from reviewtree.manual_groups import STATE_KEY, ManualGroupStore
from reviewtree.models import UNASSIGNED, UNRESOLVED_KEY, GroupingMode
from reviewtree.review_status import ReviewStatusStore


def _make_coordinator(source=None, backing=None, review=True):
    source = source or scenario_source()
    backing = backing if backing is not None else MemoryStore()
    return GroupingCoordinator(
        source,
        ManualGroupStore(backing),
        review_status=ReviewStatusStore(backing) if review else None,
        depth=1,
        max_depth=4,
    )


async def _ready(coordinator: GroupingCoordinator) -> GroupingCoordinator:
    await coordinator.refresh()
    await coordinator.wait_for_hierarchy()
    return coordinator


class TestRefresh:
    @pytest.mark.asyncio
    async def test_author_tree_published_before_hierarchy(self):
        coordinator = _make_coordinator()
        result = await coordinator.refresh()

        assert result.ok and result.affected == 3
        assert coordinator.mode is GroupingMode.BY_AUTHOR
        assert not coordinator.hierarchy_ready
        assert coordinator.get_grouping_tree().as_mapping() == {
            "Alice": {"Alice": [1, 3]},
            "Bob": {"Bob": [2]},
        }

        await coordinator.wait_for_hierarchy()
        assert coordinator.hierarchy_ready
        assert coordinator.resolved_depth == 1
        assert coordinator.get_tree(GroupingMode.BY_ANCESTOR).as_mapping() == {
            "entity:900": {"Alice": [1], "Bob": [2]},
            UNRESOLVED_KEY: {"Alice": [3]},
        }

    @pytest.mark.asyncio
    async def test_fetch_failure_keeps_published_tree(self):
        source = scenario_source()
        coordinator = await _ready(_make_coordinator(source))
        before = coordinator.get_grouping_tree()
        generation = coordinator.generation

        source.fail_fetch = True
        with pytest.raises(RefreshError):
            await coordinator.refresh()

        assert coordinator.get_grouping_tree() is before
        assert coordinator.generation == generation
        assert coordinator.hierarchy_ready

    @pytest.mark.asyncio
    async def test_second_refresh_is_coalesced(self):
        import asyncio

        source = scenario_source()
        coordinator = _make_coordinator(source)
        first, second = await asyncio.gather(coordinator.refresh(), coordinator.refresh())
        await coordinator.wait_for_hierarchy()

        assert first.detail is None
        assert second.detail == "coalesced"
        assert source.fetch_calls == 1

    @pytest.mark.asyncio
    async def test_refresh_reconciles_manual_groups(self):
        backing = MemoryStore()
        coordinator = _make_coordinator(backing=backing)
        group_id = coordinator.create_group("Team").detail
        coordinator.move_leaf(99, None, group_id)
        coordinator.move_leaf(1, None, group_id)

        await _ready(coordinator)

        assert coordinator.manual_store.get_group(group_id).member_leaf_ids == [1]
        assert backing.data[STATE_KEY]["groups"][0]["member_leaf_ids"] == [1]

    @pytest.mark.asyncio
    async def test_resolver_failure_still_completes_pass(self):
        source = scenario_source()
        source.failing_entities.add(100)
        coordinator = await _ready(_make_coordinator(source))

        tree = coordinator.get_tree(GroupingMode.BY_ANCESTOR)
        assert coordinator.hierarchy_ready
        assert tree.keys == [UNRESOLVED_KEY]
        assert tree.failed_count == 2

        result = await coordinator.set_depth(0)
        tree = coordinator.get_tree(GroupingMode.BY_ANCESTOR)
        assert result.detail == "cached"
        assert tree.failed_count == 2
        assert tree.as_mapping()[UNRESOLVED_KEY] == {"Alice": [1], "Bob": [2]}

    @pytest.mark.asyncio
    async def test_corrupt_stored_state_does_not_block_startup(self):
        backing = MemoryStore({STATE_KEY: {"groups": 7}, "pendingMyReviewPRs": {"x": 1}})
        coordinator = await _ready(_make_coordinator(backing=backing))

        assert coordinator.hierarchy_ready
        assert coordinator.manual_store.groups == []
        assert coordinator.create_group("Team").ok


class TestSetDepth:
    @pytest.mark.asyncio
    async def test_lower_depth_regroups_from_cache(self):
        source = scenario_source()
        coordinator = await _ready(_make_coordinator(source))
        calls = (len(source.chain_calls), len(source.link_calls))

        result = await coordinator.set_depth(0)

        assert result.ok and result.detail == "cached"
        assert coordinator.hierarchy_ready
        assert coordinator.get_tree(GroupingMode.BY_ANCESTOR).as_mapping() == {
            "entity:200": {"Alice": [3]},
            "entity:100": {"Alice": [1], "Bob": [2]},
        }
        assert (len(source.chain_calls), len(source.link_calls)) == calls

        result = await coordinator.set_depth(1)
        assert result.detail == "cached"
        assert (len(source.chain_calls), len(source.link_calls)) == calls

    @pytest.mark.asyncio
    async def test_deeper_level_loads_in_background(self):
        coordinator = await _ready(_make_coordinator())

        result = await coordinator.set_depth(2)
        assert result.detail == "loading"
        assert not coordinator.hierarchy_ready

        await coordinator.wait_for_hierarchy()
        assert coordinator.resolved_depth == 2
        assert coordinator.get_tree(GroupingMode.BY_ANCESTOR).depth == 2

    @pytest.mark.asyncio
    async def test_out_of_range_rejected(self):
        coordinator = _make_coordinator()
        assert not (await coordinator.set_depth(5)).ok
        assert not (await coordinator.set_depth(-1)).ok
        assert coordinator.depth == 1
        assert coordinator.generation == 0

    @pytest.mark.asyncio
    async def test_stale_pass_is_dropped(self):
        import asyncio

        source = scenario_source()
        source.gate = asyncio.Event()
        coordinator = _make_coordinator(source)
        published = []
        coordinator.on_grouping_changed(lambda: published.append(coordinator.generation))

        await coordinator.refresh()
        first_pass = coordinator._hierarchy_task
        await coordinator.set_depth(0)
        source.gate.set()
        await first_pass
        await coordinator.wait_for_hierarchy()

        tree = coordinator.get_tree(GroupingMode.BY_ANCESTOR)
        assert tree.depth == 0
        assert tree.generation == 2
        # refresh, set_depth, and only the newer pass
        assert published == [1, 2, 2]


class TestSetMode:
    @pytest.mark.asyncio
    async def test_ancestor_rejected_while_loading(self):
        coordinator = _make_coordinator()
        await coordinator.refresh()

        assert coordinator.set_mode(GroupingMode.BY_ANCESTOR) is False
        assert coordinator.mode is GroupingMode.BY_AUTHOR

        await coordinator.wait_for_hierarchy()
        assert coordinator.set_mode(GroupingMode.BY_ANCESTOR) is True
        assert coordinator.get_grouping_tree().mode is GroupingMode.BY_ANCESTOR

    @pytest.mark.asyncio
    async def test_ancestor_mode_restored_after_refresh(self):
        coordinator = await _ready(_make_coordinator())
        coordinator.set_mode(GroupingMode.BY_ANCESTOR)

        await coordinator.refresh()
        assert coordinator.mode is GroupingMode.BY_AUTHOR

        await coordinator.wait_for_hierarchy()
        assert coordinator.mode is GroupingMode.BY_ANCESTOR

    @pytest.mark.asyncio
    async def test_user_choice_during_loading_wins(self):
        coordinator = await _ready(_make_coordinator())
        coordinator.set_mode(GroupingMode.BY_ANCESTOR)

        await coordinator.refresh()
        coordinator.set_mode(GroupingMode.MANUAL)
        await coordinator.wait_for_hierarchy()

        assert coordinator.mode is GroupingMode.MANUAL

    @pytest.mark.asyncio
    async def test_manual_mode_tree(self):
        coordinator = await _ready(_make_coordinator())
        group_id = coordinator.create_group("Team").detail
        coordinator.move_leaf(2, None, group_id)

        assert coordinator.set_mode(GroupingMode.MANUAL)
        assert coordinator.get_grouping_tree().as_mapping() == {
            group_id: {"Bob": [2]},
            UNASSIGNED: {"Alice": [1, 3]},
        }


class TestNotifications:
    @pytest.mark.asyncio
    async def test_listener_and_unsubscribe(self):
        coordinator = _make_coordinator()
        calls = []
        unsubscribe = coordinator.on_grouping_changed(lambda: calls.append(1))

        await _ready(coordinator)
        assert len(calls) == 2

        unsubscribe()
        coordinator.create_group("A")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_failing_listener_does_not_break_publish(self):
        coordinator = _make_coordinator()
        seen = []

        def broken():
            raise RuntimeError("boom")

        coordinator.on_grouping_changed(broken)
        coordinator.on_grouping_changed(lambda: seen.append(1))
        await _ready(coordinator)
        assert len(seen) == 2


class TestMutations:
    def test_create_group_returns_id(self):
        coordinator = _make_coordinator()
        result = coordinator.create_group("Team")
        assert result.ok and result.detail == "manual-1"

    def test_missing_group_reports_failure(self):
        coordinator = _make_coordinator()
        assert not coordinator.rename_group("manual-7", "x").ok
        assert not coordinator.delete_group("manual-7").ok
        assert not coordinator.move_leaf(1, None, "manual-7").ok

    def test_persistence_failure_reported(self):
        backing = FailingStore()
        coordinator = _make_coordinator(backing=backing)
        group_id = coordinator.create_group("Team").detail

        backing.failing = True
        result = coordinator.move_leaf(1, None, group_id)

        assert not result.ok
        assert "disk full" in result.detail
        assert coordinator.manual_store.group_of(1) is None

    @pytest.mark.asyncio
    async def test_move_author_leaves_uses_current_leaves(self):
        coordinator = await _ready(_make_coordinator())
        group_id = coordinator.create_group("Team").detail

        result = coordinator.move_author_leaves("Alice", None, group_id)

        assert result.ok and result.affected == 2
        assert coordinator.manual_store.get_group(group_id).member_leaf_ids == [1, 3]

    def test_review_toggles(self):
        coordinator = _make_coordinator()
        assert coordinator.toggle_pending(1).detail == "on"
        assert coordinator.toggle_pending(1).detail == "off"
        assert coordinator.toggle_reviewed(2).detail == "on"
        assert coordinator.clear_review_marks().affected == 1

    def test_review_without_store(self):
        coordinator = _make_coordinator(review=False)
        assert not coordinator.toggle_pending(1).ok
