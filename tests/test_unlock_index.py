"""Tests for the unlock index over a synthetic definition tree."""

import logging

from buildsmith.graph.unlock_index import UnlockIndex
from buildsmith.models.constants import PointModifier, ReselectPolicy, SourceOrigin
from buildsmith.models.definition import (
    ChoiceUnlock,
    DefinitionTree,
    ItemDefinition,
    LevelBlock,
    PointBuyGroup,
    PointBuyUnlock,
    PointPool,
    RewardUnlock,
    Rewards,
    SourceDefinition,
)
from buildsmith.models.selection import SourceKey


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _tree() -> DefinitionTree:
    items = {
        i: ItemDefinition(id=i, item_type="ability", name=i.upper())
        for i in ("a", "b", "c", "d")
    }
    destiny = SourceDefinition(
        key=SourceKey("destiny"),
        name="Destiny",
        levels=(
            LevelBlock(3, (ChoiceUnlock("d3", "Tier 3", ("c", "d"), 2),)),
            LevelBlock(1, (
                RewardUnlock("d-r1", "Level 1 Bonus", Rewards(health=5, attributes={"might": 1})),
                ChoiceUnlock("d1", "Signature", ("a", "b"), 1),
            )),
        ),
    )
    perks = SourceDefinition(
        key=SourceKey("perks", SourceOrigin.INDEPENDENT),
        levels=(
            LevelBlock(1, (PointBuyUnlock(
                "pb", "Flaws & Perks", PointPool("pp", "Perk Points", 10),
                (
                    PointBuyGroup("perks-g", "Perks", ("a",), PointModifier.SUBTRACT),
                    PointBuyGroup("flaws-g", "Flaws", ("b",), PointModifier.ADD, max_choices=-1),
                ),
            ),)),
        ),
    )
    return DefinitionTree(sources={"destiny": destiny, "perks": perks}, items=items)


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------


class TestGroups:
    def test_choice_unlock_is_a_group(self):
        index = UnlockIndex.build(_tree())
        ref = index.group("destiny", "d1")
        assert ref is not None
        assert ref.level == 1
        assert ref.max_choices == 1
        assert ref.is_exclusive
        assert not ref.is_point_buy

    def test_point_buy_subgroups_resolve_uniformly(self):
        index = UnlockIndex.build(_tree())
        ref = index.group("perks", "perks-g")
        assert ref is not None
        assert ref.is_point_buy
        assert ref.point_group.point_modifier is PointModifier.SUBTRACT
        assert ref.max_choices is None

    def test_negative_limit_is_unlimited(self):
        index = UnlockIndex.build(_tree())
        assert index.group("perks", "flaws-g").max_choices is None

    def test_unknown_group_is_logged_and_absent(self, caplog):
        index = UnlockIndex.build(_tree())
        with caplog.at_level(logging.WARNING):
            assert index.group("destiny", "nope") is None
        assert "nope" in caplog.text

    def test_find_group_is_silent(self, caplog):
        index = UnlockIndex.build(_tree())
        with caplog.at_level(logging.WARNING):
            assert index.find_group("destiny", "nope") is None
        assert caplog.text == ""

    def test_groups_are_in_level_order(self):
        index = UnlockIndex.build(_tree())
        assert [ref.group_id for ref in index.groups("destiny")] == ["d1", "d3"]

    def test_group_for_item(self):
        index = UnlockIndex.build(_tree())
        assert index.group_for_item("destiny", "c").group_id == "d3"
        assert index.group_for_item("destiny", "zzz") is None

    def test_group_ids_above(self):
        index = UnlockIndex.build(_tree())
        assert index.group_ids_above(1) == {"d3"}
        assert index.group_ids_above(0) == {"d1", "d3", "perks-g", "flaws-g"}
        assert index.group_ids_above(3) == set()

    def test_pool_for_group(self):
        index = UnlockIndex.build(_tree())
        assert index.pool_for_group("flaws-g").id == "pb"
        assert index.pool_for_group("d1") is None

    def test_duplicate_group_keeps_first(self, caplog):
        tree = _tree()
        dup = SourceDefinition(
            key=SourceKey("dup"),
            levels=(
                LevelBlock(1, (ChoiceUnlock("g", "First", ("a",), 1),)),
                LevelBlock(2, (ChoiceUnlock("g", "Second", ("b",), 1),)),
            ),
        )
        tree.sources["dup"] = dup
        with caplog.at_level(logging.WARNING):
            index = UnlockIndex.build(tree)
        assert index.group("dup", "g").name == "First"
        assert "Duplicate group id" in caplog.text


# ---------------------------------------------------------------------------
# Unlocks and sources
# ---------------------------------------------------------------------------


class TestUnlocks:
    def test_level_window(self):
        index = UnlockIndex.build(_tree())
        ids = [u.id for _, u in index.unlocks("destiny", max_level=3, above_level=1)]
        assert ids == ["d3"]
        ids = [u.id for _, u in index.unlocks("destiny", max_level=1)]
        assert ids == ["d-r1", "d1"]

    def test_unlock_by_id(self):
        index = UnlockIndex.build(_tree())
        assert isinstance(index.unlock("pb"), PointBuyUnlock)
        assert index.unlock("missing") is None

    def test_rewards_up_to(self):
        index = UnlockIndex.build(_tree())
        rewards = index.rewards_up_to(1)
        assert [(s, lv, r.id) for s, lv, r in rewards] == [("destiny", 1, "d-r1")]
        assert index.rewards_up_to(0) == []


class TestSources:
    def test_source_key_and_policy(self):
        index = UnlockIndex.build(_tree())
        perks = index.source_key("perks")
        assert perks.is_independent
        assert index.reselect_policy(perks) is ReselectPolicy.TOGGLE
        assert index.reselect_policy(index.source_key("destiny")) is ReselectPolicy.KEEP

    def test_unknown_source_defaults_to_primary(self, caplog):
        index = UnlockIndex.build(_tree())
        with caplog.at_level(logging.WARNING):
            key = index.source_key("ghost")
        assert key == SourceKey("ghost", SourceOrigin.PRIMARY)
        assert "ghost" in caplog.text

    def test_display_name_falls_back_to_key(self):
        index = UnlockIndex.build(_tree())
        assert index.display_name("destiny") == "Destiny"
        assert index.display_name(SourceKey("perks")) == "perks"
        assert index.display_name("ghost") == "ghost"
