"""End-to-end tests for the BuildEngine facade.

Covers the example scenarios: point pool round trip, exclusive replace,
nested option limit, continuation level-up, and level pruning.
"""

import logging

import pytest

from buildsmith.engine import BuildConfig, BuildEngine, BuildState, InvariantViolation
from buildsmith.models.constants import BuildMode
from buildsmith.models.selection import Selection, SourceKey
from buildsmith.parser.definition_parser import parse_definition_tree


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _module() -> dict:
    def choice(uid, name, items, max_choices):
        return {"id": uid, "type": "choice", "name": name, "items": items, "maxChoices": max_choices}

    return {
        "sources": {
            "destiny": {
                "name": "Destiny",
                "levels": [
                    {"level": 1, "rewards": {"health": 4, "attributes": {"might": 1}},
                     "unlocks": [choice("d1", "Signature", ["A", "B"], 1)]},
                    {"level": 2, "unlocks": [choice("d2", "Training", ["c", "d"], 1)]},
                    {"level": 3, "unlocks": [choice("d3", "Mastery", ["item", "e"], 1)]},
                    {"level": 4, "unlocks": [choice("d4", "Tier 4", ["f", "g"], 1)]},
                    {"level": 5, "unlocks": [choice("d5", "Tier 5", ["h", "i"], 1)]},
                ],
            },
            "flawsAndPerks": {
                "name": "Flaws & Perks",
                "origin": "independent",
                "levels": [{
                    "level": 1,
                    "unlocks": [{
                        "id": "pb", "type": "pointBuy", "name": "Flaws & Perks",
                        "pointPool": {"id": "pp", "name": "Perk Points", "initialValue": 10},
                        "groups": [
                            {"id": "perks", "name": "Perks", "items": ["X", "Y"], "pointModifier": "subtract"},
                            {"id": "flaws", "name": "Flaws", "items": ["F"], "pointModifier": "add"},
                        ],
                    }],
                }],
            },
        },
        "items": {
            "A": {"name": "Alpha", "itemType": "ability"},
            "B": {"name": "Beta", "itemType": "ability"},
            "c": {"name": "C", "itemType": "ability"},
            "d": {"name": "D", "itemType": "ability"},
            "e": {"name": "E", "itemType": "ability"},
            "f": {"name": "F4", "itemType": "ability"},
            "g": {"name": "G4", "itemType": "ability"},
            "h": {"name": "H5", "itemType": "ability"},
            "i": {"name": "I5", "itemType": "ability"},
            "item": {
                "name": "Versatile", "itemType": "ability", "maxChoices": 2,
                "options": [{"id": "o1"}, {"id": "o2"}, {"id": "o3"}],
            },
            "X": {"name": "Tough", "itemType": "perk", "weight": 4},
            "Y": {"name": "Lucky", "itemType": "perk", "weight": 8},
            "F": {"name": "Frail", "itemType": "flaw", "weight": 3},
        },
    }


def _engine(config: BuildConfig | None = None) -> BuildEngine:
    return BuildEngine.new_build(parse_definition_tree(_module()), config)


def _ids(engine: BuildEngine) -> list[str]:
    return [s.id for s in engine.state.selections]


# ===========================================================================
# Example scenarios
# ===========================================================================


class TestScenarios:
    def test_point_pool_round_trip(self):
        e = _engine()
        assert e.point_pool_summary("pb").current == 10
        assert e.select("X", "flawsAndPerks") == (True, None)
        summary = e.point_pool_summary("pb")
        assert summary.current == 6
        assert summary.total == 10
        assert e.is_complete("flawsAndPerks")
        assert e.deselect("X", "flawsAndPerks") == (True, None)
        assert e.point_pool_summary("pb").current == 10

    def test_exclusive_group_replace_and_reselect(self):
        e = _engine()
        e.select("A", "destiny", "d1")
        assert _ids(e) == ["A"]
        e.select("B", "destiny", "d1")
        assert _ids(e) == ["B"]
        before = e.state
        assert e.select("B", "destiny", "d1") == (False, None)
        assert e.state == before

    def test_nested_option_limit(self):
        e = _engine()
        e.set_target_level(3)
        e.select("item", "destiny", "d3")
        e.select_option("item", "destiny", "o1")
        e.select_option("item", "destiny", "o2")
        changed, reason = e.select_option("item", "destiny", "o3")
        assert not changed
        assert reason
        assert e.state.selection("item").selections == ["o1", "o2"]
        assert e.nested_option_state("item", "destiny", "o3").is_disabled

    def test_continuation_level_up(self):
        e = _engine()
        e.populate([], original_level=3)
        e.set_target_level(5)
        assert e.is_complete("destiny") is False
        errors = e.completion_error("destiny").splitlines()
        assert errors == [
            'From "Tier 4" (Lvl 4) you must choose 1 more item(s).',
            'From "Tier 5" (Lvl 5) you must choose 1 more item(s).',
        ]
        e.select("f", "destiny")
        e.select("h", "destiny")
        assert e.is_complete("destiny")

    def test_lowering_level_prunes(self):
        e = _engine()
        e.set_target_level(5)
        for item_id in ("A", "c", "e", "f", "h"):
            assert e.select(item_id, "destiny")[0]
        e.select("X", "flawsAndPerks")
        assert e.set_target_level(2) == (True, None)
        assert _ids(e) == ["A", "c", "X"]


# ===========================================================================
# Facade behaviour
# ===========================================================================


class TestSelect:
    def test_group_inferred_from_item(self):
        e = _engine()
        e.select("A", "destiny")
        assert e.state.selection("A").group_id == "d1"

    def test_item_from_another_group_cannot_fill_it(self):
        e = _engine()
        e.set_target_level(3)
        changed, reason = e.select("e", "destiny", "d1")
        assert not changed
        assert reason == '"E" is not offered in "Signature".'
        assert _ids(e) == []
        assert not e.is_complete("destiny")

    def test_unaffordable_rejected_before_mutation(self):
        e = _engine()
        e.select("X", "flawsAndPerks")
        changed, reason = e.select("Y", "flawsAndPerks")
        assert not changed
        assert reason == "Requires 8 Perk Points, but you only have 6 available."
        assert _ids(e) == ["X"]

    def test_flaw_makes_room(self):
        e = _engine()
        e.select("X", "flawsAndPerks")
        e.select("F", "flawsAndPerks")
        assert e.validation_state("Y", "flawsAndPerks").is_disabled is False
        assert e.select("Y", "flawsAndPerks") == (True, None)
        assert e.point_pool_summary("pb").current == 1

    def test_unknown_item(self, caplog):
        e = _engine()
        with caplog.at_level(logging.WARNING):
            changed, reason = e.select("nope", "destiny")
        assert not changed
        assert "nope" in reason
        assert e.validation_state("nope", "destiny").is_disabled

    def test_locked_level_gate(self):
        e = _engine()
        changed, reason = e.select("c", "destiny")
        assert not changed
        assert reason == "Unlocks at level 2 (target level is 1)."

    def test_source_key_objects_accepted(self):
        e = _engine()
        key = e.source_key("flawsAndPerks")
        assert key.is_independent
        assert e.select("X", key) == (True, None)
        assert e.state.selection("X").source == key

    def test_update_selection_quantity_gate(self):
        e = _engine()
        e.select("A", "destiny")
        changed, reason = e.update_selection("A", "destiny", quantity=2)
        assert not changed
        assert reason == "This item cannot be stacked."

    def test_update_nested_selections(self):
        e = _engine()
        e.set_target_level(3)
        e.select("item", "destiny")
        assert e.update_nested_selections("item", "destiny", ["o3"]) == (True, None)
        assert e.deselect_option("item", "destiny", "o3") == (True, None)


class TestStateAndNotifications:
    def test_state_is_a_deep_copy(self):
        e = _engine()
        e.select("A", "destiny")
        snap = e.state
        snap.selections[0].selections.append("tampered")
        snap.target_level = 9
        assert e.state.selection("A").selections == []
        assert e.state.target_level == 1

    def test_subscribe_and_unsubscribe(self):
        e = _engine()
        events = []
        unsubscribe = e.subscribe(events.append)
        e.select("A", "destiny")
        e.set_target_level(2)
        e.set_scalar_field("info", {"name": "Ash"})
        unsubscribe()
        e.select("c", "destiny")
        assert events == ["selections", "target_level", "info"]

    def test_populate_after_mutation(self):
        e = _engine()
        e.select("A", "destiny")
        with pytest.raises(ValueError, match="before any other mutation"):
            e.populate([], original_level=2)

    def test_populate_accepts_saved_dicts(self):
        e = _engine()
        e.populate(
            [{"id": "A", "source": "destiny", "groupId": "d1"},
             {"id": "X", "source": "flawsAndPerks", "groupId": "perks"},
             {"source": "destiny"}],
            attributes={"might": 3},
            original_level=2,
        )
        state = e.state
        assert state.mode is BuildMode.CONTINUATION
        assert [s.id for s in state.selections] == ["A", "X"]
        assert state.selection("X").source.is_independent

    def test_from_state(self):
        state = BuildState(target_level=2, selections=[Selection("A", SourceKey("destiny"), "d1")])
        e = BuildEngine.from_state(state, parse_definition_tree(_module()))
        assert _ids(e) == ["A"]
        e.select("c", "destiny")
        assert _ids(e) == ["A", "c"]
        assert [s.id for s in state.selections] == ["A"]

    def test_from_state_rejects_broken_state(self):
        state = BuildState(selections=[
            Selection("A", SourceKey("destiny"), "d1"),
            Selection("A", SourceKey("flawsAndPerks")),
        ])
        with pytest.raises(InvariantViolation):
            BuildEngine.from_state(state, parse_definition_tree(_module()))


# ===========================================================================
# Completion and output
# ===========================================================================


class TestFinalize:
    def test_incomplete_build_reports(self):
        e = _engine()
        build, report = e.finalize()
        assert build is None
        assert report == (
            'From "Signature" (Lvl 1) you must choose 1 more item(s).'
            "\n\nPlease enter a name."
        )
        assert not e.is_complete()
        assert e.relevant_pages() == ["destiny", "flawsAndPerks", "attributes", "info"]

    def test_complete_build_assembles(self):
        e = _engine()
        e.select("A", "destiny")
        e.select("X", "flawsAndPerks")
        e.select("F", "flawsAndPerks")
        e.set_scalar_field("attributes", {"might": 2})
        e.set_scalar_field("info", {"name": "Ash"})
        assert e.validate() == []
        build, report = e.finalize()
        assert report is None
        assert [s["id"] for s in build.abilities] == ["A"]
        assert [s["id"] for s in build.perks] == ["X"]
        assert [s["id"] for s in build.flaws] == ["F"]
        assert build.attributes == {"might": 3}
        assert build.health_bonus == 4

    def test_attribute_config(self):
        config = BuildConfig(attribute_names=("might",), attribute_values=(2,))
        e = _engine(config)
        e.select("A", "destiny")
        e.set_scalar_field("info", {"name": "Ash"})
        assert not e.is_complete()
        assert "missing: might" in e.completion_report()
        e.set_scalar_field("attributes", {"might": 2})
        assert e.is_complete()

    def test_assemble_ignores_completion(self):
        build = _engine().assemble()
        assert build.level == 1
        assert build.abilities == []
