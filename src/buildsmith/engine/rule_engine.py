"""Rule engine: may this item be picked right now, and if not, why not.

Read-only. Every check takes a BuildState snapshot and answers with a
ValidationState; nothing here raises for an ordinary "no".

Check order matters; the first failing check wins:

1. source conflict   - the item is already owned by another source
   group membership  - a named group does not list the item
2. group capacity    - the item's group is full (exclusive groups never are)
3. affordability     - a "subtract" group item costs more than the pool holds
4. level gate        - the group is above the target level, or was committed
                       before a level-up began
"""

from __future__ import annotations

from dataclasses import dataclass

from buildsmith.engine.point_pool import point_pool_summary
from buildsmith.engine.selection_store import BuildState
from buildsmith.graph.unlock_index import GroupRef, UnlockIndex
from buildsmith.models.constants import PointModifier
from buildsmith.models.definition import ItemDefinition
from buildsmith.models.selection import SourceKey


@dataclass(frozen=True, slots=True)
class ValidationState:
    is_disabled: bool = False
    reason: str = ""


ENABLED = ValidationState()


@dataclass(frozen=True, slots=True)
class RuleContext:
    """What the caller knows about where the item is offered."""

    state: BuildState
    group_id: str | None = None


def _disabled(reason: str) -> ValidationState:
    return ValidationState(is_disabled=True, reason=reason)


class RuleEngine:
    """Evaluates selection rules against a state snapshot."""

    __slots__ = ("_index",)

    def __init__(self, index: UnlockIndex) -> None:
        self._index = index

    # --- Public checks -------------------------------------------------------

    def validation_state(
        self,
        item: ItemDefinition,
        source: SourceKey,
        context: RuleContext,
    ) -> ValidationState:
        """Run all checks in order and return the first failure."""
        state = context.state
        conflict = self._check_source_conflict(item, source, state)
        if conflict.is_disabled:
            return conflict

        ref = self.resolve_group(item, source, context.group_id)
        checks = (
            self._check_group_membership,
            self._check_group_capacity,
            self._check_affordability,
            self._check_level_gate,
        )
        for check in checks:
            result = check(item, source, ref, state)
            if result.is_disabled:
                return result
        return ENABLED

    def quantity_state(
        self,
        item: ItemDefinition,
        source: SourceKey,
        context: RuleContext,
    ) -> ValidationState:
        """May the quantity of *item* be raised by one?

        Plain choice groups allow a quantity of 1; point-buy groups allow
        more while the pool can pay for it.
        """
        state = context.state
        sel = state.selection(item.id, source)
        if sel is None:
            return self.validation_state(item, source, context)
        if not item.stackable:
            return _disabled("This item cannot be stacked.")
        if sel.locked:
            return _disabled("This item was committed at an earlier level.")

        ref = self.resolve_group(item, source, sel.group_id or context.group_id)
        if ref is None or not ref.is_point_buy:
            if sel.effective_quantity >= 1:
                return _disabled("You can only select a quantity of 1 for this item here.")
            return ENABLED
        return self._affordable(item, ref, state)

    def nested_option_state(
        self,
        item: ItemDefinition,
        source: SourceKey,
        option_id: str,
        state: BuildState,
    ) -> ValidationState:
        """May *option_id* be added to the selected *item*?"""
        sel = state.selection(item.id, source)
        if sel is None:
            return _disabled(f'Select "{item.name or item.id}" before choosing its options.')
        if option_id not in item.option_ids:
            return _disabled(f'"{option_id}" is not an option of "{item.name or item.id}".')
        if option_id in sel.selections:
            return ENABLED
        if sel.locked:
            return _disabled("This item was committed at an earlier level.")
        limit = item.max_choices
        if limit is not None and limit > 0 and len(sel.selections) >= limit:
            return _disabled(
                f'You can choose at most {limit} option(s) for "{item.name or item.id}".'
            )
        return ENABLED

    def resolve_group(
        self,
        item: ItemDefinition,
        source: SourceKey,
        group_id: str | None,
    ) -> GroupRef | None:
        """The group *item* is offered in: the named one, else the first listing it."""
        if group_id is not None:
            return self._index.group(source.name, group_id)
        return self._index.group_for_item(source.name, item.id)

    # --- Individual rules ----------------------------------------------------

    def _check_source_conflict(
        self,
        item: ItemDefinition,
        source: SourceKey,
        state: BuildState,
    ) -> ValidationState:
        existing = state.selection(item.id)
        if existing is not None and existing.source != source:
            other = self._index.display_name(existing.source)
            return _disabled(f"This is already selected from {other}.")
        return ENABLED

    def _check_group_membership(
        self,
        item: ItemDefinition,
        source: SourceKey,
        ref: GroupRef | None,
        state: BuildState,
    ) -> ValidationState:
        if ref is None or item.id in ref.items:
            return ENABLED
        return _disabled(f'"{item.name or item.id}" is not offered in "{ref.name}".')

    def _check_group_capacity(
        self,
        item: ItemDefinition,
        source: SourceKey,
        ref: GroupRef | None,
        state: BuildState,
    ) -> ValidationState:
        if state.selection(item.id, source) is not None:
            return ENABLED
        if ref is None or ref.max_choices is None or ref.is_exclusive:
            return ENABLED
        chosen = len(state.selections_in_group(source, ref.group_id))
        if chosen >= ref.max_choices:
            return _disabled(
                f"You have already selected the maximum of {ref.max_choices} item(s) from this group."
            )
        return ENABLED

    def _check_affordability(
        self,
        item: ItemDefinition,
        source: SourceKey,
        ref: GroupRef | None,
        state: BuildState,
    ) -> ValidationState:
        if state.is_selected(item.id):
            return ENABLED
        if ref is None or not ref.is_point_buy:
            return ENABLED
        return self._affordable(item, ref, state)

    def _check_level_gate(
        self,
        item: ItemDefinition,
        source: SourceKey,
        ref: GroupRef | None,
        state: BuildState,
    ) -> ValidationState:
        if ref is None or state.selection(item.id, source) is not None:
            return ENABLED
        if ref.level > state.target_level:
            return _disabled(
                f"Unlocks at level {ref.level} (target level is {state.target_level})."
            )
        if state.is_locked_level(ref.level):
            return _disabled(
                f"Level {ref.level} choices were committed before this level-up."
            )
        return ENABLED

    def _affordable(
        self,
        item: ItemDefinition,
        ref: GroupRef,
        state: BuildState,
    ) -> ValidationState:
        group = ref.point_group
        if group is None or group.point_modifier is not PointModifier.SUBTRACT:
            return ENABLED
        summary = point_pool_summary(ref.unlock, state.selections, self._index.tree.items)
        cost = item.cost(group.cost_property)
        if cost > summary.current:
            return _disabled(
                f"Requires {cost:g} {summary.name}, but you only have {summary.current:g} available."
            )
        return ENABLED
