"""Selection manager: the only writer of the selection store.

Every operation works on a private snapshot, applies the whole change,
checks the structural invariants, and only then commits. A rejected
operation therefore never leaves a half-applied state behind.

Operations answer with ``(changed, reason)``:

- ``(True, None)``   the change was applied
- ``(False, None)``  nothing to do (e.g. re-selecting a kept exclusive member)
- ``(False, "...")`` rejected; the reason is meant for the user
- ``(True, "...")``  applied in part; the reason says what was dropped
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from buildsmith.engine.build_config import BuildConfig
from buildsmith.engine.errors import InvariantViolation, ReentrantMutationError
from buildsmith.engine.invariants import find_violations
from buildsmith.engine.level_transition import LevelTransitionController
from buildsmith.engine.selection_store import BuildState, SelectionStore
from buildsmith.graph.unlock_index import UnlockIndex
from buildsmith.models.constants import (
    ATTRIBUTES,
    INFO,
    INVENTORY,
    PROTECTED_FIELDS,
    SELECTIONS,
    STATE,
    TARGET_LEVEL,
    BuildMode,
    ReselectPolicy,
)
from buildsmith.models.definition import ChoiceUnlock, ItemDefinition
from buildsmith.models.selection import InventoryEntry, Selection, SourceKey
from buildsmith.parser.definition_parser import parse_inventory_entry

logger = logging.getLogger(__name__)

Result = tuple[bool, str | None]

_UPDATABLE_FIELDS = frozenset({"quantity", "equipped"})
_PAYLOAD_FIELDS = frozenset({"quantity", "equipped", "selections"})

_COMMITTED = "This was committed at an earlier level and cannot be changed."


class SelectionManager:
    """Applies select/deselect/update operations to a SelectionStore."""

    __slots__ = ("_store", "_index", "_config", "_levels", "_mutated")

    def __init__(
        self,
        store: SelectionStore,
        index: UnlockIndex,
        config: BuildConfig | None = None,
    ) -> None:
        self._store = store
        self._index = index
        self._config = config or BuildConfig()
        self._levels = LevelTransitionController(index)
        self._mutated = False

    # --- Commit helpers ------------------------------------------------------

    def _begin(self) -> BuildState:
        """Working copy for one operation."""
        if self._store.dispatching:
            raise ReentrantMutationError(
                "Selections cannot be changed from inside a change listener"
            )
        return self._store.snapshot()

    def _commit(self, changed_field: str, state: BuildState) -> None:
        if self._config.check_invariants:
            problems = find_violations(state, self._index)
            if problems:
                raise InvariantViolation(problems)
        self._store.commit(changed_field, state)
        self._mutated = True

    # --- Population ----------------------------------------------------------

    def populate(
        self,
        selections: Iterable[Selection],
        attributes: Mapping[str, int] | None = None,
        inventory: Iterable[InventoryEntry | Mapping[str, Any]] | None = None,
        info: Mapping[str, str] | None = None,
        original_level: int = 1,
    ) -> None:
        """Hydrate the store from a previously assembled build.

        Enters continuation mode. Must run before any other mutation.
        """
        if self._mutated:
            raise ValueError("populate() must be called before any other mutation")
        cfg = self._config
        if original_level < cfg.min_level or original_level > cfg.max_level:
            raise ValueError(
                f"Original level must be {cfg.min_level}..{cfg.max_level}, got {original_level}"
            )
        state = self._begin()
        state.mode = BuildMode.CONTINUATION
        state.original_level = original_level
        state.target_level = original_level

        seen: set[str] = set()
        for sel in selections:
            if sel.id in seen:
                logger.warning("Dropping duplicate committed selection %r from %s", sel.id, sel.source)
                continue
            seen.add(sel.id)
            committed = copy.deepcopy(sel)
            committed.locked = True
            state.selections.append(committed)

        state.attributes = dict(attributes or {})
        state.inventory = [
            entry for entry in (parse_inventory_entry(raw) for raw in inventory or ())
            if entry is not None
        ]
        state.info = dict(info or {})
        self._commit(STATE, state)
        logger.info(
            "Populated %d committed selection(s) at level %d",
            len(state.selections), original_level,
        )

    # --- Top-level selections ------------------------------------------------

    def select_item(
        self,
        item: ItemDefinition,
        source: SourceKey,
        group_id: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> Result:
        """Select *item* for *source*, or toggle it off where that applies.

        Without a *group_id* the first group in *source* listing the item
        owns the selection.
        """
        state = self._begin()
        if group_id is None:
            ref = self._index.group_for_item(source.name, item.id)
            if ref is not None:
                group_id = ref.group_id
        else:
            ref = self._index.group(source.name, group_id)

        existing = state.selection(item.id)
        if existing is not None:
            if existing.source != source:
                other = self._index.display_name(existing.source)
                logger.debug("Refusing %r for %s: owned by %s", item.id, source, other)
                return False, f"This is already selected from {other}."
            if (
                ref is not None
                and ref.is_exclusive
                and self._index.reselect_policy(source) is ReselectPolicy.KEEP
            ):
                logger.debug("Re-select of %r in exclusive group %r is a no-op", item.id, ref.group_id)
                return False, None
            return self._remove(state, existing)

        if ref is not None:
            if item.id not in ref.items:
                logger.warning("Item %r is not offered in group %r of %s", item.id, ref.group_id, source)
                return False, f'"{item.name or item.id}" is not offered in "{ref.name}".'
            if ref.level > state.target_level:
                return False, f"Unlocks at level {ref.level} (target level is {state.target_level})."
            if state.is_locked_level(ref.level):
                return False, _COMMITTED
            members = state.selections_in_group(source, ref.group_id)
            if ref.is_exclusive:
                if any(member.locked for member in members):
                    return False, _COMMITTED
                state.selections = [
                    sel for sel in state.selections
                    if not (sel.source == source and sel.group_id == ref.group_id)
                ]
                for member in members:
                    logger.info("Replaced %r with %r in group %r", member.id, item.id, ref.group_id)
            elif ref.max_choices is not None and len(members) >= ref.max_choices:
                return False, (
                    f"You have already selected the maximum of {ref.max_choices} item(s) from this group."
                )

        selection = Selection(id=item.id, source=source, group_id=group_id)
        reason = self._apply_payload(selection, item, payload or {})
        state.selections.append(selection)
        self._commit(SELECTIONS, state)
        logger.info("Selected %r from %s (group %r)", item.id, source, group_id)
        return True, reason

    def deselect_item(self, item_id: str, source: SourceKey) -> Result:
        state = self._begin()
        existing = state.selection(item_id, source)
        if existing is None:
            return False, None
        return self._remove(state, existing)

    def update_selection(
        self,
        item_id: str,
        source: SourceKey,
        changes: Mapping[str, Any],
    ) -> Result:
        """Shallow-merge quantity/equipped into an existing selection.

        A quantity of 0 or less removes the selection; non-stackable items
        never hold more than one.
        """
        unknown = set(changes) - _UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update selection fields: {sorted(unknown)}")
        state = self._begin()
        sel = state.selection(item_id, source)
        if sel is None:
            return False, None
        if sel.locked:
            return False, _COMMITTED

        reason: str | None = None
        if "quantity" in changes:
            quantity = int(changes["quantity"])
            if quantity <= 0:
                return self._remove(state, sel)
            item = self._index.tree.item(item_id)
            if item is not None and not item.stackable and quantity > 1:
                quantity = 1
                reason = "This item cannot be stacked."
            sel.quantity = quantity
        if "equipped" in changes:
            sel.equipped = bool(changes["equipped"])

        if sel == self._store.snapshot().selection(item_id, source):
            return False, reason
        self._commit(SELECTIONS, state)
        logger.info("Updated %r from %s: %s", item_id, source, dict(changes))
        return True, reason

    # --- Nested options ------------------------------------------------------

    def update_nested_selections(
        self,
        item_id: str,
        source: SourceKey,
        option_ids: Iterable[str],
    ) -> Result:
        """Replace the chosen options of a selected item wholesale.

        Unknown options are dropped and the list is clamped to the item's
        option limit.
        """
        state = self._begin()
        sel = state.selection(item_id, source)
        if sel is None:
            return False, None
        if sel.locked:
            return False, _COMMITTED
        item = self._index.tree.item(item_id)
        chosen, reason = self._clean_options(item, item_id, option_ids)
        if chosen == sel.selections:
            return False, reason
        sel.selections = chosen
        self._commit(SELECTIONS, state)
        logger.info("Options of %r from %s set to %s", item_id, source, chosen)
        return True, reason

    def select_option(self, item_id: str, source: SourceKey, option_id: str) -> Result:
        """Add one option. A single-option item swaps its choice instead."""
        state = self._begin()
        sel = state.selection(item_id, source)
        item = self._index.tree.item(item_id)
        if sel is None or item is None:
            return False, "Select the item before choosing its options."
        if sel.locked:
            return False, _COMMITTED
        if option_id not in item.option_ids:
            return False, f'"{option_id}" is not an option of "{item.name or item.id}".'
        if option_id in sel.selections:
            return False, None
        limit = item.max_choices if item.max_choices and item.max_choices > 0 else None
        if limit == 1:
            sel.selections = [option_id]
        elif limit is not None and len(sel.selections) >= limit:
            return False, f'You can choose at most {limit} option(s) for "{item.name or item.id}".'
        else:
            sel.selections.append(option_id)
        self._commit(SELECTIONS, state)
        logger.info("Chose option %r of %r from %s", option_id, item_id, source)
        return True, None

    def deselect_option(self, item_id: str, source: SourceKey, option_id: str) -> Result:
        state = self._begin()
        sel = state.selection(item_id, source)
        if sel is None or option_id not in sel.selections:
            return False, None
        if sel.locked:
            return False, _COMMITTED
        sel.selections = [opt for opt in sel.selections if opt != option_id]
        self._commit(SELECTIONS, state)
        logger.info("Removed option %r of %r from %s", option_id, item_id, source)
        return True, None

    # --- Scalar fields -------------------------------------------------------

    def set_scalar_field(self, name: str, value: Any) -> Result:
        """Set one scalar field; a lower target level prunes stale selections."""
        if name in PROTECTED_FIELDS:
            raise ValueError(f"Field {name!r} cannot be set directly")
        state = self._begin()

        if name == TARGET_LEVEL:
            return self._set_target_level(state, value)
        if name == ATTRIBUTES:
            new_value: Any = {str(k): v for k, v in dict(value).items()}
            if new_value == state.attributes:
                return False, None
            state.attributes = new_value
        elif name == INVENTORY:
            new_value = [
                entry for entry in (parse_inventory_entry(raw) for raw in value)
                if entry is not None
            ]
            if new_value == state.inventory:
                return False, None
            state.inventory = new_value
        elif name == INFO:
            new_value = {str(k): str(v) for k, v in dict(value).items()}
            if new_value == state.info:
                return False, None
            state.info = new_value
        else:
            if name in state.fields and state.fields[name] == value:
                return False, None
            state.fields[name] = copy.deepcopy(value)

        self._commit(name, state)
        logger.debug("Field %r updated", name)
        return True, None

    def _set_target_level(self, state: BuildState, value: Any) -> Result:
        if isinstance(value, bool) or not isinstance(value, int):
            raise ValueError(f"Target level must be an int, got {value!r}")
        cfg = self._config
        if value < cfg.min_level or value > cfg.max_level:
            return False, f"Target level must be {cfg.min_level}..{cfg.max_level}, got {value}"
        if state.is_continuation and state.original_level is not None and value < state.original_level:
            return False, f"Target level cannot drop below the committed level {state.original_level}."
        if value == state.target_level:
            return False, None
        old_level = state.target_level
        state.target_level = value
        self._levels.prune(state, old_level)
        self._commit(TARGET_LEVEL, state)
        logger.info("Target level %d -> %d", old_level, value)
        return True, None

    # --- Conveniences --------------------------------------------------------

    def auto_select_forced_choices(self, source: SourceKey) -> list[str]:
        """Fill choice unlocks that offer exactly as many items as they require."""
        snapshot = self._store.snapshot()
        above = snapshot.original_level if snapshot.is_continuation else None
        selected: list[str] = []
        for _level, unlock in self._index.unlocks(
            source.name, max_level=snapshot.target_level, above_level=above,
        ):
            if not isinstance(unlock, ChoiceUnlock) or not unlock.items:
                continue
            if unlock.max_choices != len(unlock.items):
                continue
            for item_id in unlock.items:
                item = self._index.tree.item(item_id)
                if item is None:
                    logger.warning("Forced choice %r in %r is missing from the catalog", item_id, unlock.id)
                    continue
                if self._store.snapshot().is_selected(item_id):
                    continue
                payload = {"quantity": 1} if item.item_type in self._config.inventory_item_types else {}
                changed, _reason = self.select_item(item, source, unlock.id, payload)
                if changed:
                    selected.append(item_id)
        return selected

    # --- Internal helpers ----------------------------------------------------

    def _remove(self, state: BuildState, sel: Selection) -> Result:
        if sel.locked:
            return False, _COMMITTED
        state.selections = [
            other for other in state.selections
            if not (other.id == sel.id and other.source == sel.source)
        ]
        self._commit(SELECTIONS, state)
        logger.info("Deselected %r from %s", sel.id, sel.source)
        return True, None

    def _apply_payload(
        self,
        selection: Selection,
        item: ItemDefinition,
        payload: Mapping[str, Any],
    ) -> str | None:
        unknown = set(payload) - _PAYLOAD_FIELDS
        if unknown:
            raise ValueError(f"Unsupported selection payload fields: {sorted(unknown)}")
        reason: str | None = None
        if "quantity" in payload:
            quantity = max(1, int(payload["quantity"]))
            if not item.stackable and quantity > 1:
                quantity = 1
                reason = "This item cannot be stacked."
            selection.quantity = quantity
        if "equipped" in payload:
            selection.equipped = bool(payload["equipped"])
        if "selections" in payload:
            selection.selections, options_reason = self._clean_options(
                item, item.id, payload["selections"]
            )
            reason = reason or options_reason
        return reason

    def _clean_options(
        self,
        item: ItemDefinition | None,
        item_id: str,
        option_ids: Iterable[str],
    ) -> tuple[list[str], str | None]:
        chosen: list[str] = []
        for opt in option_ids:
            if opt not in chosen:
                chosen.append(opt)
        if item is None:
            logger.warning("Item %r is missing from the catalog; keeping options unchecked", item_id)
            return chosen, None
        valid = set(item.option_ids)
        unknown = [opt for opt in chosen if opt not in valid]
        if unknown:
            logger.warning("Dropping unknown option(s) %s of %r", unknown, item_id)
            chosen = [opt for opt in chosen if opt in valid]
        limit = item.max_choices
        if limit is not None and limit > 0 and len(chosen) > limit:
            logger.warning("Clamping %d option(s) of %r to %d", len(chosen), item_id, limit)
            return chosen[:limit], f'Only {limit} option(s) may be chosen for "{item.name or item.id}".'
        return chosen, None
