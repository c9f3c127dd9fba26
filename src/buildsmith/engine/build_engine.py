"""Build engine: the one object callers talk to.

Wires the definition tree, the UnlockIndex, the SelectionStore and the
components that read or write it. Each mutating call asks the RuleEngine
first and only then hands the change to the SelectionManager, so the
store only ever sees changes that passed validation.

Items may be named by id and sources by name; both are resolved against
the definition tree here.
"""

from __future__ import annotations

import copy
import logging
from collections.abc import Iterable, Mapping
from typing import Any, Callable

from buildsmith.engine.assembler import AssembledBuild, assemble_build
from buildsmith.engine.build_config import BuildConfig
from buildsmith.engine.completion import CompletionEvaluator, CompletionIssue
from buildsmith.engine.errors import InvariantViolation
from buildsmith.engine.invariants import find_violations
from buildsmith.engine.point_pool import PointPoolSummary, point_pool_summary
from buildsmith.engine.rule_engine import RuleContext, RuleEngine, ValidationState
from buildsmith.engine.selection_manager import Result, SelectionManager
from buildsmith.engine.selection_store import BuildState, ChangeListener, SelectionStore
from buildsmith.graph.unlock_index import UnlockIndex
from buildsmith.models.constants import TARGET_LEVEL
from buildsmith.models.definition import DefinitionTree, ItemDefinition, PointBuyUnlock
from buildsmith.models.selection import InventoryEntry, Selection, SourceKey
from buildsmith.parser.definition_parser import parse_selection

logger = logging.getLogger(__name__)

SourceRef = SourceKey | str


class BuildEngine:
    """Selection engine for one build against one definition tree.

    Consumes the DefinitionTree and BuildConfig without modifying either.
    All state lives in the SelectionStore; `state` hands out deep copies.
    """

    __slots__ = ("_tree", "_index", "_config", "_store", "_manager", "_rules", "_completion")

    def __init__(
        self,
        tree: DefinitionTree,
        config: BuildConfig | None = None,
        index: UnlockIndex | None = None,
    ) -> None:
        self._tree = tree
        self._config = config or BuildConfig()
        self._index = index or UnlockIndex.build(tree)
        self._store = SelectionStore(BuildState(target_level=self._config.min_level))
        self._manager = SelectionManager(self._store, self._index, self._config)
        self._rules = RuleEngine(self._index)
        self._completion = CompletionEvaluator(self._index, self._config)

    # --- Factories ---------------------------------------------------------

    @classmethod
    def new_build(
        cls,
        tree: DefinitionTree,
        config: BuildConfig | None = None,
    ) -> BuildEngine:
        """Create a fresh engine in creation mode."""
        return cls(tree, config)

    @classmethod
    def from_state(
        cls,
        state: BuildState,
        tree: DefinitionTree,
        config: BuildConfig | None = None,
    ) -> BuildEngine:
        """Restore an engine from a previously captured BuildState."""
        engine = cls(tree, config)
        problems = find_violations(state, engine._index)
        if problems:
            raise InvariantViolation(problems)
        engine._store = SelectionStore(copy.deepcopy(state))
        engine._manager = SelectionManager(engine._store, engine._index, engine._config)
        return engine

    # --- Properties --------------------------------------------------------

    @property
    def state(self) -> BuildState:
        """Deep copy of the current state; never aliases the store."""
        return self._store.snapshot()

    @property
    def tree(self) -> DefinitionTree:
        return self._tree

    @property
    def index(self) -> UnlockIndex:
        return self._index

    @property
    def config(self) -> BuildConfig:
        return self._config

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Call *listener(field_name)* after every committed mutation."""
        return self._store.subscribe(listener)

    # --- Resolution helpers ------------------------------------------------

    def source_key(self, source: SourceRef) -> SourceKey:
        if isinstance(source, SourceKey):
            return source
        return self._index.source_key(source)

    def _item(self, item: ItemDefinition | str) -> ItemDefinition | None:
        if isinstance(item, ItemDefinition):
            return item
        found = self._tree.item(item)
        if found is None:
            logger.warning("Unknown item %r", item)
        return found

    # --- Population --------------------------------------------------------

    def populate(
        self,
        selections: Iterable[Selection | Mapping[str, Any]],
        attributes: Mapping[str, int] | None = None,
        inventory: Iterable[InventoryEntry | Mapping[str, Any]] | None = None,
        info: Mapping[str, str] | None = None,
        original_level: int = 1,
    ) -> None:
        """Enter continuation mode from an existing build. One-shot."""
        parsed: list[Selection] = []
        for raw in selections:
            sel = raw if isinstance(raw, Selection) else parse_selection(raw, self._tree)
            if sel is not None:
                parsed.append(sel)
        self._manager.populate(parsed, attributes, inventory, info, original_level)

    # --- Selections --------------------------------------------------------

    def select(
        self,
        item: ItemDefinition | str,
        source: SourceRef,
        group_id: str | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> Result:
        """Select an item (or toggle it off, where its group allows)."""
        definition = self._item(item)
        if definition is None:
            return False, f"Unknown item {item!r}."
        key = self.source_key(source)
        state = self._store.snapshot()
        if state.selection(definition.id) is None:
            verdict = self._rules.validation_state(definition, key, RuleContext(state, group_id))
            if verdict.is_disabled:
                logger.debug("Rejected %r from %s: %s", definition.id, key, verdict.reason)
                return False, verdict.reason
        return self._manager.select_item(definition, key, group_id, payload)

    def deselect(self, item_id: str, source: SourceRef) -> Result:
        return self._manager.deselect_item(item_id, self.source_key(source))

    def update_selection(self, item_id: str, source: SourceRef, **changes: Any) -> Result:
        """Change quantity and/or equipped on an existing selection."""
        key = self.source_key(source)
        if "quantity" in changes:
            item = self._tree.item(item_id)
            state = self._store.snapshot()
            sel = state.selection(item_id, key)
            if item is not None and sel is not None and int(changes["quantity"]) > sel.effective_quantity:
                verdict = self._rules.quantity_state(item, key, RuleContext(state, sel.group_id))
                if verdict.is_disabled:
                    return False, verdict.reason
        return self._manager.update_selection(item_id, key, changes)

    def update_nested_selections(
        self,
        item_id: str,
        source: SourceRef,
        option_ids: Iterable[str],
    ) -> Result:
        return self._manager.update_nested_selections(item_id, self.source_key(source), option_ids)

    def select_option(self, item_id: str, source: SourceRef, option_id: str) -> Result:
        return self._manager.select_option(item_id, self.source_key(source), option_id)

    def deselect_option(self, item_id: str, source: SourceRef, option_id: str) -> Result:
        return self._manager.deselect_option(item_id, self.source_key(source), option_id)

    def auto_select_forced_choices(self, source: SourceRef) -> list[str]:
        return self._manager.auto_select_forced_choices(self.source_key(source))

    # --- Scalar fields -----------------------------------------------------

    def set_scalar_field(self, name: str, value: Any) -> Result:
        return self._manager.set_scalar_field(name, value)

    def set_target_level(self, level: int) -> Result:
        """Shorthand for set_scalar_field("target_level", level)."""
        return self._manager.set_scalar_field(TARGET_LEVEL, level)

    # --- Queries -----------------------------------------------------------

    def validation_state(
        self,
        item: ItemDefinition | str,
        source: SourceRef,
        group_id: str | None = None,
    ) -> ValidationState:
        definition = self._item(item)
        if definition is None:
            return ValidationState(is_disabled=True, reason=f"Unknown item {item!r}.")
        context = RuleContext(self._store.snapshot(), group_id)
        return self._rules.validation_state(definition, self.source_key(source), context)

    def quantity_state(
        self,
        item: ItemDefinition | str,
        source: SourceRef,
        group_id: str | None = None,
    ) -> ValidationState:
        definition = self._item(item)
        if definition is None:
            return ValidationState(is_disabled=True, reason=f"Unknown item {item!r}.")
        context = RuleContext(self._store.snapshot(), group_id)
        return self._rules.quantity_state(definition, self.source_key(source), context)

    def nested_option_state(
        self,
        item: ItemDefinition | str,
        source: SourceRef,
        option_id: str,
    ) -> ValidationState:
        definition = self._item(item)
        if definition is None:
            return ValidationState(is_disabled=True, reason=f"Unknown item {item!r}.")
        return self._rules.nested_option_state(
            definition, self.source_key(source), option_id, self._store.snapshot()
        )

    def point_pool_summary(self, unlock: PointBuyUnlock | str) -> PointPoolSummary | None:
        """Pool summary for a point-buy unlock (or its id)."""
        if isinstance(unlock, str):
            found = self._index.unlock(unlock)
            if not isinstance(found, PointBuyUnlock):
                logger.warning("No point-buy unlock with id %r", unlock)
                return None
            unlock = found
        return point_pool_summary(unlock, self._store.snapshot().selections, self._tree.items)

    # --- Completion --------------------------------------------------------

    def relevant_pages(self) -> list[str]:
        return self._completion.relevant_pages(self._store.snapshot())

    def is_complete(self, page: str | None = None) -> bool:
        """True if *page* (or, without one, every relevant page) is complete."""
        state = self._store.snapshot()
        if page is None:
            return not self._completion.validate(state)
        return self._completion.is_complete(state, page)

    def completion_error(self, page: str) -> str:
        return self._completion.completion_error(self._store.snapshot(), page)

    def validate(self) -> list[CompletionIssue]:
        """Every unmet requirement across all relevant pages."""
        return self._completion.validate(self._store.snapshot())

    def completion_report(self) -> str:
        return self._completion.completion_report(self._store.snapshot())

    # --- Output ------------------------------------------------------------

    def assemble(self) -> AssembledBuild:
        """Assemble the current state whether or not it is complete."""
        return assemble_build(self._store.snapshot(), self._index)

    def finalize(self) -> tuple[AssembledBuild | None, str | None]:
        """Assemble if complete; otherwise return the completion report."""
        state = self._store.snapshot()
        if self._completion.validate(state):
            return None, self._completion.completion_report(state)
        return assemble_build(state, self._index), None
