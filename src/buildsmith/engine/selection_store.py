"""Selection store: the single source of truth for build choices.

The store holds one BuildState and an ordered list of change listeners.
Reads always hand out deep copies. Writes go through commit(), which
swaps in a fully prepared state and then notifies listeners once, in
subscription order. Only the SelectionManager calls commit().
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from buildsmith.engine.errors import ReentrantMutationError
from buildsmith.models.constants import BuildMode
from buildsmith.models.selection import InventoryEntry, Selection, SourceKey

logger = logging.getLogger(__name__)

ChangeListener = Callable[[str], None]


@dataclass(slots=True)
class BuildState:
    """Serialisable snapshot of all build choices."""

    target_level: int = 1
    mode: BuildMode = BuildMode.CREATION
    original_level: int | None = None
    selections: list[Selection] = field(default_factory=list)
    attributes: dict[str, int] = field(default_factory=dict)
    inventory: list[InventoryEntry] = field(default_factory=list)
    info: dict[str, str] = field(default_factory=dict)
    fields: dict[str, Any] = field(default_factory=dict)

    @property
    def is_continuation(self) -> bool:
        return self.mode is BuildMode.CONTINUATION

    def is_locked_level(self, level: int | None) -> bool:
        """True if *level* was committed before continuation began."""
        if not self.is_continuation or self.original_level is None or level is None:
            return False
        return level <= self.original_level

    def selection(self, item_id: str, source: SourceKey | None = None) -> Selection | None:
        """Find the selection of *item_id*, optionally restricted to *source*."""
        for sel in self.selections:
            if sel.id == item_id and (source is None or sel.source == source):
                return sel
        return None

    def is_selected(self, item_id: str) -> bool:
        return any(sel.id == item_id for sel in self.selections)

    def selections_from(self, source: SourceKey) -> list[Selection]:
        return [sel for sel in self.selections if sel.source == source]

    def selections_in_group(self, source: SourceKey, group_id: str) -> list[Selection]:
        return [
            sel for sel in self.selections
            if sel.source == source and sel.group_id == group_id
        ]


class SelectionStore:
    """Owns the BuildState and its listeners."""

    __slots__ = ("_state", "_listeners", "_dispatching")

    def __init__(self, state: BuildState | None = None) -> None:
        self._state = state or BuildState()
        self._listeners: list[ChangeListener] = []
        self._dispatching = False

    def snapshot(self) -> BuildState:
        """Deep copy of the current state; safe for callers to mutate."""
        return copy.deepcopy(self._state)

    @property
    def dispatching(self) -> bool:
        return self._dispatching

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def commit(self, changed_field: str, state: BuildState) -> None:
        """Replace the state and notify listeners of *changed_field*.

        Listeners must not mutate the store; doing so raises
        ReentrantMutationError and leaves the state untouched.
        """
        if self._dispatching:
            raise ReentrantMutationError(
                f"Cannot change {changed_field!r} from inside a change listener"
            )
        self._state = copy.deepcopy(state)
        self._dispatching = True
        try:
            for listener in list(self._listeners):
                listener(changed_field)
        finally:
            self._dispatching = False
