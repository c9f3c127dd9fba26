"""Level transition: drop selections whose unlock is no longer reachable."""

from __future__ import annotations

import logging

from buildsmith.engine.selection_store import BuildState
from buildsmith.graph.unlock_index import UnlockIndex
from buildsmith.models.selection import Selection

logger = logging.getLogger(__name__)


class LevelTransitionController:
    """Prunes a working BuildState after its target level changed.

    Only lowering the level removes anything. Raising it back never
    restores what was pruned.
    """

    __slots__ = ("_index",)

    def __init__(self, index: UnlockIndex) -> None:
        self._index = index

    def stale_group_ids(self, new_level: int) -> set[str]:
        """Group ids that unlock strictly above *new_level* in any source."""
        return self._index.group_ids_above(new_level)

    def prune(self, state: BuildState, old_level: int) -> list[Selection]:
        """Filter *state* in place; return the removed selections."""
        if state.target_level >= old_level:
            return []
        stale = self.stale_group_ids(state.target_level)
        if not stale:
            return []
        kept: list[Selection] = []
        removed: list[Selection] = []
        for sel in state.selections:
            if sel.group_id is not None and sel.group_id in stale:
                removed.append(sel)
            else:
                kept.append(sel)
        state.selections = kept
        if removed:
            logger.info(
                "Level %d -> %d pruned %d selection(s): %s",
                old_level, state.target_level, len(removed),
                ", ".join(sel.id for sel in removed),
            )
        return removed
