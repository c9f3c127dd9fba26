"""Lookup index over the definition tree.

Answers the structural questions every other component asks: which group
does (source, group_id) name, at which level does it unlock, which
unlocks are active in a level window, which groups sit above a level.

Choice unlocks and point-buy sub-groups are resolved uniformly into
GroupRef records, so callers never branch on unlock kind just to find a
group's cardinality.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import assert_never

from buildsmith.models.constants import ReselectPolicy, SourceOrigin
from buildsmith.models.definition import (
    ChoiceUnlock,
    DefinitionTree,
    PointBuyGroup,
    PointBuyUnlock,
    RewardUnlock,
    SourceDefinition,
    Unlock,
)
from buildsmith.models.selection import SourceKey

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class GroupRef:
    """A resolved selectable group within one source."""

    source: str
    group_id: str
    name: str
    level: int
    items: tuple[str, ...]
    max_choices: int | None          # None = unlimited
    unlock: ChoiceUnlock | PointBuyUnlock
    point_group: PointBuyGroup | None = None

    @property
    def is_exclusive(self) -> bool:
        return self.max_choices == 1

    @property
    def is_point_buy(self) -> bool:
        return self.point_group is not None


def _normalize_max(value: int | None) -> int | None:
    """Treat missing, zero, and negative (-1) limits as unlimited."""
    if value is None or value <= 0:
        return None
    return value


def _groups_of(source: str, level: int, unlock: Unlock) -> list[GroupRef]:
    """Expand one unlock into the selectable groups it declares."""
    if isinstance(unlock, RewardUnlock):
        return []
    if isinstance(unlock, ChoiceUnlock):
        return [GroupRef(
            source=source,
            group_id=unlock.id,
            name=unlock.name,
            level=level,
            items=unlock.items,
            max_choices=_normalize_max(unlock.max_choices),
            unlock=unlock,
        )]
    if isinstance(unlock, PointBuyUnlock):
        return [
            GroupRef(
                source=source,
                group_id=group.id,
                name=group.name,
                level=level,
                items=group.items,
                max_choices=_normalize_max(group.max_choices),
                unlock=unlock,
                point_group=group,
            )
            for group in unlock.groups
        ]
    assert_never(unlock)


class UnlockIndex:
    """Read-only index of groups and unlocks for a DefinitionTree."""

    __slots__ = ("_tree", "_groups", "_groups_by_source", "_unlocks", "_pools_by_group")

    def __init__(self, tree: DefinitionTree) -> None:
        self._tree = tree
        self._groups: dict[tuple[str, str], GroupRef] = {}
        self._groups_by_source: dict[str, list[GroupRef]] = defaultdict(list)
        self._unlocks: dict[str, list[tuple[int, Unlock]]] = defaultdict(list)
        self._pools_by_group: dict[str, PointBuyUnlock] = {}

    # --- Construction --------------------------------------------------------

    @classmethod
    def build(cls, tree: DefinitionTree) -> UnlockIndex:
        """Index every source's level blocks."""
        index = cls(tree)
        for name, source in tree.sources.items():
            blocks = sorted(source.levels, key=lambda b: b.level)
            for block in blocks:
                for unlock in block.unlocks:
                    index._unlocks[name].append((block.level, unlock))
                    if isinstance(unlock, PointBuyUnlock):
                        for group in unlock.groups:
                            index._pools_by_group.setdefault(group.id, unlock)
                    for ref in _groups_of(name, block.level, unlock):
                        key = (name, ref.group_id)
                        if key in index._groups:
                            logger.warning(
                                "Duplicate group id %r in source %r (level %d); keeping level %d",
                                ref.group_id, name, ref.level, index._groups[key].level,
                            )
                            continue
                        index._groups[key] = ref
                        index._groups_by_source[name].append(ref)
        return index

    @property
    def tree(self) -> DefinitionTree:
        return self._tree

    # --- Sources -------------------------------------------------------------

    def source(self, name: str) -> SourceDefinition | None:
        return self._tree.sources.get(name)

    def source_names(self) -> list[str]:
        return list(self._tree.sources)

    def source_key(self, name: str) -> SourceKey:
        """Return the declared key for *name*, or a primary key if unknown."""
        source = self._tree.sources.get(name)
        if source is not None:
            return source.key
        logger.warning("Unknown source %r; treating it as a primary source", name)
        return SourceKey(name, SourceOrigin.PRIMARY)

    def reselect_policy(self, source: SourceKey) -> ReselectPolicy:
        definition = self._tree.sources.get(source.name)
        if definition is not None:
            return definition.effective_reselect_policy
        if source.origin is SourceOrigin.INDEPENDENT:
            return ReselectPolicy.TOGGLE
        return ReselectPolicy.KEEP

    def display_name(self, source: SourceKey | str) -> str:
        name = source.name if isinstance(source, SourceKey) else source
        definition = self._tree.sources.get(name)
        return definition.display_name if definition is not None else name

    # --- Groups --------------------------------------------------------------

    def group(self, source: str, group_id: str | None) -> GroupRef | None:
        """Resolve (source, group_id). Unknown groups are logged and absent."""
        if group_id is None:
            return None
        ref = self._groups.get((source, group_id))
        if ref is None:
            logger.warning("Group %r not found in source %r", group_id, source)
        return ref

    def find_group(self, source: str, group_id: str | None) -> GroupRef | None:
        """Like group(), but silent when the group is unknown."""
        if group_id is None:
            return None
        return self._groups.get((source, group_id))

    def groups(self, source: str) -> list[GroupRef]:
        return list(self._groups_by_source.get(source, []))

    def group_for_item(self, source: str, item_id: str) -> GroupRef | None:
        """First group in *source* listing *item_id*, in level order."""
        for ref in self._groups_by_source.get(source, []):
            if item_id in ref.items:
                return ref
        return None

    def group_level(self, source: str, group_id: str | None) -> int | None:
        ref = self.find_group(source, group_id)
        return ref.level if ref is not None else None

    def group_ids_above(self, level: int) -> set[str]:
        """Group ids of unlocks strictly above *level*, across all sources."""
        return {
            ref.group_id
            for ref in self._groups.values()
            if ref.level > level
        }

    def pool_for_group(self, group_id: str) -> PointBuyUnlock | None:
        return self._pools_by_group.get(group_id)

    # --- Unlocks -------------------------------------------------------------

    def unlocks(
        self,
        source: str,
        *,
        max_level: int | None = None,
        above_level: int | None = None,
    ) -> list[tuple[int, Unlock]]:
        """Return (level, unlock) pairs with above_level < level <= max_level."""
        out: list[tuple[int, Unlock]] = []
        for level, unlock in self._unlocks.get(source, []):
            if max_level is not None and level > max_level:
                continue
            if above_level is not None and level <= above_level:
                continue
            out.append((level, unlock))
        return out

    def unlock(self, unlock_id: str) -> Unlock | None:
        """Find an unlock by id in any source."""
        for pairs in self._unlocks.values():
            for _level, unlock in pairs:
                if unlock.id == unlock_id:
                    return unlock
        return None

    def rewards_up_to(self, level: int) -> list[tuple[str, int, RewardUnlock]]:
        """(source, level, reward) for every reward unlock at or below *level*."""
        out: list[tuple[str, int, RewardUnlock]] = []
        for source, pairs in self._unlocks.items():
            for unlock_level, unlock in pairs:
                if unlock_level <= level and isinstance(unlock, RewardUnlock):
                    out.append((source, unlock_level, unlock))
        return out
