"""Point pool accounting for point-buy unlocks."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from buildsmith.models.constants import PointModifier
from buildsmith.models.definition import ItemDefinition, PointBuyUnlock
from buildsmith.models.selection import Selection

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PointPoolSummary:
    id: str
    name: str
    current: float
    total: float

    @property
    def overspent(self) -> float:
        return -self.current if self.current < 0 else 0


def selection_cost(
    selection: Selection,
    item: ItemDefinition,
    cost_property: str | None = None,
) -> float:
    """quantity x the item's cost property (weight by default)."""
    return selection.effective_quantity * item.cost(cost_property)


def point_pool_summary(
    unlock: PointBuyUnlock,
    selections: Iterable[Selection],
    items: Mapping[str, ItemDefinition],
) -> PointPoolSummary:
    """Summarise a pool: total is the initial value, current adds earned
    points from "add" groups and removes spent points from "subtract" groups.

    Pure; may be called on every render pass.
    """
    pool = unlock.point_pool
    current = pool.initial_value
    for sel in selections:
        if sel.group_id is None:
            continue
        group = unlock.group(sel.group_id)
        if group is None:
            continue
        item = items.get(sel.id)
        if item is None:
            logger.warning("Selected item %r is missing from the catalog; costing it 0", sel.id)
            continue
        cost = selection_cost(sel, item, group.cost_property)
        if group.point_modifier is PointModifier.ADD:
            current += cost
        else:
            current -= cost
    return PointPoolSummary(
        id=pool.id,
        name=pool.name,
        current=current,
        total=pool.initial_value,
    )
