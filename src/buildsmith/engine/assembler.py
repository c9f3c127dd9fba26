"""Assembler: turn a finished BuildState into the plain output record.

The output groups selections by item category, merges stackable
inventory, and folds reward unlocks up to the target level into
attribute and health bonuses. Scalar fields pass through untouched.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from buildsmith.engine.selection_store import BuildState
from buildsmith.graph.unlock_index import UnlockIndex
from buildsmith.models.constants import (
    ASSEMBLED_CATEGORIES,
    ITEM_TYPE_CATEGORIES,
    BuildMode,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AssembledBuild:
    """The sole artifact handed to persistence and effect interpreters."""

    level: int
    mode: BuildMode
    original_level: int | None = None
    abilities: list[dict[str, Any]] = field(default_factory=list)
    perks: list[dict[str, Any]] = field(default_factory=list)
    flaws: list[dict[str, Any]] = field(default_factory=list)
    communities: list[dict[str, Any]] = field(default_factory=list)
    relationships: list[dict[str, Any]] = field(default_factory=list)
    inventory: list[dict[str, Any]] = field(default_factory=list)
    attributes: dict[str, float] = field(default_factory=dict)
    attribute_bonuses: dict[str, float] = field(default_factory=dict)
    health_bonus: float = 0
    info: dict[str, str] = field(default_factory=dict)
    fields: dict[str, Any] = field(default_factory=dict)

    def category(self, name: str) -> list[dict[str, Any]]:
        return getattr(self, name)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "level": self.level,
            "mode": self.mode.value,
        }
        if self.original_level is not None:
            out["originalLevel"] = self.original_level
        for name in ASSEMBLED_CATEGORIES:
            out[name] = [dict(entry) for entry in self.category(name)]
        out["attributes"] = dict(self.attributes)
        out["attributeBonuses"] = dict(self.attribute_bonuses)
        out["healthBonus"] = self.health_bonus
        out["info"] = dict(self.info)
        out["fields"] = dict(self.fields)
        return out


def combined_rewards(index: UnlockIndex, level: int) -> tuple[dict[str, float], float]:
    """Sum attribute and health rewards of every reward unlock <= *level*."""
    bonuses: dict[str, float] = {}
    health: float = 0
    for _source, _level, unlock in index.rewards_up_to(level):
        health += unlock.rewards.health
        for attr, value in unlock.rewards.attributes.items():
            bonuses[attr] = bonuses.get(attr, 0) + value
    return bonuses, health


def merge_inventory(
    entries: Iterable[dict[str, Any]],
    index: UnlockIndex,
) -> list[dict[str, Any]]:
    """Merge stackable lines by id; keep non-stackable lines as they are.

    Merged lines sum their quantities (missing quantity counts as 1),
    join their distinct sources with ", " and are equipped.
    """
    out: list[dict[str, Any]] = []
    stacks: dict[str, dict[str, Any]] = {}
    for entry in entries:
        item = index.tree.item(entry["id"])
        if item is None:
            logger.warning("Inventory item %r is missing from the catalog; dropping it", entry["id"])
            continue
        if not item.stackable:
            out.append(entry)
            continue
        stack = stacks.setdefault(entry["id"], {"quantity": 0, "sources": []})
        stack["quantity"] += entry.get("quantity") or 1
        for part in str(entry.get("source") or "").split(","):
            part = part.strip()
            if part and part not in stack["sources"]:
                stack["sources"].append(part)
    for item_id, stack in stacks.items():
        out.append({
            "id": item_id,
            "quantity": stack["quantity"],
            "equipped": True,
            "source": ", ".join(stack["sources"]),
        })
    return out


def assemble_build(state: BuildState, index: UnlockIndex) -> AssembledBuild:
    """Build the output record from *state*. Does not check completion."""
    build = AssembledBuild(
        level=state.target_level,
        mode=state.mode,
        original_level=state.original_level,
    )

    inventory_selections: list[dict[str, Any]] = []
    for sel in state.selections:
        item = index.tree.item(sel.id)
        if item is None:
            logger.warning("Selected item %r is missing from the catalog; skipping it", sel.id)
            continue
        category = ITEM_TYPE_CATEGORIES.get(item.item_type)
        if category is None:
            logger.debug("Item %r has type %r with no output category", sel.id, item.item_type)
            continue
        if category == "inventory":
            inventory_selections.append(sel.to_dict())
        else:
            build.category(category).append(sel.to_dict())

    build.inventory = merge_inventory(
        [entry.to_dict() for entry in state.inventory] + inventory_selections,
        index,
    )

    bonuses, health = combined_rewards(index, state.target_level)
    build.attribute_bonuses = bonuses
    build.health_bonus = health
    attributes: dict[str, float] = dict(state.attributes)
    for attr, value in bonuses.items():
        attributes[attr] = attributes.get(attr, 0) + value
    build.attributes = attributes

    build.info = dict(state.info)
    build.fields = dict(state.fields)
    logger.debug(
        "Assembled level %d build with %d selection(s)",
        build.level, len(state.selections),
    )
    return build
