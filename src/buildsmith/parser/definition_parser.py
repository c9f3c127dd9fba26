"""Parse JSON-shaped definition data into the frozen definition model.

Input mirrors the module data files (camelCase keys)::

    {
      "sources": {
        "destiny": {
          "name": "Destiny", "origin": "primary",
          "levels": [
            {"level": 1, "rewards": {"health": 2},
             "unlocks": [{"id": "d1", "type": "choice", "name": "Signature",
                          "items": ["a", "b"], "maxChoices": 1}]}
          ]
        }
      },
      "items": {"a": {"name": "A", "itemType": "ability", "weight": 1}}
    }

Malformed entries are logged at WARNING and skipped, so one bad record
never prevents the rest of a module from loading.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

from buildsmith.models.constants import (
    PointModifier,
    ReselectPolicy,
    SourceOrigin,
    UnlockType,
)
from buildsmith.models.definition import (
    ChoiceUnlock,
    DefinitionTree,
    ItemDefinition,
    ItemOption,
    LevelBlock,
    PointBuyGroup,
    PointBuyUnlock,
    PointPool,
    RewardUnlock,
    Rewards,
    SourceDefinition,
    Unlock,
)
from buildsmith.models.selection import InventoryEntry, Selection, SourceKey

logger = logging.getLogger(__name__)

# Item keys that are not copied into ItemDefinition.properties.
_ITEM_KEYS = frozenset({
    "id", "name", "description", "itemType", "type", "weight",
    "stackable", "options", "maxChoices",
})


def _opt_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    return int(value)


def _str_tuple(values: Any) -> tuple[str, ...]:
    if not isinstance(values, (list, tuple)):
        return ()
    return tuple(str(v) for v in values)


def _mapping(value: Any, what: str) -> Mapping[str, Any]:
    """*value* if it is an object; otherwise log and treat it as empty."""
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        logger.warning("Ignoring %s: expected an object, got %s", what, type(value).__name__)
        return {}
    return value


# ---------------------------------------------------------------------------
# Items
# ---------------------------------------------------------------------------


def parse_item(item_id: str, raw: Mapping[str, Any]) -> ItemDefinition:
    """Parse one catalog entry. Extra numeric keys become cost properties."""
    options = tuple(
        ItemOption(id=str(opt["id"]), name=str(opt.get("name", "")))
        if isinstance(opt, Mapping) else ItemOption(id=str(opt))
        for opt in raw.get("options") or ()
    )
    properties = {
        key: float(value)
        for key, value in raw.items()
        if key not in _ITEM_KEYS
        and isinstance(value, (int, float)) and not isinstance(value, bool)
    }
    return ItemDefinition(
        id=str(raw.get("id", item_id)),
        item_type=str(raw.get("itemType") or raw.get("type") or ""),
        name=str(raw.get("name", "")),
        description=str(raw.get("description", "")),
        weight=float(raw.get("weight") or 0),
        stackable=bool(raw.get("stackable", False)),
        options=options,
        max_choices=_opt_int(raw.get("maxChoices")),
        properties=properties,
    )


def parse_items(raw: Mapping[str, Any]) -> dict[str, ItemDefinition]:
    items: dict[str, ItemDefinition] = {}
    for item_id, entry in raw.items():
        if not isinstance(entry, Mapping):
            logger.warning("Skipping item %r: expected an object, got %s", item_id, type(entry).__name__)
            continue
        try:
            item = parse_item(str(item_id), entry)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed item %r: %s", item_id, exc)
            continue
        items[item.id] = item
    return items


# ---------------------------------------------------------------------------
# Unlocks
# ---------------------------------------------------------------------------


def _parse_rewards(raw: Any) -> Rewards:
    raw = _mapping(raw, "rewards")
    attributes = {
        str(k): float(v) for k, v in _mapping(raw.get("attributes"), "reward attributes").items()
    }
    return Rewards(health=float(raw.get("health") or 0), attributes=attributes)


def _parse_point_group(raw: Mapping[str, Any]) -> PointBuyGroup:
    return PointBuyGroup(
        id=str(raw["id"]),
        name=str(raw.get("name", "")),
        items=_str_tuple(raw.get("items")),
        point_modifier=PointModifier(raw.get("pointModifier", PointModifier.SUBTRACT.value)),
        cost_property=raw.get("costProperty"),
        max_choices=_opt_int(raw.get("maxChoices")),
    )


def parse_unlock(raw: Mapping[str, Any]) -> Unlock:
    """Parse one unlock entry by its "type" tag."""
    kind = UnlockType(raw["type"])
    unlock_id = str(raw["id"])
    name = str(raw.get("name", ""))
    if kind is UnlockType.REWARD:
        return RewardUnlock(id=unlock_id, name=name, rewards=_parse_rewards(raw.get("rewards")))
    if kind is UnlockType.CHOICE:
        return ChoiceUnlock(
            id=unlock_id,
            name=name,
            items=_str_tuple(raw.get("items")),
            max_choices=_opt_int(raw.get("maxChoices")),
            item_type=str(raw.get("itemType", "")),
        )
    pool_raw = _mapping(raw.get("pointPool"), f"point pool of {unlock_id!r}")
    pool = PointPool(
        id=str(pool_raw.get("id", unlock_id)),
        name=str(pool_raw.get("name", "Points")),
        initial_value=float(pool_raw.get("initialValue") or 0),
    )
    groups = []
    for group_raw in raw.get("groups") or ():
        try:
            groups.append(_parse_point_group(group_raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed point-buy group in %r: %s", unlock_id, exc)
    return PointBuyUnlock(id=unlock_id, name=name, point_pool=pool, groups=tuple(groups))


def _parse_level_block(source: str, raw: Mapping[str, Any]) -> LevelBlock:
    level = int(raw["level"])
    unlocks: list[Unlock] = []
    # Level-wide rewards become a synthetic reward unlock.
    if raw.get("rewards"):
        unlocks.append(RewardUnlock(
            id=f"{source}-lvl-{level}",
            name=f"Level {level} Bonus",
            rewards=_parse_rewards(raw["rewards"]),
        ))
    for unlock_raw in raw.get("unlocks") or ():
        try:
            unlocks.append(parse_unlock(unlock_raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed unlock in %r level %d: %s", source, level, exc)
    return LevelBlock(level=level, unlocks=tuple(unlocks))


# ---------------------------------------------------------------------------
# Sources and the whole tree
# ---------------------------------------------------------------------------


def parse_source(name: str, raw: Mapping[str, Any]) -> SourceDefinition:
    origin = SourceOrigin(raw.get("origin", SourceOrigin.PRIMARY.value))
    policy_raw = raw.get("reselectPolicy")
    levels = []
    for block_raw in raw.get("levels") or ():
        try:
            levels.append(_parse_level_block(name, block_raw))
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed level block in %r: %s", name, exc)
    levels.sort(key=lambda block: block.level)
    return SourceDefinition(
        key=SourceKey(name, origin),
        name=str(raw.get("name", "")),
        description=str(raw.get("description", "")),
        levels=tuple(levels),
        reselect_policy=ReselectPolicy(policy_raw) if policy_raw else None,
    )


def parse_definition_tree(raw: Mapping[str, Any]) -> DefinitionTree:
    """Parse a full module: {"sources": {...}, "items": {...}}."""
    sources: dict[str, SourceDefinition] = {}
    for name, source_raw in _mapping(raw.get("sources"), "sources").items():
        if not isinstance(source_raw, Mapping):
            logger.warning("Skipping source %r: expected an object", name)
            continue
        try:
            sources[str(name)] = parse_source(str(name), source_raw)
        except (KeyError, TypeError, ValueError) as exc:
            logger.warning("Skipping malformed source %r: %s", name, exc)
    items = parse_items(_mapping(raw.get("items"), "items"))
    logger.debug("Parsed %d source(s) and %d item(s)", len(sources), len(items))
    return DefinitionTree(sources=sources, items=items)


# ---------------------------------------------------------------------------
# Saved builds
# ---------------------------------------------------------------------------


def parse_selection(raw: Mapping[str, Any], tree: DefinitionTree) -> Selection | None:
    """Parse a saved selection; the source name resolves to the tree's key."""
    try:
        item_id = str(raw["id"])
        source_name = str(raw["source"])
    except (KeyError, TypeError) as exc:
        logger.warning("Skipping malformed selection %r: %s", raw, exc)
        return None
    definition = tree.source(source_name)
    if definition is None:
        logger.warning("Selection %r names unknown source %r", item_id, source_name)
        key = SourceKey(source_name)
    else:
        key = definition.key
    try:
        quantity = _opt_int(raw.get("quantity"))
    except (TypeError, ValueError) as exc:
        logger.warning("Skipping selection %r with bad quantity: %s", item_id, exc)
        return None
    equipped = raw.get("equipped")
    return Selection(
        id=item_id,
        source=key,
        group_id=raw.get("groupId"),
        selections=list(_str_tuple(raw.get("selections"))),
        quantity=quantity,
        equipped=bool(equipped) if equipped is not None else None,
    )


def parse_inventory_entry(raw: InventoryEntry | Mapping[str, Any]) -> InventoryEntry | None:
    """Accept an InventoryEntry or its plain form; None if malformed."""
    if isinstance(raw, InventoryEntry):
        return InventoryEntry(raw.id, raw.quantity, raw.source, raw.equipped)
    if not isinstance(raw, Mapping) or "id" not in raw:
        logger.warning("Skipping malformed inventory entry %r", raw)
        return None
    try:
        quantity = int(raw.get("quantity") or 1)
    except (TypeError, ValueError) as exc:
        logger.warning("Skipping inventory entry %r with bad quantity: %s", raw["id"], exc)
        return None
    equipped = raw.get("equipped")
    return InventoryEntry(
        id=str(raw["id"]),
        quantity=quantity,
        source=raw.get("source"),
        equipped=bool(equipped) if equipped is not None else None,
    )
