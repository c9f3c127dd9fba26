"""Configuration knobs for the build engine.

Defaults match the stock rule set. Modules may override the level range,
the attribute assignment table, or the inventory item kinds.
"""

from dataclasses import dataclass, field


@dataclass(slots=True)
class BuildConfig:
    """Tuneable parameters that aren't stored in the definition tree."""

    min_level: int = 1
    max_level: int = 10
    check_invariants: bool = True   # raise InvariantViolation before committing a bad state
    attribute_names: tuple[str, ...] = ()
    attribute_values: tuple[int, ...] = ()   # each value may be assigned once
    require_name: bool = True
    inventory_item_types: frozenset[str] = field(
        default_factory=lambda: frozenset({"equipment", "loot", "inventory"})
    )
