"""Definition tree: sources, level blocks, unlocks, and the item catalog.

Everything here is immutable once loaded. Unlocks form a closed union;
consumers match on the concrete class and finish with assert_never so a
new unlock kind cannot slip through unhandled.
"""

from dataclasses import dataclass, field

from buildsmith.models.constants import (
    DEFAULT_COST_PROPERTY,
    PointModifier,
    ReselectPolicy,
    SourceOrigin,
)
from buildsmith.models.selection import SourceKey


# ---------------------------------------------------------------------------
# Item catalog
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ItemOption:
    """A nested sub-choice offered once the parent item is selected."""
    id: str
    name: str = ""


@dataclass(frozen=True, slots=True)
class ItemDefinition:
    """A selectable catalog entry (ability, perk, flaw, equipment, ...)."""
    id: str
    item_type: str
    name: str = ""
    description: str = ""
    weight: float = 0
    stackable: bool = False
    options: tuple[ItemOption, ...] = ()
    max_choices: int | None = None      # bound on chosen options
    properties: dict[str, float] = field(default_factory=dict, compare=False)

    @property
    def option_ids(self) -> tuple[str, ...]:
        return tuple(opt.id for opt in self.options)

    @property
    def required_options(self) -> int:
        """How many options must be chosen for the item to be complete."""
        if not self.options or not self.max_choices or self.max_choices <= 0:
            return 0
        return min(self.max_choices, len(self.options))

    def cost(self, cost_property: str | None = None) -> float:
        prop = cost_property or DEFAULT_COST_PROPERTY
        if prop == DEFAULT_COST_PROPERTY:
            return self.weight
        return self.properties.get(prop, 0)


# ---------------------------------------------------------------------------
# Unlocks
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Rewards:
    health: float = 0
    attributes: dict[str, float] = field(default_factory=dict, compare=False)


@dataclass(frozen=True, slots=True)
class RewardUnlock:
    """Automatic grant; never selectable, never blocks completion."""
    id: str
    name: str
    rewards: Rewards = field(default_factory=Rewards)


@dataclass(frozen=True, slots=True)
class ChoiceUnlock:
    """A cardinality-limited group of items."""
    id: str
    name: str
    items: tuple[str, ...]
    max_choices: int | None      # None = unlimited
    item_type: str = ""


@dataclass(frozen=True, slots=True)
class PointPool:
    id: str
    name: str
    initial_value: float = 0


@dataclass(frozen=True, slots=True)
class PointBuyGroup:
    """A sub-group of a point-buy unlock that earns or spends pool points."""
    id: str
    name: str
    items: tuple[str, ...]
    point_modifier: PointModifier
    cost_property: str | None = None
    max_choices: int | None = None


@dataclass(frozen=True, slots=True)
class PointBuyUnlock:
    id: str
    name: str
    point_pool: PointPool
    groups: tuple[PointBuyGroup, ...] = ()

    @property
    def group_ids(self) -> frozenset[str]:
        return frozenset(g.id for g in self.groups)

    def group(self, group_id: str) -> PointBuyGroup | None:
        for g in self.groups:
            if g.id == group_id:
                return g
        return None


# Union of all unlock kinds.
Unlock = RewardUnlock | ChoiceUnlock | PointBuyUnlock


# ---------------------------------------------------------------------------
# Sources
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class LevelBlock:
    level: int
    unlocks: tuple[Unlock, ...] = ()


@dataclass(frozen=True, slots=True)
class SourceDefinition:
    """Rule data for one source: its level blocks in ascending order."""
    key: SourceKey
    name: str = ""
    description: str = ""
    levels: tuple[LevelBlock, ...] = ()
    reselect_policy: ReselectPolicy | None = None

    @property
    def effective_reselect_policy(self) -> ReselectPolicy:
        """Explicit policy if given, else derived from the source origin."""
        if self.reselect_policy is not None:
            return self.reselect_policy
        if self.key.origin is SourceOrigin.INDEPENDENT:
            return ReselectPolicy.TOGGLE
        return ReselectPolicy.KEEP

    @property
    def display_name(self) -> str:
        return self.name or self.key.name


@dataclass(frozen=True, slots=True)
class DefinitionTree:
    """All loaded rule data: sources by name plus a flat item catalog."""
    sources: dict[str, SourceDefinition] = field(default_factory=dict, compare=False)
    items: dict[str, ItemDefinition] = field(default_factory=dict, compare=False)

    def source(self, name: str) -> SourceDefinition | None:
        return self.sources.get(name)

    def item(self, item_id: str) -> ItemDefinition | None:
        return self.items.get(item_id)
