"""Enumerations and well-known names shared across the selection engine.

Item types are kept as plain strings on the definitions themselves (data
files are free to add new kinds); the tables here only map the kinds the
assembler knows about onto output categories.
"""

from enum import Enum


class SourceOrigin(str, Enum):
    """Where a source sits in the build.

    PRIMARY sources are the major build pillars (module, destiny, purpose,
    nurture). INDEPENDENT sources are standalone pages such as flaws/perks
    or equipment shopping.
    """
    PRIMARY = "primary"
    INDEPENDENT = "independent"


class ReselectPolicy(str, Enum):
    """What clicking the current member of an exclusive group does."""
    KEEP = "keep"        # no-op, the member stays selected
    TOGGLE = "toggle"    # deselects the member


class BuildMode(str, Enum):
    CREATION = "creation"
    CONTINUATION = "continuation"


class PointModifier(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"


class UnlockType(str, Enum):
    REWARD = "reward"
    CHOICE = "choice"
    POINT_BUY = "pointBuy"


# Scalar field names carried in change notifications.
TARGET_LEVEL = "target_level"
ATTRIBUTES = "attributes"
INVENTORY = "inventory"
INFO = "info"
SELECTIONS = "selections"
STATE = "state"              # whole-state replacement (populate)

# Fields that only the engine itself may write.
PROTECTED_FIELDS = frozenset({"mode", "original_level", SELECTIONS, STATE})

# Fixed (non-source) pages evaluated by the completion evaluator.
ATTRIBUTES_PAGE = "attributes"
INFO_PAGE = "info"
FIXED_PAGES = (ATTRIBUTES_PAGE, INFO_PAGE)

DEFAULT_COST_PROPERTY = "weight"

# item_type -> assembled output category
ITEM_TYPE_CATEGORIES: dict[str, str] = {
    "ability": "abilities",
    "perk": "perks",
    "flaw": "flaws",
    "community": "communities",
    "relationship": "relationships",
    "equipment": "inventory",
    "loot": "inventory",
    "inventory": "inventory",
}

ASSEMBLED_CATEGORIES = (
    "abilities",
    "perks",
    "flaws",
    "communities",
    "relationships",
    "inventory",
)
