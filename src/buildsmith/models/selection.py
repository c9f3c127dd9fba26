"""Selection data model: who picked what, from where."""

from dataclasses import dataclass, field
from typing import Any

from buildsmith.models.constants import SourceOrigin


@dataclass(frozen=True, slots=True)
class SourceKey:
    """Identifies the origin of a selection.

    The origin discriminator replaces naming conventions such as an
    "independent-" prefix on the source name.
    """
    name: str
    origin: SourceOrigin = SourceOrigin.PRIMARY

    @property
    def is_independent(self) -> bool:
        return self.origin is SourceOrigin.INDEPENDENT

    def __str__(self) -> str:
        return self.name


@dataclass(slots=True)
class Selection:
    """One chosen item, plus its chosen nested options."""
    id: str
    source: SourceKey
    group_id: str | None = None
    selections: list[str] = field(default_factory=list)   # nested option ids
    quantity: int | None = None
    equipped: bool | None = None
    locked: bool = False     # committed before continuation mode began

    @property
    def effective_quantity(self) -> int:
        return 1 if self.quantity is None else self.quantity

    def to_dict(self) -> dict[str, Any]:
        """Plain-data form used by the assembler.

        Empty nested selections and unset optional fields are omitted.
        """
        out: dict[str, Any] = {"id": self.id, "source": self.source.name}
        if self.group_id is not None:
            out["groupId"] = self.group_id
        if self.selections:
            out["selections"] = list(self.selections)
        if self.quantity is not None:
            out["quantity"] = self.quantity
        if self.equipped is not None:
            out["equipped"] = self.equipped
        return out


@dataclass(slots=True)
class InventoryEntry:
    """An inventory line carried as a scalar field (not a selection)."""
    id: str
    quantity: int = 1
    source: str | None = None
    equipped: bool | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "quantity": self.quantity}
        if self.source is not None:
            out["source"] = self.source
        if self.equipped is not None:
            out["equipped"] = self.equipped
        return out
