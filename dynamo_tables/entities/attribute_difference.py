from dataclasses import dataclass
from enum import Enum
from typing import Optional


class DifferenceKind(str, Enum):
    UPDATE = "update"
    REMOVE = "remove"


@dataclass(frozen=True)
class AttributeDifference:
    """
    A single edit of a partial update.

    ``path`` points into the item, e.g. ``"field"``, ``"field"[2]`` or
    ``"struct"."field"``. ``value`` is the rendered PartiQL literal of an
    update and None for a remove.
    """

    kind: DifferenceKind
    path: str
    value: Optional[str] = None

    @classmethod
    def update(cls, path: str, value: str) -> "AttributeDifference":
        return cls(kind=DifferenceKind.UPDATE, path=path, value=value)

    @classmethod
    def remove(cls, path: str) -> "AttributeDifference":
        return cls(kind=DifferenceKind.REMOVE, path=path)

    @property
    def is_update(self) -> bool:
        return self.kind is DifferenceKind.UPDATE
