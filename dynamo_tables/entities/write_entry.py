"""
Write entries describe one mutation of a transaction or bulk write.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Generic, Optional, Protocol, TypeVar, cast

from dynamo_tables.data.shared_exceptions import EntityValidationError
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.typed_item import TypedItem

RowT = TypeVar("RowT")
ResultT = TypeVar("ResultT", covariant=True)


class WriteEntryKind(str, Enum):
    INSERT = "insert"
    UPDATE = "update"
    DELETE_AT_KEY = "delete_at_key"
    DELETE_ITEM = "delete_item"


class WriteEntryTransform(Protocol[ResultT]):
    """Visitor applied to a write entry of any row type."""

    def transform(self, entry: "WriteEntry[Any]") -> ResultT: ...


@dataclass(frozen=True)
class WriteEntry(Generic[RowT]):
    """
    One mutation against a single key.

    Build entries with the ``insert``, ``update``, ``delete_at_key`` and
    ``delete_item`` constructors rather than directly.
    """

    kind: WriteEntryKind
    new_item: Optional[TypedItem[RowT]] = None
    existing_item: Optional[TypedItem[RowT]] = None
    key: Optional[CompositePrimaryKey] = None

    def __post_init__(self) -> None:
        required = {
            WriteEntryKind.INSERT: ("new_item",),
            WriteEntryKind.UPDATE: ("new_item", "existing_item"),
            WriteEntryKind.DELETE_AT_KEY: ("key",),
            WriteEntryKind.DELETE_ITEM: ("existing_item",),
        }[self.kind]
        for name in required:
            if getattr(self, name) is None:
                raise EntityValidationError(
                    f"{self.kind.value} entry requires {name}"
                )

    @classmethod
    def insert(cls, new_item: TypedItem[RowT]) -> "WriteEntry[RowT]":
        return cls(kind=WriteEntryKind.INSERT, new_item=new_item)

    @classmethod
    def update(
        cls, new_item: TypedItem[RowT], existing_item: TypedItem[RowT]
    ) -> "WriteEntry[RowT]":
        return cls(
            kind=WriteEntryKind.UPDATE,
            new_item=new_item,
            existing_item=existing_item,
        )

    @classmethod
    def delete_at_key(cls, key: CompositePrimaryKey) -> "WriteEntry[Any]":
        return cls(kind=WriteEntryKind.DELETE_AT_KEY, key=key)

    @classmethod
    def delete_item(cls, existing_item: TypedItem[RowT]) -> "WriteEntry[RowT]":
        return cls(
            kind=WriteEntryKind.DELETE_ITEM, existing_item=existing_item
        )

    @property
    def composite_primary_key(self) -> CompositePrimaryKey:
        if self.key is not None:
            return self.key
        item = cast(TypedItem[RowT], self.new_item or self.existing_item)
        return item.composite_primary_key

    @property
    def row_type(self) -> Optional[type]:
        """The row value class, or None for a delete by key."""
        item = self.new_item or self.existing_item
        return item.row_type if item is not None else None

    def handle(self, context: WriteEntryTransform[ResultT]) -> ResultT:
        return context.transform(self)


@dataclass(frozen=True)
class TransactionConstraintEntry(Generic[RowT]):
    """Asserts inside a transaction that a row still exists unchanged."""

    existing_item: TypedItem[RowT]

    @classmethod
    def required(
        cls, existing_item: TypedItem[RowT]
    ) -> "TransactionConstraintEntry[RowT]":
        return cls(existing_item=existing_item)

    @property
    def composite_primary_key(self) -> CompositePrimaryKey:
        return self.existing_item.composite_primary_key
