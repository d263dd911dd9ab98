"""
Key and metadata value types shared by every row stored in a table.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generator, Tuple

from dynamo_tables.constants import (
    PARTITION_KEY_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
)
from dynamo_tables.entities.util import require_type


@dataclass(frozen=True, order=True)
class CompositePrimaryKey:
    """
    The (partition key, sort key) pair identifying one row.

    Attributes
    ----------
    partition_key : str
        Value stored in the ``PK`` attribute.
    sort_key : str
        Value stored in the ``SK`` attribute.
    """

    partition_key: str
    sort_key: str

    def __post_init__(self) -> None:
        require_type("partition_key", self.partition_key, str)
        require_type("sort_key", self.sort_key, str)

    @property
    def key(self) -> Dict[str, Any]:
        return {
            PARTITION_KEY_ATTRIBUTE: {"S": self.partition_key},
            SORT_KEY_ATTRIBUTE: {"S": self.sort_key},
        }

    @classmethod
    def from_item(cls, item: Dict[str, Any]) -> "CompositePrimaryKey":
        """Read the key attributes of a raw DynamoDB item."""
        try:
            return cls(
                partition_key=item[PARTITION_KEY_ATTRIBUTE]["S"],
                sort_key=item[SORT_KEY_ATTRIBUTE]["S"],
            )
        except KeyError as e:
            raise ValueError(f"Item is missing key attribute {e}") from e

    def __iter__(self) -> Generator[Tuple[str, str], None, None]:
        yield "partition_key", self.partition_key
        yield "sort_key", self.sort_key

    def __repr__(self) -> str:
        return (
            "CompositePrimaryKey("
            f"partition_key={self.partition_key!r}, "
            f"sort_key={self.sort_key!r}"
            ")"
        )


@dataclass(frozen=True)
class RowStatus:
    """Version and last-update metadata of a row."""

    row_version: int
    last_updated_date: datetime

    def __post_init__(self) -> None:
        if isinstance(self.row_version, bool) or not isinstance(
            self.row_version, int
        ):
            raise ValueError("row_version must be an int")
        if self.row_version < 1:
            raise ValueError("row_version must be at least 1")
        require_type("last_updated_date", self.last_updated_date, datetime)


@dataclass(frozen=True)
class TimeToLive:
    """Expiry of a row as epoch seconds, stored in the TTL attribute."""

    timestamp: int

    def __post_init__(self) -> None:
        if isinstance(self.timestamp, bool) or not isinstance(
            self.timestamp, int
        ):
            raise ValueError("timestamp must be an int")

    @classmethod
    def from_datetime(cls, value: datetime) -> "TimeToLive":
        return cls(timestamp=int(value.timestamp()))
