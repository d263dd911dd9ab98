"""
The typed item: a row value together with its key and concurrency metadata.

An item is written to DynamoDB with the reserved attributes ``PK``, ``SK``,
``RowType``, ``CreateDate``, ``RowVersion``, ``LastUpdatedDate`` and the
optional TTL attribute ``ExpireDate``. The row value's own fields are
flattened alongside them.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, Generic, Optional, Type, TypeVar

from dynamo_tables.constants import (
    CREATE_DATE_ATTRIBUTE,
    LAST_UPDATED_DATE_ATTRIBUTE,
    PARTITION_KEY_ATTRIBUTE,
    RESERVED_ATTRIBUTES,
    ROW_TYPE_ATTRIBUTE,
    ROW_VERSION_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
    TIME_TO_LIVE_ATTRIBUTE,
)
from dynamo_tables.data.shared_exceptions import (
    EntityValidationError,
    TypeMismatchError,
)
from dynamo_tables.entities.codec import AttributeValueCodec
from dynamo_tables.entities.keys import (
    CompositePrimaryKey,
    RowStatus,
    TimeToLive,
)
from dynamo_tables.entities.util import (
    format_timestamp,
    parse_timestamp,
    require_attributes,
    utc_now,
)

RowT = TypeVar("RowT")

REQUIRED_ITEM_KEYS = {
    PARTITION_KEY_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
    ROW_TYPE_ATTRIBUTE,
    CREATE_DATE_ATTRIBUTE,
    ROW_VERSION_ATTRIBUTE,
    LAST_UPDATED_DATE_ATTRIBUTE,
}


def get_row_type_identifier(row_type: type) -> str:
    """Return the tag stored in ``RowType`` for rows of ``row_type``.

    A class may override its name by declaring a ``row_type_identifier``
    class attribute.
    """
    identifier = getattr(row_type, "row_type_identifier", None)
    if isinstance(identifier, str) and identifier:
        return identifier
    return row_type.__name__


@dataclass(frozen=True)
class TypedItem(Generic[RowT]):
    """
    A row value stored under a composite key.

    Items are immutable; use ``create_updated_item`` to derive the next
    version of a row.

    Attributes
    ----------
    composite_primary_key : CompositePrimaryKey
        Identity of the row.
    create_date : datetime
        When the row was first inserted. Never changes across updates.
    row_status : RowStatus
        Current version number and last update time.
    row_value : RowT
        The application payload, a dataclass instance.
    time_to_live : Optional[TimeToLive]
        Optional expiry of the row.
    """

    composite_primary_key: CompositePrimaryKey
    create_date: datetime
    row_status: RowStatus
    row_value: RowT
    time_to_live: Optional[TimeToLive] = None

    @classmethod
    def new_item(
        cls,
        key: CompositePrimaryKey,
        value: RowT,
        time_to_live: Optional[TimeToLive] = None,
    ) -> "TypedItem[RowT]":
        """Create the first version of a row, stamped with the current time."""
        now = utc_now()
        return cls(
            composite_primary_key=key,
            create_date=now,
            row_status=RowStatus(row_version=1, last_updated_date=now),
            row_value=value,
            time_to_live=time_to_live,
        )

    def create_updated_item(
        self,
        value: RowT,
        time_to_live: Optional[TimeToLive] = None,
        does_not_expire: bool = False,
    ) -> "TypedItem[RowT]":
        """Derive the next version of this row with a new value.

        The existing time to live is kept unless a new one is given or
        ``does_not_expire`` is set.
        """
        if does_not_expire:
            new_time_to_live = None
        else:
            new_time_to_live = time_to_live or self.time_to_live
        return TypedItem(
            composite_primary_key=self.composite_primary_key,
            create_date=self.create_date,
            row_status=RowStatus(
                row_version=self.row_status.row_version + 1,
                last_updated_date=utc_now(),
            ),
            row_value=value,
            time_to_live=new_time_to_live,
        )

    @property
    def partition_key(self) -> str:
        return self.composite_primary_key.partition_key

    @property
    def sort_key(self) -> str:
        return self.composite_primary_key.sort_key

    @property
    def row_version(self) -> int:
        return self.row_status.row_version

    @property
    def row_type(self) -> type:
        return type(self.row_value)

    @property
    def row_type_identifier(self) -> str:
        return get_row_type_identifier(type(self.row_value))

    # ───────────────────────── DynamoDB keys ──────────────────────────
    @property
    def key(self) -> Dict[str, Any]:
        return self.composite_primary_key.key

    # ───────────────────── DynamoDB marshalling ───────────────────────
    def to_item(self, codec: AttributeValueCodec) -> Dict[str, Any]:
        """Converts the item to the attribute map written to DynamoDB.

        Args:
            codec (AttributeValueCodec): Codec used for the row value.

        Returns:
            dict: The DynamoDB item.

        Raises:
            EntityValidationError: If a row value field uses a reserved
                attribute name.
        """
        attributes = codec.encode(self.row_value)
        clashes = RESERVED_ATTRIBUTES & attributes.keys()
        if clashes:
            raise EntityValidationError(
                f"{self.row_type_identifier} uses reserved attribute names: "
                f"{sorted(clashes)}"
            )
        item: Dict[str, Any] = {
            **self.key,
            ROW_TYPE_ATTRIBUTE: {"S": self.row_type_identifier},
            CREATE_DATE_ATTRIBUTE: {"S": format_timestamp(self.create_date)},
            ROW_VERSION_ATTRIBUTE: {"N": str(self.row_status.row_version)},
            LAST_UPDATED_DATE_ATTRIBUTE: {
                "S": format_timestamp(self.row_status.last_updated_date)
            },
        }
        if self.time_to_live is not None:
            item[TIME_TO_LIVE_ATTRIBUTE] = {
                "N": str(self.time_to_live.timestamp)
            }
        item.update(attributes)
        return item

    def __repr__(self) -> str:
        return (
            "TypedItem("
            f"composite_primary_key={self.composite_primary_key!r}, "
            f"row_version={self.row_status.row_version}, "
            f"row_value={self.row_value!r}"
            ")"
        )


def item_to_typed_item(
    item: Dict[str, Any],
    row_type: Type[RowT],
    codec: AttributeValueCodec,
    verify_row_type: bool = True,
) -> TypedItem[RowT]:
    """Converts a DynamoDB item to a TypedItem of ``row_type``.

    Args:
        item (dict): The DynamoDB item.
        row_type (type): The dataclass of the row value.
        codec (AttributeValueCodec): Codec used for the row value.
        verify_row_type (bool): Require the stored ``RowType`` to match.

    Returns:
        TypedItem: The decoded item.

    Raises:
        ValueError: When the item is missing required attributes.
        TypeMismatchError: When the stored row type differs.
    """
    require_attributes(item, REQUIRED_ITEM_KEYS, "typed item")
    expected = get_row_type_identifier(row_type)
    stored = item[ROW_TYPE_ATTRIBUTE].get("S")
    if verify_row_type and stored != expected:
        raise TypeMismatchError(expected=expected, provided=stored)

    attributes = {
        name: value
        for name, value in item.items()
        if name not in RESERVED_ATTRIBUTES
    }
    time_to_live = None
    if TIME_TO_LIVE_ATTRIBUTE in item:
        time_to_live = TimeToLive(
            timestamp=int(item[TIME_TO_LIVE_ATTRIBUTE]["N"])
        )
    return TypedItem(
        composite_primary_key=CompositePrimaryKey.from_item(item),
        create_date=parse_timestamp(item[CREATE_DATE_ATTRIBUTE]["S"]),
        row_status=RowStatus(
            row_version=int(item[ROW_VERSION_ATTRIBUTE]["N"]),
            last_updated_date=parse_timestamp(
                item[LAST_UPDATED_DATE_ATTRIBUTE]["S"]
            ),
        ),
        row_value=codec.decode(attributes, row_type),
        time_to_live=time_to_live,
    )


def check_update(
    new_item: TypedItem[Any], existing_item: TypedItem[Any]
) -> None:
    """Validate that ``new_item`` is the next version of ``existing_item``.

    Raises:
        EntityValidationError: When the keys differ or the version of
            ``new_item`` is not one more than that of ``existing_item``.
    """
    if new_item.composite_primary_key != existing_item.composite_primary_key:
        raise EntityValidationError(
            "new_item and existing_item must share a key, got "
            f"{new_item.composite_primary_key!r} and "
            f"{existing_item.composite_primary_key!r}"
        )
    if new_item.row_version != existing_item.row_version + 1:
        raise EntityValidationError(
            f"new_item must have row_version {existing_item.row_version + 1}, "
            f"got {new_item.row_version}"
        )
