"""
Row values that carry their own version number.

``RowWithItemVersion`` wraps a dataclass payload together with an
application-controlled ``ItemVersion`` counter. The counter is stored next to
the payload's fields, so the item reads as the payload plus one attribute.
Unlike ``RowVersion``, which every write bumps, the item version only moves
when the application creates a new version of the payload.
"""

from dataclasses import dataclass
from functools import lru_cache
from typing import (
    Any,
    ClassVar,
    Dict,
    Generic,
    Optional,
    Type,
    TypeVar,
)

from dynamo_tables.data.shared_exceptions import (
    ConcurrencyError,
    EntityValidationError,
    UnexpectedResponseError,
)
from dynamo_tables.entities.keys import TimeToLive
from dynamo_tables.entities.typed_item import (
    TypedItem,
    get_row_type_identifier,
)

RowT = TypeVar("RowT")

ITEM_VERSION_ATTRIBUTE = "ItemVersion"


@dataclass(frozen=True)
class RowWithItemVersion(Generic[RowT]):
    """
    A payload and the version the application assigned to it.

    Build instances with ``new_item``; decode them with the row type returned
    by ``for_type``, e.g.
    ``table.get_item(key, RowWithItemVersion.for_type(Customer))``.
    """

    item_version: int
    row_value: RowT

    # Set on the classes returned by ``for_type``
    value_type: ClassVar[Optional[type]] = None

    @classmethod
    def for_type(cls, value_type: type) -> Type["RowWithItemVersion[Any]"]:
        """The row type of versioned ``value_type`` payloads.

        Its ``RowType`` tag is the payload's tag followed by
        ``WithItemVersion``.
        """
        return _versioned_row_type(value_type)

    @classmethod
    def new_item(
        cls, value: RowT, item_version: int = 1
    ) -> "RowWithItemVersion[RowT]":
        return cls.for_type(type(value))(
            item_version=item_version, row_value=value
        )

    def create_updated_item(
        self, value: RowT, item_version: Optional[int] = None
    ) -> "RowWithItemVersion[RowT]":
        """The next version of this payload.

        ``item_version`` defaults to one more than the current version.
        """
        if item_version is None:
            item_version = self.item_version + 1
        return type(self)(item_version=item_version, row_value=value)

    # ───────────────────── DynamoDB marshalling ───────────────────────
    def encode_attributes(self, codec: Any) -> Dict[str, Any]:
        attributes = codec.encode(self.row_value)
        if ITEM_VERSION_ATTRIBUTE in attributes:
            raise EntityValidationError(
                f"{type(self.row_value).__name__} uses reserved attribute "
                f"name {ITEM_VERSION_ATTRIBUTE}"
            )
        attributes[ITEM_VERSION_ATTRIBUTE] = {"N": str(self.item_version)}
        return attributes

    @classmethod
    def decode_attributes(
        cls, attributes: Dict[str, Any], codec: Any
    ) -> "RowWithItemVersion[Any]":
        if cls.value_type is None:
            raise EntityValidationError(
                "Decode versioned rows with RowWithItemVersion.for_type()"
            )
        if ITEM_VERSION_ATTRIBUTE not in attributes:
            raise UnexpectedResponseError(
                f"Versioned row is missing {ITEM_VERSION_ATTRIBUTE}"
            )
        payload = {
            name: value
            for name, value in attributes.items()
            if name != ITEM_VERSION_ATTRIBUTE
        }
        return cls(
            item_version=int(attributes[ITEM_VERSION_ATTRIBUTE]["N"]),
            row_value=codec.decode(payload, cls.value_type),
        )


@lru_cache(maxsize=None)
def _versioned_row_type(value_type: type) -> Type[RowWithItemVersion[Any]]:
    identifier = f"{get_row_type_identifier(value_type)}WithItemVersion"
    return type(
        identifier,
        (RowWithItemVersion,),
        {
            "value_type": value_type,
            "row_type_identifier": identifier,
            "__module__": __name__,
        },
    )


def create_updated_row_with_item_version(
    item: TypedItem[RowWithItemVersion[RowT]],
    value: RowT,
    conditional_status_version: Optional[int] = None,
    time_to_live: Optional[TimeToLive] = None,
) -> TypedItem[RowWithItemVersion[RowT]]:
    """The next version of ``item`` with ``value`` as its payload.

    Raises:
        ConcurrencyError: If ``conditional_status_version`` is given and the
            stored item version differs from it.
    """
    if (
        conditional_status_version is not None
        and item.row_value.item_version != conditional_status_version
    ):
        raise ConcurrencyError(
            partition_key=item.partition_key,
            sort_key=item.sort_key,
            message=(
                "Current row did not have the required version "
                f"'{conditional_status_version}'"
            ),
        )
    return item.create_updated_item(
        item.row_value.create_updated_item(value), time_to_live=time_to_live
    )
