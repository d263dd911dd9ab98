"""
Resolution of the ``RowType`` tag of heterogeneous rows sharing one table.

A ``TypeRegistry`` is built once from a fixed set of registrations and never
changes afterwards. Each registration maps a tag to a decode function that
turns a raw item into one variant of the caller's result type.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    Any,
    Callable,
    Dict,
    Iterable,
    Mapping,
    Optional,
    Tuple,
    Type,
)

from dynamo_tables.constants import ROW_TYPE_ATTRIBUTE
from dynamo_tables.data.shared_exceptions import UnexpectedTypeError
from dynamo_tables.entities.codec import AttributeValueCodec
from dynamo_tables.entities.typed_item import (
    TypedItem,
    get_row_type_identifier,
    item_to_typed_item,
)

logger = logging.getLogger(__name__)

DecodeFunction = Callable[[Dict[str, Any], AttributeValueCodec], Any]


@dataclass(frozen=True)
class RowTypeRegistration:
    """Associates a row type tag with the class decoded for it.

    ``transform`` maps the decoded ``TypedItem`` to the caller's variant;
    when omitted the ``TypedItem`` itself is returned.
    """

    tag: str
    row_type: type
    transform: Optional[Callable[[TypedItem[Any]], Any]] = None

    def decode_function(self) -> DecodeFunction:
        def decode(item: Dict[str, Any], codec: AttributeValueCodec) -> Any:
            # The registry has already matched the stored tag
            typed_item = item_to_typed_item(
                item, self.row_type, codec, verify_row_type=False
            )
            if self.transform is None:
                return typed_item
            return self.transform(typed_item)

        return decode


def register(
    row_type: type,
    transform: Optional[Callable[[TypedItem[Any]], Any]] = None,
    tag: Optional[str] = None,
) -> RowTypeRegistration:
    """Create a registration for ``row_type`` under its row type tag."""
    return RowTypeRegistration(
        tag=tag or get_row_type_identifier(row_type),
        row_type=row_type,
        transform=transform,
    )


class TypeRegistry:
    """
    A closed set of row types that may be decoded from one table.

    Args:
        registrations: The registrations, or bare row classes.
        allow_single_type_fallback: When exactly one type is registered,
            decode items with an unknown tag using that type instead of
            raising ``UnexpectedTypeError``. Off by default.
    """

    def __init__(
        self,
        registrations: Iterable[RowTypeRegistration | type],
        allow_single_type_fallback: bool = False,
    ):
        entries: Dict[str, RowTypeRegistration] = {}
        for registration in registrations:
            if not isinstance(registration, RowTypeRegistration):
                registration = register(registration)
            if registration.tag in entries:
                raise ValueError(
                    f"Row type {registration.tag} is registered twice"
                )
            entries[registration.tag] = registration
        if not entries:
            raise ValueError("registrations cannot be empty")
        self._registrations: Mapping[str, RowTypeRegistration] = (
            MappingProxyType(entries)
        )
        self._row_types = frozenset(
            registration.row_type for registration in entries.values()
        )
        self.allow_single_type_fallback = allow_single_type_fallback

    @property
    def tags(self) -> Tuple[str, ...]:
        return tuple(self._registrations)

    def resolve(self, tag: Optional[str]) -> DecodeFunction:
        """Return the decode function registered for ``tag``.

        Raises:
            UnexpectedTypeError: If the tag is not registered.
        """
        registration = self._registrations.get(tag) if tag else None
        if registration is None:
            raise UnexpectedTypeError(provided=tag)
        return registration.decode_function()

    def row_type_for(self, tag: str) -> Type[Any]:
        registration = self._registrations.get(tag)
        if registration is None:
            raise UnexpectedTypeError(provided=tag)
        return registration.row_type

    def is_registered(self, row_type: Optional[type]) -> bool:
        return row_type in self._row_types

    def check_row_type(self, row_type: Optional[type]) -> None:
        """Raise ``UnexpectedTypeError`` unless ``row_type`` is registered.

        A delete by key carries no row type and is always accepted.
        """
        if row_type is not None and row_type not in self._row_types:
            raise UnexpectedTypeError(
                provided=get_row_type_identifier(row_type)
            )

    def decode(
        self, item: Dict[str, Any], codec: AttributeValueCodec
    ) -> Any:
        """Decode a raw item by its stored row type tag."""
        tag = item.get(ROW_TYPE_ATTRIBUTE, {}).get("S")
        try:
            decode = self.resolve(tag)
        except UnexpectedTypeError:
            if not (
                self.allow_single_type_fallback
                and len(self._registrations) == 1
            ):
                raise
            (registration,) = self._registrations.values()
            logger.debug(
                "Decoding row type %s as %s", tag, registration.tag
            )
            decode = registration.decode_function()
        return decode(item, codec)

    def __repr__(self) -> str:
        return f"TypeRegistry(tags={list(self._registrations)})"
