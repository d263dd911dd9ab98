"""
Conversion between Python row values and DynamoDB attribute values.

Row values are dataclasses. Their fields are written as top-level attributes
of an item; nested dataclasses become maps and are rebuilt on decode from
the field's type hints.
"""

import types
from dataclasses import fields, is_dataclass
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import (
    Any,
    Dict,
    Type,
    TypeVar,
    Union,
    get_args,
    get_origin,
    get_type_hints,
)

from dynamo_tables.data.shared_exceptions import (
    EntityValidationError,
    UnexpectedResponseError,
)
from dynamo_tables.entities.util import format_timestamp, parse_timestamp

RowT = TypeVar("RowT")


def parse_dynamodb_value(value: Dict[str, Any]) -> Any:
    """
    Parse a single DynamoDB value.

    Args:
        value: A DynamoDB value in the format {"S": "value"} or {"N": "123"}

    Returns:
        The parsed Python value
    """
    if "M" in value:
        return parse_dynamodb_map(value["M"])
    if "L" in value:
        return [parse_dynamodb_value(item) for item in value["L"]]
    if "S" in value:
        return value["S"]
    if "N" in value:
        return _parse_number(value["N"])
    if "BOOL" in value:
        return value["BOOL"]
    if "NULL" in value:
        return None
    if "B" in value:
        return value["B"]
    if "SS" in value:
        return set(value["SS"])
    if "NS" in value:
        return {_parse_number(n) for n in value["NS"]}
    if "BS" in value:
        return set(value["BS"])
    raise UnexpectedResponseError(f"Unrecognised attribute value {value!r}")


def parse_dynamodb_map(dynamodb_map: Dict[str, Any]) -> Dict[str, Any]:
    """Parse a DynamoDB map into a Python dictionary."""
    return {k: parse_dynamodb_value(v) for k, v in dynamodb_map.items()}


def _parse_number(value: str) -> Union[int, float]:
    try:
        return int(value)
    except ValueError:
        return float(value)


def to_dynamodb_value(value: Any) -> Dict[str, Any]:
    """
    Convert a Python value to DynamoDB format.

    Args:
        value: Any Python value

    Returns:
        A DynamoDB value in the format {"S": "value"} or {"N": "123"}
    """
    if is_dataclass(value) and not isinstance(value, type):
        return {"M": _dataclass_to_map(value)}
    if isinstance(value, dict):
        return {"M": {str(k): to_dynamodb_value(v) for k, v in value.items()}}
    if isinstance(value, (list, tuple)):
        return {"L": [to_dynamodb_value(item) for item in value]}
    if isinstance(value, Enum):
        return to_dynamodb_value(value.value)
    if isinstance(value, str):
        return {"S": value}
    if isinstance(value, datetime):
        return {"S": format_timestamp(value)}
    # Check bool before int since bool is a subclass of int in Python
    if isinstance(value, bool):
        return {"BOOL": value}
    if isinstance(value, (int, float, Decimal)):
        return {"N": str(value)}
    if value is None:
        return {"NULL": True}
    if isinstance(value, bytes):
        return {"B": value}
    if isinstance(value, (set, frozenset)):
        if all(isinstance(item, str) for item in value):
            return {"SS": sorted(value)}
        if all(
            isinstance(item, (int, float, Decimal))
            and not isinstance(item, bool)
            for item in value
        ):
            return {"NS": [str(item) for item in sorted(value)]}
        if all(isinstance(item, bytes) for item in value):
            return {"BS": sorted(value)}

    raise EntityValidationError(
        f"Cannot encode value of type {type(value).__name__}"
    )


def _dataclass_to_map(value: Any) -> Dict[str, Any]:
    # Absent optional fields are omitted rather than written as NULL
    return {
        f.name: to_dynamodb_value(getattr(value, f.name))
        for f in fields(value)
        if getattr(value, f.name) is not None
    }


class AttributeValueCodec:
    """Encodes row values to attribute maps and decodes them back.

    A row type may take over its own marshalling by defining an
    ``encode_attributes(codec)`` method and a
    ``decode_attributes(attributes, codec)`` classmethod.
    """

    def encode(self, value: Any) -> Dict[str, Any]:
        """Encode a dataclass row value to a map of top-level attributes."""
        encode_attributes = getattr(value, "encode_attributes", None)
        if callable(encode_attributes) and not isinstance(value, type):
            return encode_attributes(self)
        if not is_dataclass(value) or isinstance(value, type):
            raise EntityValidationError(
                "row value must be a dataclass instance, got "
                f"{type(value).__name__}"
            )
        return _dataclass_to_map(value)

    def decode(self, attributes: Dict[str, Any], row_type: Type[RowT]) -> RowT:
        """Build an instance of ``row_type`` from an attribute map.

        Attributes that are not fields of ``row_type`` are ignored.
        """
        decode_attributes = getattr(row_type, "decode_attributes", None)
        if callable(decode_attributes):
            return decode_attributes(attributes, self)
        if not is_dataclass(row_type):
            raise EntityValidationError(
                f"row_type must be a dataclass, got {row_type!r}"
            )
        hints = get_type_hints(row_type)
        kwargs = {}
        for f in fields(row_type):
            if not f.init or f.name not in attributes:
                continue
            kwargs[f.name] = self._decode_field(
                attributes[f.name], hints.get(f.name, Any)
            )
        try:
            return row_type(**kwargs)  # type: ignore[return-value]
        except (TypeError, ValueError) as e:
            raise UnexpectedResponseError(
                f"Unable to decode {row_type.__name__}: {e}"
            ) from e

    def encode_value(self, value: Any) -> Dict[str, Any]:
        return to_dynamodb_value(value)

    def decode_value(self, value: Dict[str, Any]) -> Any:
        return parse_dynamodb_value(value)

    def _decode_field(self, value: Dict[str, Any], hint: Any) -> Any:
        if "NULL" in value:
            return None
        hint = _unwrap_optional(hint)
        origin = get_origin(hint)

        if is_dataclass(hint) and "M" in value:
            return self.decode(value["M"], hint)
        if origin in (list, tuple) and "L" in value:
            args = get_args(hint)
            element_hint = args[0] if args else Any
            decoded = [
                self._decode_field(element, element_hint)
                for element in value["L"]
            ]
            return tuple(decoded) if origin is tuple else decoded
        if origin is dict and "M" in value:
            args = get_args(hint)
            value_hint = args[1] if len(args) == 2 else Any
            return {
                k: self._decode_field(v, value_hint)
                for k, v in value["M"].items()
            }
        if origin is None and isinstance(hint, type):
            if issubclass(hint, Enum):
                return hint(parse_dynamodb_value(value))
            if issubclass(hint, datetime) and "S" in value:
                return parse_timestamp(value["S"])
            if issubclass(hint, bool):
                return parse_dynamodb_value(value)
            if issubclass(hint, float) and "N" in value:
                return float(value["N"])
            if issubclass(hint, Decimal) and "N" in value:
                return Decimal(value["N"])
            if issubclass(hint, frozenset):
                return frozenset(parse_dynamodb_value(value))
        return parse_dynamodb_value(value)


def _unwrap_optional(hint: Any) -> Any:
    if get_origin(hint) in (Union, types.UnionType):
        args = [arg for arg in get_args(hint) if arg is not type(None)]
        if len(args) == 1:
            return args[0]
    return hint
