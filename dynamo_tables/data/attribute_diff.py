"""
Structural diff of two encoded items.

The differences are rendered as PartiQL paths and literals so that an
``UPDATE`` statement can change only the attributes that differ.
"""

from typing import Any, Dict, List, Optional

from dynamo_tables.constants import ROW_VERSION_ATTRIBUTE
from dynamo_tables.data.shared_exceptions import UnableToUpdateError
from dynamo_tables.entities.attribute_difference import AttributeDifference

_UNSUPPORTED_TYPES = ("B", "BS", "NS", "SS")


def sanitize(value: str, escape_single_quote: bool = False) -> str:
    """Double embedded single quotes when escaping is enabled."""
    if escape_single_quote:
        return value.replace("'", "''")
    return value


def combine_path(base: Optional[str], key: str) -> str:
    if base is None:
        return f'"{key}"'
    return f'{base}."{key}"'


def _attribute_type(value: Dict[str, Any]) -> str:
    if len(value) != 1:
        raise UnableToUpdateError(f"Malformed attribute value {value!r}")
    return next(iter(value))


def flatten(
    value: Dict[str, Any], escape_single_quote: bool = False
) -> str:
    """Render an attribute value as a PartiQL literal.

    ``NULL`` renders as ``null`` wherever it appears so that list
    positions are preserved.

    Raises:
        UnableToUpdateError: For binary and set values.
    """
    attribute_type = _attribute_type(value)
    if attribute_type == "S":
        return f"'{sanitize(value['S'], escape_single_quote)}'"
    if attribute_type == "N":
        return str(value["N"])
    if attribute_type == "BOOL":
        return "true" if value["BOOL"] else "false"
    if attribute_type == "NULL":
        return "null"
    if attribute_type == "L":
        elements = [
            flatten(element, escape_single_quote) for element in value["L"]
        ]
        return "[" + ", ".join(elements) + "]"
    if attribute_type == "M":
        entries = []
        for key, element in value["M"].items():
            entries.append(
                f"'{sanitize(key, escape_single_quote)}': "
                f"{flatten(element, escape_single_quote)}"
            )
        return "{" + ", ".join(entries) + "}"
    raise UnableToUpdateError(
        f"Unable to express attribute of type {attribute_type} as a literal"
    )


def _update_attribute(
    new_value: Dict[str, Any], path: str, escape_single_quote: bool
) -> AttributeDifference:
    return AttributeDifference.update(
        path, flatten(new_value, escape_single_quote)
    )


def diff_attribute(
    new_value: Dict[str, Any],
    existing_value: Dict[str, Any],
    path: str,
    escape_single_quote: bool = False,
) -> List[AttributeDifference]:
    """Differences turning ``existing_value`` into ``new_value``."""
    new_type = _attribute_type(new_value)
    existing_type = _attribute_type(existing_value)

    if new_type != existing_type:
        return [_update_attribute(new_value, path, escape_single_quote)]

    if new_type in _UNSUPPORTED_TYPES:
        if new_value == existing_value:
            return []
        raise UnableToUpdateError(
            f"Unable to update attribute {path} of type {new_type}"
        )
    if new_type == "M":
        return diff_maps(
            new_value["M"], existing_value["M"], path, escape_single_quote
        )
    if new_type == "L":
        return diff_lists(
            new_value["L"], existing_value["L"], path, escape_single_quote
        )
    if new_type == "NULL" or new_value == existing_value:
        return []
    return [_update_attribute(new_value, path, escape_single_quote)]


def diff_maps(
    new_map: Dict[str, Dict[str, Any]],
    existing_map: Dict[str, Dict[str, Any]],
    path: Optional[str] = None,
    escape_single_quote: bool = False,
) -> List[AttributeDifference]:
    differences: List[AttributeDifference] = []
    for key, new_value in new_map.items():
        attribute_path = combine_path(path, key)
        if key in existing_map:
            differences.extend(
                diff_attribute(
                    new_value,
                    existing_map[key],
                    attribute_path,
                    escape_single_quote,
                )
            )
        else:
            differences.append(
                _update_attribute(
                    new_value, attribute_path, escape_single_quote
                )
            )
    for key in existing_map:
        if key not in new_map:
            differences.append(
                AttributeDifference.remove(combine_path(path, key))
            )
    return differences


def diff_lists(
    new_list: List[Dict[str, Any]],
    existing_list: List[Dict[str, Any]],
    path: str,
    escape_single_quote: bool = False,
) -> List[AttributeDifference]:
    differences: List[AttributeDifference] = []
    for index, new_value in enumerate(new_list):
        element_path = f"{path}[{index}]"
        if index < len(existing_list):
            differences.extend(
                diff_attribute(
                    new_value,
                    existing_list[index],
                    element_path,
                    escape_single_quote,
                )
            )
        else:
            differences.append(
                _update_attribute(new_value, element_path, escape_single_quote)
            )
    for index in range(len(new_list), len(existing_list)):
        differences.append(AttributeDifference.remove(f"{path}[{index}]"))
    return differences


def diff_items(
    new_item: Dict[str, Any],
    existing_item: Dict[str, Any],
    escape_single_quote: bool = False,
) -> List[AttributeDifference]:
    """Differences between two encoded items, ending with the version bump.

    The version written is one more than the existing ``RowVersion``.
    """
    new_attributes = {
        k: v for k, v in new_item.items() if k != ROW_VERSION_ATTRIBUTE
    }
    existing_attributes = {
        k: v for k, v in existing_item.items() if k != ROW_VERSION_ATTRIBUTE
    }
    differences = diff_maps(
        new_attributes,
        existing_attributes,
        escape_single_quote=escape_single_quote,
    )
    existing_version = int(existing_item[ROW_VERSION_ATTRIBUTE]["N"])
    differences.append(
        AttributeDifference.update(
            combine_path(None, ROW_VERSION_ATTRIBUTE),
            str(existing_version + 1),
        )
    )
    return differences
