"""
Entity classes for the dynamo_tables package.
"""

from dynamo_tables.entities.attribute_condition import (  # noqa: F401
    AttributeCondition,
    ConditionKind,
)
from dynamo_tables.entities.attribute_difference import (  # noqa: F401
    AttributeDifference,
    DifferenceKind,
)
from dynamo_tables.entities.codec import AttributeValueCodec  # noqa: F401
from dynamo_tables.entities.keys import (  # noqa: F401
    CompositePrimaryKey,
    RowStatus,
    TimeToLive,
)
from dynamo_tables.entities.row_with_item_version import (  # noqa: F401
    RowWithItemVersion,
    create_updated_row_with_item_version,
)
from dynamo_tables.entities.type_registry import (  # noqa: F401
    RowTypeRegistration,
    TypeRegistry,
    register,
)
from dynamo_tables.entities.typed_item import (  # noqa: F401
    TypedItem,
    get_row_type_identifier,
    item_to_typed_item,
)
from dynamo_tables.entities.write_entry import (  # noqa: F401
    TransactionConstraintEntry,
    WriteEntry,
    WriteEntryKind,
    WriteEntryTransform,
)

__all__ = [
    "AttributeCondition",
    "AttributeDifference",
    "AttributeValueCodec",
    "CompositePrimaryKey",
    "ConditionKind",
    "DifferenceKind",
    "RowStatus",
    "RowWithItemVersion",
    "RowTypeRegistration",
    "TimeToLive",
    "TransactionConstraintEntry",
    "TypeRegistry",
    "TypedItem",
    "WriteEntry",
    "WriteEntryKind",
    "WriteEntryTransform",
    "create_updated_row_with_item_version",
    "get_row_type_identifier",
    "item_to_typed_item",
    "register",
]
