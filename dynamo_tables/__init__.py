"""Typed rows over a single DynamoDB table."""

__version__ = "0.1.0"

from dynamo_tables.config import (  # noqa: F401
    RetryConfiguration,
    TableConfiguration,
    TableSettings,
    get_settings,
)
from dynamo_tables.data.dynamo_table import DynamoTable  # noqa: F401
from dynamo_tables.data.in_memory_table import (  # noqa: F401
    InMemoryDynamoTable,
)
from dynamo_tables.data.shared_exceptions import (  # noqa: F401
    BatchFailuresError,
    ConcurrencyError,
    ConditionalCheckFailedError,
    ConstraintFailureError,
    DuplicateItemError,
    DynamoDBError,
    DynamoTablesError,
    EntityValidationError,
    ItemCollectionSizeLimitExceededError,
    StatementLengthExceededError,
    TransactionCanceledError,
    TransactionConflictError,
    TypeMismatchError,
    UnexpectedResponseError,
    UnexpectedTypeError,
)
from dynamo_tables.data.simulate_concurrency_table import (  # noqa: F401
    SimulateConcurrencyTable,
)
from dynamo_tables.entities import *  # noqa: F401, F403
from dynamo_tables.entities import __all__ as _entities_all

__all__ = [
    "BatchFailuresError",
    "ConcurrencyError",
    "ConditionalCheckFailedError",
    "ConstraintFailureError",
    "DuplicateItemError",
    "DynamoDBError",
    "DynamoTable",
    "DynamoTablesError",
    "EntityValidationError",
    "InMemoryDynamoTable",
    "ItemCollectionSizeLimitExceededError",
    "RetryConfiguration",
    "SimulateConcurrencyTable",
    "StatementLengthExceededError",
    "TableConfiguration",
    "TableSettings",
    "TransactionCanceledError",
    "TransactionConflictError",
    "TypeMismatchError",
    "UnexpectedResponseError",
    "UnexpectedTypeError",
    "get_settings",
] + list(_entities_all)
