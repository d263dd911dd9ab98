"""
This module defines the reserved attribute names and backend limits shared by
every table implementation.
"""

from enum import Enum

PARTITION_KEY_ATTRIBUTE = "PK"
SORT_KEY_ATTRIBUTE = "SK"
ROW_TYPE_ATTRIBUTE = "RowType"
CREATE_DATE_ATTRIBUTE = "CreateDate"
ROW_VERSION_ATTRIBUTE = "RowVersion"
LAST_UPDATED_DATE_ATTRIBUTE = "LastUpdatedDate"
TIME_TO_LIVE_ATTRIBUTE = "ExpireDate"

RESERVED_ATTRIBUTES = frozenset(
    {
        PARTITION_KEY_ATTRIBUTE,
        SORT_KEY_ATTRIBUTE,
        ROW_TYPE_ATTRIBUTE,
        CREATE_DATE_ATTRIBUTE,
        ROW_VERSION_ATTRIBUTE,
        LAST_UPDATED_DATE_ATTRIBUTE,
        TIME_TO_LIVE_ATTRIBUTE,
    }
)

# Backend limits
MAX_STATEMENTS_PER_BATCH = 25
MAX_STATEMENTS_PER_TRANSACTION = 100
MAX_KEYS_PER_BATCH_GET = 100
MAX_KEYS_PER_EXECUTE_STATEMENT = 50
MAX_STATEMENT_LENGTH = 8192

DEFAULT_RETRIES = 10


class CancellationReasonCode(str, Enum):
    """Codes returned for each statement of a cancelled transaction."""

    NONE = "None"
    CONDITIONAL_CHECK_FAILED = "ConditionalCheckFailed"
    DUPLICATE_ITEM = "DuplicateItem"
    ITEM_COLLECTION_SIZE_LIMIT_EXCEEDED = "ItemCollectionSizeLimitExceeded"
    TRANSACTION_CONFLICT = "TransactionConflict"
    PROVISIONED_THROUGHPUT_EXCEEDED = "ProvisionedThroughputExceeded"
    THROTTLING_ERROR = "ThrottlingError"
    VALIDATION_ERROR = "ValidationError"
    INTERNAL_SERVER_ERROR = "InternalServerError"
    REQUEST_LIMIT_EXCEEDED = "RequestLimitExceeded"
    RESOURCE_NOT_FOUND = "ResourceNotFound"
    ACCESS_DENIED = "AccessDenied"
