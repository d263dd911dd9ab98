"""
Base classes and error mapping shared by the DynamoDB table mixins.

Every method that calls DynamoDB is wrapped by ``handle_dynamodb_errors``,
which turns ``botocore`` ``ClientError`` instances into the exceptions of
``dynamo_tables.data.shared_exceptions``.
"""

import logging
from functools import wraps
from typing import Any, Dict, List, Optional, Sequence, Type

from botocore.exceptions import ClientError

from dynamo_tables.constants import (
    MAX_STATEMENTS_PER_TRANSACTION,
    PARTITION_KEY_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
    CancellationReasonCode,
)
from dynamo_tables.data._base import DynamoClientProtocol
from dynamo_tables.data.shared_exceptions import (
    ConditionalCheckFailedError,
    DuplicateItemError,
    DynamoDBAccessError,
    DynamoDBError,
    DynamoDBResourceNotFoundError,
    DynamoDBServerError,
    DynamoDBThroughputError,
    DynamoDBValidationError,
    ItemCollectionFullError,
    ItemCollectionSizeLimitExceededError,
    RequestLimitExceededError,
    ThrottlingError,
    TransactionCanceledError,
    TransactionConflictError,
    UnknownDynamoDBError,
)
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.typed_item import TypedItem
from dynamo_tables.entities.write_entry import (
    TransactionConstraintEntry,
    WriteEntry,
)

logger = logging.getLogger(__name__)

MULTIPLE_OPERATIONS_ON_ONE_ITEM = (
    "Transaction request cannot include multiple operations on one item"
)

# ClientError codes raised by single requests
CLIENT_ERROR_CODES: Dict[str, Type[DynamoDBError]] = {
    "ConditionalCheckFailedException": ConditionalCheckFailedError,
    "DuplicateItemException": DuplicateItemError,
    "InternalServerError": DynamoDBServerError,
    "ProvisionedThroughputExceededException": DynamoDBThroughputError,
    "RequestLimitExceeded": RequestLimitExceededError,
    "ResourceNotFoundException": DynamoDBResourceNotFoundError,
    "ThrottlingException": ThrottlingError,
    "TransactionConflictException": TransactionConflictError,
    "ValidationException": DynamoDBValidationError,
    "AccessDeniedException": DynamoDBAccessError,
}

# Per-statement codes of cancelled transactions and batch responses
STATEMENT_ERROR_CODES: Dict[str, Type[DynamoDBError]] = {
    CancellationReasonCode.CONDITIONAL_CHECK_FAILED.value: (
        ConditionalCheckFailedError
    ),
    CancellationReasonCode.DUPLICATE_ITEM.value: DuplicateItemError,
    CancellationReasonCode.ITEM_COLLECTION_SIZE_LIMIT_EXCEEDED.value: (
        ItemCollectionFullError
    ),
    CancellationReasonCode.TRANSACTION_CONFLICT.value: (
        TransactionConflictError
    ),
    CancellationReasonCode.PROVISIONED_THROUGHPUT_EXCEEDED.value: (
        DynamoDBThroughputError
    ),
    CancellationReasonCode.THROTTLING_ERROR.value: ThrottlingError,
    CancellationReasonCode.VALIDATION_ERROR.value: DynamoDBValidationError,
    CancellationReasonCode.INTERNAL_SERVER_ERROR.value: DynamoDBServerError,
    CancellationReasonCode.REQUEST_LIMIT_EXCEEDED.value: (
        RequestLimitExceededError
    ),
    CancellationReasonCode.RESOURCE_NOT_FOUND.value: (
        DynamoDBResourceNotFoundError
    ),
    CancellationReasonCode.ACCESS_DENIED.value: DynamoDBAccessError,
}


def statement_error(
    code: Optional[str],
    key: Optional[CompositePrimaryKey],
    message: Optional[str] = None,
) -> Optional[DynamoDBError]:
    """Map a per-statement error code to an exception.

    Returns None for the ``None`` code of a cancelled transaction.
    """
    if code is None or code == CancellationReasonCode.NONE.value:
        return None
    partition_key = key.partition_key if key else None
    sort_key = key.sort_key if key else None
    error_class = STATEMENT_ERROR_CODES.get(code)
    if error_class is None:
        return UnknownDynamoDBError(
            code=code,
            partition_key=partition_key,
            sort_key=sort_key,
            message=message,
        )
    return error_class(
        partition_key=partition_key, sort_key=sort_key, message=message
    )


def cancellation_reasons_to_errors(
    reasons: Sequence[Dict[str, Any]],
    keys: Sequence[Optional[CompositePrimaryKey]],
) -> List[Optional[DynamoDBError]]:
    """Map the cancellation reasons of a transaction, position by position.

    The key of each reason is read from the item DynamoDB returned with it
    when present, otherwise from the statement submitted at that position.
    """
    errors: List[Optional[DynamoDBError]] = []
    for index, reason in enumerate(reasons):
        key = keys[index] if index < len(keys) else None
        item = reason.get("Item") or {}
        if PARTITION_KEY_ATTRIBUTE in item and SORT_KEY_ATTRIBUTE in item:
            key = CompositePrimaryKey.from_item(item)
        errors.append(
            statement_error(reason.get("Code"), key, reason.get("Message"))
        )
    return errors


def key_of(value: Any) -> Optional[CompositePrimaryKey]:
    """The composite key an operation argument refers to, if any."""
    if isinstance(value, CompositePrimaryKey):
        return value
    if isinstance(value, TypedItem):
        return value.composite_primary_key
    if isinstance(value, (WriteEntry, TransactionConstraintEntry)):
        return value.composite_primary_key
    return None


def check_transaction_size(entry_count: int) -> None:
    """Raise before any request when a transaction is too large."""
    if entry_count > MAX_STATEMENTS_PER_TRANSACTION:
        raise ItemCollectionSizeLimitExceededError(
            attempted_size=entry_count,
            maximum_size=MAX_STATEMENTS_PER_TRANSACTION,
        )


def transaction_keys(
    entries: Sequence[WriteEntry[Any]],
    constraints: Sequence[TransactionConstraintEntry[Any]],
) -> List[CompositePrimaryKey]:
    """The keys of a transaction's statements, entries first.

    Raises:
        ItemCollectionSizeLimitExceededError: If there are more than 100
            entries and constraints combined.
        DynamoDBValidationError: If two statements target the same row.
    """
    check_transaction_size(len(entries) + len(constraints))
    keys = [entry.composite_primary_key for entry in entries] + [
        constraint.composite_primary_key for constraint in constraints
    ]
    seen = set()
    for key in keys:
        if key in seen:
            raise DynamoDBValidationError(
                partition_key=key.partition_key,
                sort_key=key.sort_key,
                message=MULTIPLE_OPERATIONS_ON_ONE_ITEM,
            )
        seen.add(key)
    return keys


class ErrorContextExtractor:
    """Extract context information from operation arguments."""

    @staticmethod
    def extract_key(context: Optional[dict]) -> Optional[CompositePrimaryKey]:
        if not context:
            return None
        args = context.get("args") or ()
        if args:
            return key_of(args[0])
        for value in (context.get("kwargs") or {}).values():
            key = key_of(value)
            if key is not None:
                return key
        return None


def handle_dynamodb_errors(operation_name: str):
    """
    Decorator to handle DynamoDB errors consistently across all operations.

    Args:
        operation_name: Name of the operation for error context
    """

    def decorator(func):
        @wraps(func)
        def wrapper(self, *args, **kwargs):
            try:
                return func(self, *args, **kwargs)
            except ClientError as e:
                self._handle_client_error(
                    e,
                    operation_name,
                    context={"args": args, "kwargs": kwargs},
                )
                # Safety net: if _handle_client_error doesn't raise, re-raise
                # original
                raise

        return wrapper

    return decorator


class DynamoDBBaseOperations(DynamoClientProtocol):
    """
    Base class for all DynamoDB operations with common functionality.

    This class provides centralized error handling shared by the table
    mixins.
    """

    def _handle_client_error(
        self,
        error: ClientError,
        operation: str,
        context: Optional[dict] = None,
    ) -> None:
        """
        Centralized error handling for all DynamoDB operations.

        Args:
            error: The ClientError from boto3
            operation: Name of the operation that failed
            context: Additional context for error reporting

        Raises:
            Appropriate exception based on error code
        """
        error_code = error.response.get("Error", {}).get("Code", "")
        message = error.response.get("Error", {}).get("Message")
        key = ErrorContextExtractor.extract_key(context)

        if error_code == "TransactionCanceledException":
            reasons = error.response.get("CancellationReasons", [])
            raise TransactionCanceledError(
                cancellation_reasons_to_errors(reasons, [])
            ) from error

        error_class = CLIENT_ERROR_CODES.get(error_code)
        if error_class is None:
            logger.debug(
                "Unrecognised error code %s in %s", error_code, operation
            )
            raise UnknownDynamoDBError(
                code=error_code,
                partition_key=key.partition_key if key else None,
                sort_key=key.sort_key if key else None,
                message=message,
            ) from error
        raise error_class(
            partition_key=key.partition_key if key else None,
            sort_key=key.sort_key if key else None,
            message=message,
        ) from error
