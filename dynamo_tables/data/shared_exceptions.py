"""Custom exceptions for dynamo_tables data layer operations."""

from typing import List, Optional, Sequence


class DynamoTablesError(Exception):
    """Base exception for all dynamo_tables errors."""


# DynamoDB specific exceptions
class DynamoDBError(DynamoTablesError):
    """Base exception for errors surfaced by DynamoDB for a single key."""

    def __init__(
        self,
        partition_key: Optional[str] = None,
        sort_key: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.partition_key = partition_key
        self.sort_key = sort_key
        self.message = message
        super().__init__(self._describe())

    def _describe(self) -> str:
        description = self.message or self.__class__.__name__
        if self.partition_key is not None or self.sort_key is not None:
            description += (
                f" (PK={self.partition_key!r}, SK={self.sort_key!r})"
            )
        return description


class ConditionalCheckFailedError(DynamoDBError):
    """Raised when a write's condition does not hold for the stored row."""


class DuplicateItemError(DynamoDBError):
    """Raised when an insert targets a key that already exists."""


class DynamoRetryableException(DynamoDBError):
    """
    Exception raised for retryable errors in DynamoDB operations.

    This exception should be raised when an operation fails due to a temporary
    issue such as a provisioned throughput exceeded error, which could succeed
    if retried later.
    """


class DynamoCriticalErrorException(DynamoDBError):
    """
    Exception raised for critical errors in DynamoDB operations.

    This exception should be raised when an operation fails due to a permanent
    issue such as a resource not found or permission denied error, which would
    not succeed if retried without addressing the underlying issue.
    """


class DynamoDBThroughputError(DynamoRetryableException):
    """Raised when DynamoDB provisioned throughput is exceeded."""


class RequestLimitExceededError(DynamoRetryableException):
    """Raised when the account request limit is exceeded."""


class ThrottlingError(DynamoRetryableException):
    """Raised when DynamoDB throttles the request."""


class DynamoDBServerError(DynamoRetryableException):
    """Raised when DynamoDB has an internal server error."""


class TransactionConflictError(DynamoRetryableException):
    """Raised when another transaction holds the same item."""


class DynamoDBAccessError(DynamoCriticalErrorException):
    """Raised when access to DynamoDB is denied."""


class DynamoDBResourceNotFoundError(DynamoCriticalErrorException):
    """Raised when a DynamoDB resource is not found."""


class DynamoDBValidationError(DynamoCriticalErrorException):
    """Raised when DynamoDB request validation fails."""


class ItemCollectionFullError(DynamoCriticalErrorException):
    """Raised when a statement would grow an item collection past its limit."""


class UnknownDynamoDBError(DynamoDBError):
    """Raised for an error code this package does not recognise."""

    def __init__(
        self,
        code: Optional[str] = None,
        partition_key: Optional[str] = None,
        sort_key: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.code = code
        super().__init__(
            partition_key=partition_key,
            sort_key=sort_key,
            message=message or f"Unknown error code {code}",
        )


# Entity specific exceptions
class EntityError(DynamoTablesError):
    """Base exception for entity operations."""


class EntityValidationError(EntityError):
    """Raised when entity validation fails."""


class UnexpectedTypeError(EntityError):
    """Raised when a row type tag is not in the registered set."""

    def __init__(self, provided: Optional[str]):
        self.provided = provided
        super().__init__(f"Unexpected row type: {provided}")


class TypeMismatchError(EntityError):
    """Raised when a stored row type differs from the requested one."""

    def __init__(self, expected: str, provided: Optional[str]):
        self.expected = expected
        self.provided = provided
        super().__init__(
            f"Expected to decode {expected}. Instead found {provided}."
        )


class UnexpectedResponseError(EntityError):
    """Raised when DynamoDB returns a response that cannot be interpreted."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


# Operation specific exceptions
class OperationError(DynamoTablesError):
    """Base exception for operation failures."""


class ConcurrencyError(OperationError):
    """Raised when a retrying operation runs out of attempts."""

    def __init__(
        self,
        partition_key: Optional[str] = None,
        sort_key: Optional[str] = None,
        message: Optional[str] = None,
    ):
        self.partition_key = partition_key
        self.sort_key = sort_key
        self.message = message
        super().__init__(message or "Retry budget exhausted")


class TransactionCanceledError(OperationError):
    """Raised when DynamoDB cancels a transaction.

    ``reasons`` has one element per submitted statement, in submission
    order. ``None`` marks a statement that did not cause the cancellation.
    """

    def __init__(self, reasons: Sequence[Optional[DynamoDBError]]):
        self.reasons: List[Optional[DynamoDBError]] = list(reasons)
        causes = [str(reason) for reason in self.reasons if reason]
        super().__init__(
            "Transaction canceled: " + ("; ".join(causes) or "no reasons")
        )


class ConstraintFailureError(OperationError):
    """Raised when a transaction constraint entry no longer holds."""

    def __init__(self, reasons: Sequence[Optional[DynamoDBError]]):
        self.reasons: List[Optional[DynamoDBError]] = list(reasons)
        super().__init__("Transaction constraint failed")


class ItemCollectionSizeLimitExceededError(OperationError):
    """Raised when a transaction has more entries than DynamoDB allows."""

    def __init__(self, attempted_size: int, maximum_size: int):
        self.attempted_size = attempted_size
        self.maximum_size = maximum_size
        super().__init__(
            f"Transaction of {attempted_size} entries exceeds the maximum "
            f"of {maximum_size}"
        )


class BatchFailuresError(OperationError):
    """Raised after a bulk write when one or more entries failed."""

    def __init__(self, errors: Sequence[Exception]):
        self.errors: List[Exception] = list(errors)
        super().__init__(f"{len(self.errors)} bulk write entries failed")


class StatementLengthExceededError(OperationError):
    """Raised when a statement is too long to submit."""


class UnableToUpdateError(OperationError):
    """Raised when an attribute cannot be expressed as a partial update."""
