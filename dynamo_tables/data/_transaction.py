import logging
from typing import Any, List, Optional, Sequence

from botocore.exceptions import ClientError

from dynamo_tables.data.base_operations import (
    DynamoDBBaseOperations,
    cancellation_reasons_to_errors,
    handle_dynamodb_errors,
    transaction_keys,
)
from dynamo_tables.data.partiql import RegisteredStatementContext
from dynamo_tables.data.shared_exceptions import (
    DynamoDBError,
    TransactionCanceledError,
    TransactionConflictError,
)
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.write_entry import (
    TransactionConstraintEntry,
    WriteEntry,
)
from dynamo_tables.utils.retry_with_backoff import sleep_before_retry

logger = logging.getLogger(__name__)


def _only_transaction_conflicts(
    reasons: Sequence[Optional[DynamoDBError]],
) -> bool:
    causes = [reason for reason in reasons if reason is not None]
    return bool(causes) and all(
        isinstance(reason, TransactionConflictError) for reason in causes
    )


class _TransactionOperations(DynamoDBBaseOperations):
    """
    Atomic multi-row writes.

    Every write entry becomes one PartiQL statement and every constraint an
    ``EXISTS`` check. All statements succeed together or none is applied.
    """

    def transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None:
        """Applies write entries atomically.

        Args:
            entries (Sequence[WriteEntry]): The mutations to apply.
            constraints (Sequence[TransactionConstraintEntry]): Rows that
                must still be at the given version for the writes to apply.

        Raises:
            ItemCollectionSizeLimitExceededError: If there are more than 100
                entries and constraints combined. No request is made.
            DynamoDBValidationError: If two entries or constraints target
                the same row. No request is made.
            TransactionCanceledError: If DynamoDB cancels the transaction.
                ``reasons`` lines up with entries followed by constraints.
        """
        keys = transaction_keys(entries, constraints)
        statements = [
            self._statements.statement_for_entry(entry) for entry in entries
        ]
        self._submit_transaction(statements, constraints, keys)

    def polymorphic_transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        registry: TypeRegistry,
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None:
        """Applies entries of any registered row types atomically.

        Raises:
            UnexpectedTypeError: If an entry's row type is not registered.
        """
        keys = transaction_keys(entries, constraints)
        context = RegisteredStatementContext(registry, self._statements)
        statements = [entry.handle(context) for entry in entries]
        self._submit_transaction(statements, constraints, keys)

    def _submit_transaction(
        self,
        statements: List[str],
        constraints: Sequence[TransactionConstraintEntry[Any]],
        keys: Sequence[Optional[CompositePrimaryKey]],
    ) -> None:
        statements = statements + [
            self._statements.statement_for_constraint(constraint)
            for constraint in constraints
        ]
        if not statements:
            return

        retry = self._config.retry
        retries_remaining = retry.num_retries
        while True:
            try:
                self._execute_transaction(statements, keys)
                return
            except TransactionCanceledError as e:
                if retries_remaining <= 0 or not _only_transaction_conflicts(
                    e.reasons
                ):
                    raise
                logger.warning(
                    "Transaction of %d statements conflicted, %d retries left",
                    len(statements),
                    retries_remaining,
                )
                sleep_before_retry(retry.get_retry_interval(retries_remaining))
                retries_remaining -= 1

    @handle_dynamodb_errors("transact_write")
    def _execute_transaction(
        self,
        statements: List[str],
        keys: Sequence[Optional[CompositePrimaryKey]],
    ) -> None:
        logger.debug("Executing transaction of %d statements", len(statements))
        try:
            self._client.execute_transaction(
                TransactStatements=[
                    {"Statement": statement} for statement in statements
                ]
            )
        except ClientError as e:
            if (
                e.response.get("Error", {}).get("Code")
                != "TransactionCanceledException"
            ):
                raise
            raise TransactionCanceledError(
                cancellation_reasons_to_errors(
                    e.response.get("CancellationReasons", []), keys
                )
            ) from e
