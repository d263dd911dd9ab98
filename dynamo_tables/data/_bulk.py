import logging
from typing import Any, Callable, List, Sequence, Tuple

from dynamo_tables.constants import (
    MAX_STATEMENT_LENGTH,
    MAX_STATEMENTS_PER_BATCH,
)
from dynamo_tables.data.base_operations import (
    DynamoDBBaseOperations,
    handle_dynamodb_errors,
    statement_error,
)
from dynamo_tables.data.partiql import RegisteredStatementContext
from dynamo_tables.data.shared_exceptions import (
    BatchFailuresError,
    DynamoDBError,
)
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import TypedItem
from dynamo_tables.entities.write_entry import WriteEntry, WriteEntryKind

logger = logging.getLogger(__name__)

StatementRenderer = Callable[[WriteEntry[Any]], str]


class _BulkOperations(DynamoDBBaseOperations):
    """
    Best-effort writes of many entries without group atomicity.

    Entries are sent as batches of at most 25 PartiQL statements. Failures of
    individual statements are collected and raised together as
    ``BatchFailuresError`` once every batch has been attempted. A request
    that fails as a whole is reported once for its batch.
    """

    def bulk_write(self, entries: Sequence[WriteEntry[Any]]) -> None:
        """Applies entries in batches of PartiQL statements.

        Raises:
            BatchFailuresError: If any entry failed. The other entries are
                applied.
        """
        errors = self.bulk_write_without_throwing(entries)
        if errors:
            raise BatchFailuresError(errors)

    def bulk_write_without_throwing(
        self, entries: Sequence[WriteEntry[Any]]
    ) -> List[Exception]:
        """Applies entries in batches and returns the failures.

        Returns:
            List[Exception]: One error per failed entry, plus one per batch
                whose request failed as a whole. Empty when every entry was
                applied.
        """
        statements = [
            (self._statements.statement_for_entry(entry), entry)
            for entry in entries
        ]
        return self._execute_in_batches(statements)

    def bulk_write_with_fallback(
        self, entries: Sequence[WriteEntry[Any]]
    ) -> None:
        """Applies entries in batches, writing oversized ones individually.

        An entry whose statement exceeds the PartiQL length limit is written
        with a single-item request instead.

        Raises:
            BatchFailuresError: With the failures of both paths.
        """
        self._bulk_write_with_fallback(
            entries, self._statements.statement_for_entry
        )

    def polymorphic_bulk_write(
        self, entries: Sequence[WriteEntry[Any]], registry: TypeRegistry
    ) -> None:
        """Applies entries of any registered row types, with fallback.

        Raises:
            UnexpectedTypeError: If an entry's row type is not registered.
                Raised before any request is made.
            BatchFailuresError: If any entry failed.
        """
        context = RegisteredStatementContext(registry, self._statements)
        self._bulk_write_with_fallback(entries, lambda e: e.handle(context))

    def delete_items(self, existing_items: Sequence[TypedItem[Any]]) -> None:
        """Deletes rows that have not changed since they were read."""
        self.bulk_write_with_fallback(
            [WriteEntry.delete_item(item) for item in existing_items]
        )

    def delete_items_for_keys(
        self, keys: Sequence[CompositePrimaryKey]
    ) -> None:
        """Deletes rows unconditionally."""
        self.bulk_write_with_fallback(
            [WriteEntry.delete_at_key(key) for key in keys]
        )

    def _bulk_write_with_fallback(
        self,
        entries: Sequence[WriteEntry[Any]],
        render: StatementRenderer,
    ) -> None:
        batched: List[Tuple[str, WriteEntry[Any]]] = []
        oversized: List[WriteEntry[Any]] = []
        for entry in entries:
            statement = render(entry)
            if len(statement) > MAX_STATEMENT_LENGTH:
                oversized.append(entry)
            else:
                batched.append((statement, entry))

        errors: List[Exception] = self._execute_in_batches(batched)
        if oversized:
            logger.debug(
                "Writing %d oversized entries individually", len(oversized)
            )
        for entry in oversized:
            try:
                self._write_individually(entry)
            except DynamoDBError as e:
                errors.append(e)

        if errors:
            raise BatchFailuresError(errors)

    def _write_individually(self, entry: WriteEntry[Any]) -> None:
        if entry.kind is WriteEntryKind.INSERT:
            self.insert_item(entry.new_item)
        elif entry.kind is WriteEntryKind.UPDATE:
            self.update_item(entry.new_item, entry.existing_item)
        elif entry.kind is WriteEntryKind.DELETE_AT_KEY:
            self.delete_item_for_key(entry.key)
        else:
            self.delete_item(entry.existing_item)

    def _execute_in_batches(
        self, statements: Sequence[Tuple[str, WriteEntry[Any]]]
    ) -> List[Exception]:
        errors: List[Exception] = []
        for i in range(0, len(statements), MAX_STATEMENTS_PER_BATCH):
            chunk = statements[i : i + MAX_STATEMENTS_PER_BATCH]
            try:
                errors.extend(self._execute_batch(chunk))
            except DynamoDBError as e:
                logger.warning(
                    "Batch of %d statements failed: %s", len(chunk), e
                )
                errors.append(e)
        return errors

    @handle_dynamodb_errors("bulk_write")
    def _execute_batch(
        self, chunk: Sequence[Tuple[str, WriteEntry[Any]]]
    ) -> List[Exception]:
        logger.debug("Executing batch of %d statements", len(chunk))
        response = self._client.batch_execute_statement(
            Statements=[{"Statement": statement} for statement, _ in chunk]
        )
        errors: List[Exception] = []
        for (_, entry), result in zip(chunk, response.get("Responses", [])):
            error = result.get("Error")
            if not error:
                continue
            mapped = statement_error(
                error.get("Code"),
                entry.composite_primary_key,
                error.get("Message"),
            )
            if mapped is not None:
                errors.append(mapped)
        return errors
