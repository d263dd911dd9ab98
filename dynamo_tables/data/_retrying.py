"""
Optimistic-concurrency retry loops built on the single-item and transaction
operations of a table.

Each attempt is a full read, compute, write cycle. Providers are called
outside of the error handling, so an exception raised by a provider
propagates immediately without consuming the retry budget.
"""

import logging
from typing import (
    Any,
    Callable,
    Dict,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
)

from dynamo_tables.constants import DEFAULT_RETRIES
from dynamo_tables.data.base_operations import check_transaction_size
from dynamo_tables.data.shared_exceptions import (
    ConcurrencyError,
    ConditionalCheckFailedError,
    ConstraintFailureError,
    DuplicateItemError,
    TransactionCanceledError,
    TransactionConflictError,
)
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.row_with_item_version import RowWithItemVersion
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import TypedItem
from dynamo_tables.entities.write_entry import (
    TransactionConstraintEntry,
    WriteEntry,
)

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

ItemProvider = Callable[[TypedItem[RowT]], TypedItem[RowT]]
WriteEntryProvider = Callable[
    [CompositePrimaryKey, Optional[TypedItem[RowT]]],
    Optional[WriteEntry[RowT]],
]
HistoricalWriteEntryProvider = Callable[
    [CompositePrimaryKey, Optional[TypedItem[RowT]]],
    Optional[Tuple[WriteEntry[RowT], Optional[WriteEntry[RowT]]]],
]

RETRYABLE_REASONS = (
    ConditionalCheckFailedError,
    DuplicateItemError,
    TransactionConflictError,
)


def raise_unless_retryable(
    error: TransactionCanceledError,
    write_positions: int,
    skipped_positions: int = 0,
) -> None:
    """Decide whether a cancelled transaction may be attempted again.

    The first ``write_positions`` reasons belong to the entries a fresh read
    recomputes. The next ``skipped_positions`` reasons are ignored, and every
    reason after them belongs to a constraint.

    Raises:
        ConstraintFailureError: If a constraint's condition failed.
        TransactionCanceledError: If no retryable reason sits at a write
            position.
    """
    reasons = error.reasons
    constraint_failed = any(
        isinstance(reason, ConditionalCheckFailedError)
        for reason in reasons[write_positions + skipped_positions :]
    )
    if constraint_failed:
        raise ConstraintFailureError(reasons) from error
    if not any(
        isinstance(reason, RETRYABLE_REASONS)
        for reason in reasons[:write_positions]
    ):
        raise error


def _exhausted(
    key: Optional[CompositePrimaryKey], operation: str
) -> ConcurrencyError:
    return ConcurrencyError(
        partition_key=key.partition_key if key else None,
        sort_key=key.sort_key if key else None,
        message=(
            f"Unable to complete request to {operation} in specified number "
            "of attempts"
        ),
    )


def _keys_description(keys: Sequence[CompositePrimaryKey]) -> str:
    return ", ".join(f"({k.partition_key}, {k.sort_key})" for k in keys)


def _item_not_present(key: CompositePrimaryKey) -> ConditionalCheckFailedError:
    return ConditionalCheckFailedError(
        partition_key=key.partition_key,
        sort_key=key.sort_key,
        message="Item not present in database.",
    )


class _RetryingOperations:
    """
    Retrying read-modify-write helpers shared by every table implementation.

    Relies on the ``get_item``, ``get_items``, ``insert_item``,
    ``update_item``, ``clobber_item`` and ``transact_write`` operations of
    the class it is mixed into.
    """

    def retrying_update_item(
        self,
        key: CompositePrimaryKey,
        row_type: Type[RowT],
        updated_item_provider: ItemProvider[RowT],
        retries: int = DEFAULT_RETRIES,
    ) -> TypedItem[RowT]:
        """Updates a row, re-reading it after each conflicting write.

        Args:
            key (CompositePrimaryKey): The row to update.
            row_type (type): The dataclass stored in the row.
            updated_item_provider (Callable): Maps the current item to its
                next version. May raise to abandon the update.
            retries (int): Maximum number of attempts.

        Returns:
            TypedItem: The item that was written.

        Raises:
            ConditionalCheckFailedError: If the row does not exist.
            ConcurrencyError: If every attempt conflicted.
        """
        for attempt in range(retries):
            existing_item = self.get_item(key, row_type)
            if existing_item is None:
                raise _item_not_present(key)
            updated_item = updated_item_provider(existing_item)
            try:
                self.update_item(updated_item, existing_item)
                return updated_item
            except ConditionalCheckFailedError:
                logger.warning(
                    "Update of %r conflicted on attempt %d of %d",
                    key,
                    attempt + 1,
                    retries,
                )
        raise _exhausted(key, "update versioned item")

    def conditionally_update_item(
        self,
        key: CompositePrimaryKey,
        row_type: Type[RowT],
        update_provider: Callable[[RowT], RowT],
        retries: int = DEFAULT_RETRIES,
    ) -> TypedItem[RowT]:
        """Updates the row value, re-reading it after each conflicting write.

        ``update_provider`` receives the current row value and returns the
        new one.
        """
        return self.retrying_update_item(
            key,
            row_type,
            lambda existing: existing.create_updated_item(
                update_provider(existing.row_value)
            ),
            retries=retries,
        )

    def retrying_upsert_item(
        self,
        key: CompositePrimaryKey,
        row_type: Type[RowT],
        new_item_provider: Callable[[], TypedItem[RowT]],
        updated_item_provider: ItemProvider[RowT],
        retries: int = DEFAULT_RETRIES,
    ) -> TypedItem[RowT]:
        """Inserts the row if it is absent, otherwise updates it.

        A conflict in either branch re-reads the row and tries again, so a
        concurrent insert turns the next attempt into an update.

        Raises:
            ConcurrencyError: If every attempt conflicted.
        """
        for attempt in range(retries):
            existing_item = self.get_item(key, row_type)
            if existing_item is None:
                item = new_item_provider()
            else:
                item = updated_item_provider(existing_item)
            try:
                if existing_item is None:
                    self.insert_item(item)
                else:
                    self.update_item(item, existing_item)
                return item
            except (ConditionalCheckFailedError, DuplicateItemError):
                logger.warning(
                    "Upsert of %r conflicted on attempt %d of %d",
                    key,
                    attempt + 1,
                    retries,
                )
        raise _exhausted(key, "upsert versioned item")

    def retrying_transact_write(
        self,
        keys: Sequence[CompositePrimaryKey],
        row_type: Type[RowT],
        write_entry_provider: WriteEntryProvider[RowT],
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
        retries: int = DEFAULT_RETRIES,
    ) -> List[WriteEntry[RowT]]:
        """Writes a set of rows atomically, recomputing them on conflict.

        ``write_entry_provider`` is called once per key with the current
        item, or None when the key is absent, and returns the entry for that
        key or None to leave it out of the transaction.

        Returns:
            List[WriteEntry]: The entries of the successful transaction.

        Raises:
            ConstraintFailureError: If a constraint no longer holds. Never
                retried.
            ItemCollectionSizeLimitExceededError: If the transaction is too
                large.
            ConcurrencyError: If every attempt conflicted.
        """
        for attempt in range(retries):
            existing_items = self.get_items(keys, row_type)
            entries = [
                entry
                for entry in (
                    write_entry_provider(key, existing_items.get(key))
                    for key in keys
                )
                if entry is not None
            ]
            try:
                self.transact_write(entries, constraints=constraints)
                return entries
            except TransactionCanceledError as e:
                raise_unless_retryable(e, len(entries))
                logger.warning(
                    "Transaction for %d keys conflicted on attempt %d of %d",
                    len(keys),
                    attempt + 1,
                    retries,
                )
        raise ConcurrencyError(
            partition_key=keys[0].partition_key if keys else None,
            sort_key=keys[0].sort_key if keys else None,
            message=(
                "Unable to complete conditional transact write in specified "
                f"number of attempts for keys: {_keys_description(keys)}"
            ),
        )

    def retrying_polymorphic_transact_write(
        self,
        keys: Sequence[CompositePrimaryKey],
        registry: TypeRegistry,
        write_entry_provider: Callable[
            [CompositePrimaryKey, Optional[Any]], Optional[WriteEntry[Any]]
        ],
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
        retries: int = DEFAULT_RETRIES,
    ) -> List[WriteEntry[Any]]:
        """``retrying_transact_write`` over the row types of a registry."""
        for attempt in range(retries):
            existing_items = self.polymorphic_get_items(keys, registry)
            entries = [
                entry
                for entry in (
                    write_entry_provider(key, existing_items.get(key))
                    for key in keys
                )
                if entry is not None
            ]
            try:
                self.polymorphic_transact_write(
                    entries, registry, constraints=constraints
                )
                return entries
            except TransactionCanceledError as e:
                raise_unless_retryable(e, len(entries))
                logger.warning(
                    "Transaction for %d keys conflicted on attempt %d of %d",
                    len(keys),
                    attempt + 1,
                    retries,
                )
        raise ConcurrencyError(
            partition_key=keys[0].partition_key if keys else None,
            sort_key=keys[0].sort_key if keys else None,
            message=(
                "Unable to complete conditional transact write in specified "
                f"number of attempts for keys: {_keys_description(keys)}"
            ),
        )

    # ─────────────────────── Historical rows ────────────────────────
    def insert_item_with_historical_row(
        self, primary_item: TypedItem[Any], historical_item: TypedItem[Any]
    ) -> None:
        """Inserts a row and its history row in one transaction."""
        self.transact_write(
            [
                WriteEntry.insert(primary_item),
                WriteEntry.insert(historical_item),
            ]
        )

    def update_item_with_historical_row(
        self,
        primary_item: TypedItem[Any],
        existing_item: TypedItem[Any],
        historical_item: TypedItem[Any],
    ) -> None:
        """Updates a row and inserts its history row in one transaction."""
        self.transact_write(
            [
                WriteEntry.update(primary_item, existing_item),
                WriteEntry.insert(historical_item),
            ]
        )

    def clobber_item_with_historical_row(
        self, primary_item: TypedItem[Any], historical_item: TypedItem[Any]
    ) -> None:
        """Writes a row and its history row unconditionally, one at a time."""
        self.clobber_item(primary_item)
        self.clobber_item(historical_item)

    def retrying_update_item_with_historical_row(
        self,
        key: CompositePrimaryKey,
        row_type: Type[RowT],
        primary_item_provider: ItemProvider[RowT],
        historical_item_provider: ItemProvider[RowT],
        retries: int = DEFAULT_RETRIES,
    ) -> TypedItem[RowT]:
        """Updates a row together with a new history row.

        ``historical_item_provider`` receives the new primary item. The
        primary update and the history insert succeed or fail together.

        Returns:
            TypedItem: The primary item that was written.

        Raises:
            ConditionalCheckFailedError: If the row does not exist.
            ConcurrencyError: If every attempt conflicted.
        """
        for attempt in range(retries):
            existing_item = self.get_item(key, row_type)
            if existing_item is None:
                raise _item_not_present(key)
            updated_item = primary_item_provider(existing_item)
            historical_item = historical_item_provider(updated_item)
            try:
                self.update_item_with_historical_row(
                    updated_item, existing_item, historical_item
                )
                return updated_item
            except TransactionCanceledError as e:
                raise_unless_retryable(e, 1, skipped_positions=1)
                logger.warning(
                    "Update of %r with history conflicted on attempt %d of %d",
                    key,
                    attempt + 1,
                    retries,
                )
        raise _exhausted(key, "update versioned item")

    def retrying_upsert_item_with_historical_row(
        self,
        key: CompositePrimaryKey,
        row_type: Type[RowT],
        new_item_provider: Callable[[], TypedItem[RowT]],
        updated_item_provider: ItemProvider[RowT],
        historical_item_provider: ItemProvider[RowT],
        retries: int = DEFAULT_RETRIES,
    ) -> TypedItem[RowT]:
        """Inserts or updates a row together with a new history row.

        Returns:
            TypedItem: The primary item that was written.

        Raises:
            ConcurrencyError: If every attempt conflicted.
        """
        for attempt in range(retries):
            existing_item = self.get_item(key, row_type)
            if existing_item is None:
                primary_item = new_item_provider()
            else:
                primary_item = updated_item_provider(existing_item)
            historical_item = historical_item_provider(primary_item)
            try:
                if existing_item is None:
                    self.insert_item_with_historical_row(
                        primary_item, historical_item
                    )
                else:
                    self.update_item_with_historical_row(
                        primary_item, existing_item, historical_item
                    )
                return primary_item
            except TransactionCanceledError as e:
                raise_unless_retryable(e, 1, skipped_positions=1)
                logger.warning(
                    "Upsert of %r with history conflicted on attempt %d of %d",
                    key,
                    attempt + 1,
                    retries,
                )
        raise _exhausted(key, "upsert versioned item")

    def retrying_upsert_versioned_item_with_historical_row(
        self,
        partition_key: str,
        historical_key: str,
        item: RowT,
        generate_sort_key: Callable[[int], str],
        retries: int = DEFAULT_RETRIES,
    ) -> TypedItem[RowWithItemVersion[RowT]]:
        """Writes ``item`` as the next version of a versioned row.

        The current version lives at ``(partition_key,
        generate_sort_key(0))`` as a ``RowWithItemVersion``. Every version,
        the current one included, is also inserted into the
        ``historical_key`` partition under ``generate_sort_key(version)``.
        The first write creates item version 1.

        Returns:
            TypedItem: The primary item that was written.

        Raises:
            ConcurrencyError: If every attempt conflicted.
        """
        key = CompositePrimaryKey(partition_key, generate_sort_key(0))

        def new_item_provider() -> TypedItem[RowWithItemVersion[RowT]]:
            return TypedItem.new_item(key, RowWithItemVersion.new_item(item))

        def updated_item_provider(
            existing: TypedItem[RowWithItemVersion[RowT]],
        ) -> TypedItem[RowWithItemVersion[RowT]]:
            return existing.create_updated_item(
                existing.row_value.create_updated_item(item)
            )

        def historical_item_provider(
            primary: TypedItem[RowWithItemVersion[RowT]],
        ) -> TypedItem[RowWithItemVersion[RowT]]:
            historical = CompositePrimaryKey(
                historical_key,
                generate_sort_key(primary.row_value.item_version),
            )
            return TypedItem.new_item(historical, primary.row_value)

        return self.retrying_upsert_item_with_historical_row(
            key,
            RowWithItemVersion.for_type(type(item)),
            new_item_provider,
            updated_item_provider,
            historical_item_provider,
            retries=retries,
        )

    def clobber_versioned_item_with_historical_row(
        self,
        partition_key: str,
        historical_key: str,
        item: Any,
        generate_sort_key: Callable[[int], str],
        retries: int = DEFAULT_RETRIES,
    ) -> None:
        """Overwrites a versioned row whatever version is stored.

        Same layout as ``retrying_upsert_versioned_item_with_historical_row``
        for callers that do not need the written item.
        """
        self.retrying_upsert_versioned_item_with_historical_row(
            partition_key,
            historical_key,
            item,
            generate_sort_key,
            retries=retries,
        )

    def retrying_transact_write_with_historical_rows(
        self,
        keys: Sequence[CompositePrimaryKey],
        row_type: Type[RowT],
        write_entry_provider: HistoricalWriteEntryProvider[RowT],
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
        retries: int = DEFAULT_RETRIES,
    ) -> List[WriteEntry[RowT]]:
        """Writes a set of rows and their history rows atomically.

        ``write_entry_provider`` returns, per key, the primary entry and an
        optional history entry, or None to leave the key out. Primary
        entries are submitted first, then history entries, then
        constraints.

        Returns:
            List[WriteEntry]: The primary entries of the successful
                transaction, without history entries.

        Raises:
            ItemCollectionSizeLimitExceededError: If entries, history entries
                and constraints together exceed the transaction limit.
            ConstraintFailureError: If a constraint no longer holds.
            ConcurrencyError: If every attempt conflicted.
        """
        for attempt in range(retries):
            existing_items: Dict[CompositePrimaryKey, TypedItem[RowT]] = (
                self.get_items(keys, row_type)
            )
            entries: List[WriteEntry[RowT]] = []
            historical_entries: List[WriteEntry[RowT]] = []
            for key in keys:
                result = write_entry_provider(key, existing_items.get(key))
                if result is None:
                    continue
                entry, historical_entry = result
                entries.append(entry)
                if historical_entry is not None:
                    historical_entries.append(historical_entry)

            check_transaction_size(
                len(entries) + len(historical_entries) + len(constraints)
            )
            try:
                self.transact_write(
                    entries + historical_entries, constraints=constraints
                )
                return entries
            except TransactionCanceledError as e:
                raise_unless_retryable(
                    e,
                    len(entries),
                    skipped_positions=len(historical_entries),
                )
                logger.warning(
                    "Transaction with history for %d keys conflicted on "
                    "attempt %d of %d",
                    len(keys),
                    attempt + 1,
                    retries,
                )
        raise ConcurrencyError(
            partition_key=keys[0].partition_key if keys else None,
            sort_key=keys[0].sort_key if keys else None,
            message=(
                "Unable to complete conditional transact write in specified "
                f"number of attempts for keys: {_keys_description(keys)}"
            ),
        )
