"""
A table wrapper that makes the next writes lose a race with another writer.

Before each of the first ``simulate_concurrency_modifications`` writes, the
wrapper clobbers the targeted row with a newer version, so the conditional
write that follows fails exactly as it would if another client had updated
the row in between. Used to exercise the retrying operations.
"""

import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from dynamo_tables.data._base import CompositePrimaryKeyTable
from dynamo_tables.data._retrying import _RetryingOperations
from dynamo_tables.data.shared_exceptions import (
    BatchFailuresError,
    DynamoDBError,
)
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import TypedItem, check_update
from dynamo_tables.entities.write_entry import (
    TransactionConstraintEntry,
    WriteEntry,
    WriteEntryKind,
)

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")


class SimulateConcurrencyTable(_RetryingOperations):
    """
    Wraps a table and injects concurrent modifications.

    Args:
        wrapped: The table that stores the rows.
        simulate_concurrency_modifications: Number of writes to interfere
            with. Later writes are delegated unchanged.
        simulate_on_insert_item: Interfere with ``insert_item``.
        simulate_on_update_item: Interfere with ``update_item``.
        simulate_on_transact_write: Interfere with the update and delete
            entries of ``transact_write`` and
            ``polymorphic_transact_write``.

    Bulk writes are applied entry by entry through ``insert_item`` and
    ``update_item`` so that they see the same interference.
    """

    def __init__(
        self,
        wrapped: CompositePrimaryKeyTable,
        simulate_concurrency_modifications: int,
        simulate_on_insert_item: bool = True,
        simulate_on_update_item: bool = True,
        simulate_on_transact_write: bool = True,
    ):
        if simulate_concurrency_modifications < 0:
            raise ValueError(
                "simulate_concurrency_modifications cannot be negative"
            )
        self._wrapped = wrapped
        self.simulate_concurrency_modifications = (
            simulate_concurrency_modifications
        )
        self.simulate_on_insert_item = simulate_on_insert_item
        self.simulate_on_update_item = simulate_on_update_item
        self.simulate_on_transact_write = simulate_on_transact_write
        self.previous_concurrency_modifications = 0
        self._lock = threading.Lock()

    def _take_modification(self, enabled: bool) -> bool:
        if not enabled:
            return False
        with self._lock:
            if (
                self.previous_concurrency_modifications
                >= self.simulate_concurrency_modifications
            ):
                return False
            self.previous_concurrency_modifications += 1
            logger.debug(
                "Simulating concurrent modification %d of %d",
                self.previous_concurrency_modifications,
                self.simulate_concurrency_modifications,
            )
            return True

    def _modify_concurrently(self, existing_item: TypedItem[Any]) -> None:
        self._wrapped.clobber_item(
            existing_item.create_updated_item(existing_item.row_value)
        )

    def insert_item(self, item: TypedItem[Any]) -> None:
        if self._take_modification(self.simulate_on_insert_item):
            self._wrapped.clobber_item(item)
        self._wrapped.insert_item(item)

    def clobber_item(self, item: TypedItem[Any]) -> None:
        self._wrapped.clobber_item(item)

    def update_item(
        self, new_item: TypedItem[Any], existing_item: TypedItem[Any]
    ) -> None:
        if self._take_modification(self.simulate_on_update_item):
            self._modify_concurrently(existing_item)
        self._wrapped.update_item(new_item, existing_item)

    def delete_item(self, existing_item: TypedItem[Any]) -> None:
        self._wrapped.delete_item(existing_item)

    def delete_item_for_key(self, key: CompositePrimaryKey) -> None:
        self._wrapped.delete_item_for_key(key)

    def get_item(
        self, key: CompositePrimaryKey, row_type: Type[RowT]
    ) -> Optional[TypedItem[RowT]]:
        return self._wrapped.get_item(key, row_type)

    def get_items(
        self, keys: Sequence[CompositePrimaryKey], row_type: Type[RowT]
    ) -> Dict[CompositePrimaryKey, TypedItem[RowT]]:
        return self._wrapped.get_items(keys, row_type)

    def _interfere_with_transaction(
        self, entries: Sequence[WriteEntry[Any]]
    ) -> None:
        existing_items = [
            entry.existing_item
            for entry in entries
            if entry.kind
            in (WriteEntryKind.UPDATE, WriteEntryKind.DELETE_ITEM)
        ]
        if existing_items and self._take_modification(
            self.simulate_on_transact_write
        ):
            for existing_item in existing_items:
                self._modify_concurrently(existing_item)

    def transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None:
        self._interfere_with_transaction(entries)
        self._wrapped.transact_write(entries, constraints=constraints)

    def polymorphic_transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        registry: TypeRegistry,
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None:
        for entry in entries:
            registry.check_row_type(entry.row_type)
        self._interfere_with_transaction(entries)
        self._wrapped.polymorphic_transact_write(
            entries, registry, constraints=constraints
        )

    # ────────────────────────────── bulk ──────────────────────────────
    def bulk_write(self, entries: Sequence[WriteEntry[Any]]) -> None:
        errors = self.bulk_write_without_throwing(entries)
        if errors:
            raise BatchFailuresError(errors)

    def bulk_write_without_throwing(
        self, entries: Sequence[WriteEntry[Any]]
    ) -> List[Exception]:
        """Applies each entry through this wrapper's single-item writes."""
        for entry in entries:
            if entry.kind is WriteEntryKind.UPDATE:
                check_update(entry.new_item, entry.existing_item)
        errors: List[Exception] = []
        for entry in entries:
            try:
                if entry.kind is WriteEntryKind.INSERT:
                    self.insert_item(entry.new_item)
                elif entry.kind is WriteEntryKind.UPDATE:
                    self.update_item(entry.new_item, entry.existing_item)
                elif entry.kind is WriteEntryKind.DELETE_AT_KEY:
                    self.delete_item_for_key(entry.key)
                else:
                    self.delete_item(entry.existing_item)
            except DynamoDBError as e:
                errors.append(e)
        return errors

    def bulk_write_with_fallback(
        self, entries: Sequence[WriteEntry[Any]]
    ) -> None:
        self.bulk_write(entries)

    def polymorphic_bulk_write(
        self, entries: Sequence[WriteEntry[Any]], registry: TypeRegistry
    ) -> None:
        for entry in entries:
            registry.check_row_type(entry.row_type)
        self.bulk_write(entries)

    def delete_items(self, existing_items: Sequence[TypedItem[Any]]) -> None:
        self.bulk_write(
            [WriteEntry.delete_item(item) for item in existing_items]
        )

    def delete_items_for_keys(
        self, keys: Sequence[CompositePrimaryKey]
    ) -> None:
        self.bulk_write([WriteEntry.delete_at_key(key) for key in keys])

    def __getattr__(self, name: str) -> Any:
        if name == "_wrapped":
            raise AttributeError(name)
        # Reads go straight to the wrapped table
        return getattr(self._wrapped, name)

    def __repr__(self) -> str:
        return (
            f"SimulateConcurrencyTable(wrapped={self._wrapped!r}, "
            "simulate_concurrency_modifications="
            f"{self.simulate_concurrency_modifications})"
        )
