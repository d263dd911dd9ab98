"""
A process-local table with the semantics of ``DynamoTable``.

Rows are held as encoded DynamoDB attribute maps so that the codec, the
reserved attribute checks and the row type tags behave exactly as they do
against DynamoDB. Intended for tests of application code.
"""

import copy
import logging
import threading
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

from dynamo_tables.config import TableConfiguration
from dynamo_tables.constants import (
    CREATE_DATE_ATTRIBUTE,
    ROW_VERSION_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
)
from dynamo_tables.data._query import (
    decode_pagination_token,
    encode_pagination_token,
)
from dynamo_tables.data._retrying import _RetryingOperations
from dynamo_tables.data.base_operations import transaction_keys
from dynamo_tables.data.shared_exceptions import (
    BatchFailuresError,
    ConditionalCheckFailedError,
    DuplicateItemError,
    DynamoDBError,
    TransactionCanceledError,
)
from dynamo_tables.entities.attribute_condition import AttributeCondition
from dynamo_tables.entities.codec import AttributeValueCodec
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import (
    TypedItem,
    check_update,
    item_to_typed_item,
)
from dynamo_tables.entities.util import format_timestamp
from dynamo_tables.entities.write_entry import (
    TransactionConstraintEntry,
    WriteEntry,
    WriteEntryKind,
)

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

Store = Dict[str, Dict[str, Dict[str, Any]]]
TransactionDelegate = Callable[
    [Sequence[CompositePrimaryKey], "InMemoryDynamoTable"],
    Sequence[Optional[DynamoDBError]],
]
ExecuteItemFilter = Callable[[str, str, str, Dict[str, Any]], bool]

ROW_ALREADY_EXISTS = "Row already exists."
ITEM_DOES_NOT_EXIST = "Existing item does not exist."


class InMemoryDynamoTable(_RetryingOperations):
    """
    A table backed by a dictionary, safe to share between threads.

    Args:
        codec: Codec for row values. Defaults to ``AttributeValueCodec()``.
        configuration: Stored for parity with ``DynamoTable``.
        transaction_delegate: Called with the keys of every transaction
            before it is applied. Returning any error cancels the
            transaction with those reasons, which lets tests inject
            conflicts.
        execute_item_filter: Evaluates the ``additional_where_clause`` of
            ``execute`` for a row, as ``(partition_key, sort_key, clause,
            item) -> bool``.
    """

    def __init__(
        self,
        codec: Optional[AttributeValueCodec] = None,
        configuration: Optional[TableConfiguration] = None,
        transaction_delegate: Optional[TransactionDelegate] = None,
        execute_item_filter: Optional[ExecuteItemFilter] = None,
    ):
        self._codec = codec or AttributeValueCodec()
        self._config = configuration or TableConfiguration()
        self.transaction_delegate = transaction_delegate
        self.execute_item_filter = execute_item_filter
        self._store: Store = {}
        self._lock = threading.Lock()

    @property
    def store(self) -> Store:
        """A copy of the stored attribute maps by partition and sort key."""
        with self._lock:
            return copy.deepcopy(self._store)

    # ──────────────────────── store primitives ────────────────────────
    @staticmethod
    def _stored(
        store: Store, key: CompositePrimaryKey
    ) -> Optional[Dict[str, Any]]:
        return store.get(key.partition_key, {}).get(key.sort_key)

    @staticmethod
    def _put(
        store: Store, key: CompositePrimaryKey, item: Dict[str, Any]
    ) -> None:
        store.setdefault(key.partition_key, {})[key.sort_key] = item

    @staticmethod
    def _remove(store: Store, key: CompositePrimaryKey) -> None:
        partition = store.get(key.partition_key)
        if partition is None:
            return
        partition.pop(key.sort_key, None)
        if not partition:
            del store[key.partition_key]

    @staticmethod
    def _matches_version(
        stored: Optional[Dict[str, Any]], existing_item: TypedItem[Any]
    ) -> bool:
        return (
            stored is not None
            and stored[ROW_VERSION_ATTRIBUTE]["N"]
            == str(existing_item.row_version)
            and stored[CREATE_DATE_ATTRIBUTE]["S"]
            == format_timestamp(existing_item.create_date)
        )

    def _insert(self, store: Store, item: TypedItem[Any]) -> None:
        key = item.composite_primary_key
        if self._stored(store, key) is not None:
            raise ConditionalCheckFailedError(
                partition_key=key.partition_key,
                sort_key=key.sort_key,
                message=ROW_ALREADY_EXISTS,
            )
        self._put(store, key, item.to_item(self._codec))

    def _update(
        self,
        store: Store,
        new_item: TypedItem[Any],
        existing_item: TypedItem[Any],
    ) -> None:
        check_update(new_item, existing_item)
        key = existing_item.composite_primary_key
        stored = self._stored(store, key)
        if not self._matches_version(stored, existing_item):
            raise ConditionalCheckFailedError(
                partition_key=key.partition_key,
                sort_key=key.sort_key,
                message=(
                    ITEM_DOES_NOT_EXIST
                    if stored is None
                    else "Trying to overwrite incorrect version."
                ),
            )
        self._put(store, key, new_item.to_item(self._codec))

    def _delete(self, store: Store, existing_item: TypedItem[Any]) -> None:
        key = existing_item.composite_primary_key
        stored = self._stored(store, key)
        if not self._matches_version(stored, existing_item):
            raise ConditionalCheckFailedError(
                partition_key=key.partition_key,
                sort_key=key.sort_key,
                message=(
                    ITEM_DOES_NOT_EXIST
                    if stored is None
                    else "Trying to delete incorrect version."
                ),
            )
        self._remove(store, key)

    def _validate(self, entry: WriteEntry[Any]) -> None:
        if entry.kind is WriteEntryKind.UPDATE:
            check_update(entry.new_item, entry.existing_item)
        if entry.new_item is not None:
            entry.new_item.to_item(self._codec)

    def _apply(self, store: Store, entry: WriteEntry[Any]) -> None:
        if entry.kind is WriteEntryKind.INSERT:
            self._insert(store, entry.new_item)
        elif entry.kind is WriteEntryKind.UPDATE:
            self._update(store, entry.new_item, entry.existing_item)
        elif entry.kind is WriteEntryKind.DELETE_AT_KEY:
            self._remove(store, entry.key)
        else:
            self._delete(store, entry.existing_item)

    # ─────────────────────── single-item writes ───────────────────────
    def insert_item(self, item: TypedItem[Any]) -> None:
        with self._lock:
            self._insert(self._store, item)

    def clobber_item(self, item: TypedItem[Any]) -> None:
        encoded = item.to_item(self._codec)
        with self._lock:
            self._put(self._store, item.composite_primary_key, encoded)

    def update_item(
        self, new_item: TypedItem[Any], existing_item: TypedItem[Any]
    ) -> None:
        with self._lock:
            self._update(self._store, new_item, existing_item)

    def delete_item(self, existing_item: TypedItem[Any]) -> None:
        with self._lock:
            self._delete(self._store, existing_item)

    def delete_item_for_key(self, key: CompositePrimaryKey) -> None:
        with self._lock:
            self._remove(self._store, key)

    # ───────────────────────────── reads ──────────────────────────────
    def _get_raw_item(
        self, key: CompositePrimaryKey
    ) -> Optional[Dict[str, Any]]:
        with self._lock:
            return copy.deepcopy(self._stored(self._store, key))

    def _get_raw_items(
        self, keys: Sequence[CompositePrimaryKey]
    ) -> List[Dict[str, Any]]:
        with self._lock:
            stored = [
                self._stored(self._store, key) for key in dict.fromkeys(keys)
            ]
            return [copy.deepcopy(item) for item in stored if item is not None]

    def get_item(
        self, key: CompositePrimaryKey, row_type: Type[RowT]
    ) -> Optional[TypedItem[RowT]]:
        item = self._get_raw_item(key)
        if item is None:
            return None
        return item_to_typed_item(item, row_type, self._codec)

    def polymorphic_get_item(
        self, key: CompositePrimaryKey, registry: TypeRegistry
    ) -> Optional[Any]:
        item = self._get_raw_item(key)
        if item is None:
            return None
        return registry.decode(item, self._codec)

    def get_items(
        self, keys: Sequence[CompositePrimaryKey], row_type: Type[RowT]
    ) -> Dict[CompositePrimaryKey, TypedItem[RowT]]:
        result: Dict[CompositePrimaryKey, TypedItem[RowT]] = {}
        for item in self._get_raw_items(keys):
            typed_item = item_to_typed_item(item, row_type, self._codec)
            result[typed_item.composite_primary_key] = typed_item
        return result

    def polymorphic_get_items(
        self, keys: Sequence[CompositePrimaryKey], registry: TypeRegistry
    ) -> Dict[CompositePrimaryKey, Any]:
        return {
            CompositePrimaryKey.from_item(item): registry.decode(
                item, self._codec
            )
            for item in self._get_raw_items(keys)
        }

    def _query_raw_items(
        self,
        partition_key: str,
        sort_key_condition: Optional[AttributeCondition],
        limit: Optional[int],
        scan_index_forward: bool,
        exclusive_start_key: Optional[str],
        keys_only: bool = False,
    ) -> Tuple[List[Dict[str, Any]], Optional[str]]:
        if limit is not None and limit <= 0:
            raise ValueError("limit must be greater than 0")
        with self._lock:
            partition = copy.deepcopy(self._store.get(partition_key, {}))

        sort_keys = sorted(partition, reverse=not scan_index_forward)
        if sort_key_condition is not None:
            sort_keys = [
                sort_key
                for sort_key in sort_keys
                if sort_key_condition.matches(sort_key)
            ]
        if exclusive_start_key is not None:
            start = decode_pagination_token(exclusive_start_key)
            start_sort_key = start[SORT_KEY_ATTRIBUTE]["S"]
            sort_keys = [
                sort_key
                for sort_key in sort_keys
                if (
                    sort_key > start_sort_key
                    if scan_index_forward
                    else sort_key < start_sort_key
                )
            ]

        token = None
        if limit is not None and len(sort_keys) > limit:
            sort_keys = sort_keys[:limit]
            token = encode_pagination_token(
                CompositePrimaryKey(partition_key, sort_keys[-1]).key
            )
        if keys_only:
            return [
                CompositePrimaryKey(partition_key, sort_key).key
                for sort_key in sort_keys
            ], token
        return [partition[sort_key] for sort_key in sort_keys], token

    def query(
        self,
        partition_key: str,
        row_type: Type[RowT],
        sort_key_condition: Optional[AttributeCondition] = None,
        limit: Optional[int] = None,
        scan_index_forward: bool = True,
        exclusive_start_key: Optional[str] = None,
    ) -> Tuple[List[TypedItem[RowT]], Optional[str]]:
        items, token = self._query_raw_items(
            partition_key,
            sort_key_condition,
            limit,
            scan_index_forward,
            exclusive_start_key,
        )
        return [
            item_to_typed_item(item, row_type, self._codec) for item in items
        ], token

    def query_all(
        self,
        partition_key: str,
        row_type: Type[RowT],
        sort_key_condition: Optional[AttributeCondition] = None,
        scan_index_forward: bool = True,
    ) -> List[TypedItem[RowT]]:
        items, _ = self.query(
            partition_key,
            row_type,
            sort_key_condition=sort_key_condition,
            scan_index_forward=scan_index_forward,
        )
        return items

    def polymorphic_query(
        self,
        partition_key: str,
        registry: TypeRegistry,
        sort_key_condition: Optional[AttributeCondition] = None,
        limit: Optional[int] = None,
        scan_index_forward: bool = True,
        exclusive_start_key: Optional[str] = None,
    ) -> Tuple[List[Any], Optional[str]]:
        items, token = self._query_raw_items(
            partition_key,
            sort_key_condition,
            limit,
            scan_index_forward,
            exclusive_start_key,
        )
        return [registry.decode(item, self._codec) for item in items], token

    def polymorphic_query_all(
        self,
        partition_key: str,
        registry: TypeRegistry,
        sort_key_condition: Optional[AttributeCondition] = None,
        scan_index_forward: bool = True,
    ) -> List[Any]:
        items, _ = self.polymorphic_query(
            partition_key,
            registry,
            sort_key_condition=sort_key_condition,
            scan_index_forward=scan_index_forward,
        )
        return items

    def query_keys(
        self,
        partition_key: str,
        sort_key_condition: Optional[AttributeCondition] = None,
        limit: Optional[int] = None,
        scan_index_forward: bool = True,
        exclusive_start_key: Optional[str] = None,
    ) -> Tuple[List[CompositePrimaryKey], Optional[str]]:
        items, token = self._query_raw_items(
            partition_key,
            sort_key_condition,
            limit,
            scan_index_forward,
            exclusive_start_key,
            keys_only=True,
        )
        return [CompositePrimaryKey.from_item(item) for item in items], token

    def query_all_keys(
        self,
        partition_key: str,
        sort_key_condition: Optional[AttributeCondition] = None,
        scan_index_forward: bool = True,
    ) -> List[CompositePrimaryKey]:
        keys, _ = self.query_keys(
            partition_key,
            sort_key_condition=sort_key_condition,
            scan_index_forward=scan_index_forward,
        )
        return keys

    def _execute_raw_items(
        self,
        partition_keys: Sequence[str],
        attributes_filter: Optional[Sequence[str]],
        additional_where_clause: Optional[str],
    ) -> List[Dict[str, Any]]:
        if additional_where_clause and self.execute_item_filter is None:
            raise ValueError(
                "An execute_item_filter must be provided when an execute "
                "call includes an additional_where_clause"
            )
        with self._lock:
            store = copy.deepcopy(self._store)

        items: List[Dict[str, Any]] = []
        for partition_key in dict.fromkeys(partition_keys):
            partition = store.get(partition_key, {})
            for sort_key in sorted(partition):
                item = partition[sort_key]
                if additional_where_clause and not self.execute_item_filter(
                    partition_key, sort_key, additional_where_clause, item
                ):
                    continue
                items.append(item)
        return items

    def execute(
        self,
        partition_keys: Sequence[str],
        row_type: Type[RowT],
        attributes_filter: Optional[Sequence[str]] = None,
        additional_where_clause: Optional[str] = None,
    ) -> List[TypedItem[RowT]]:
        """Reads the rows of several partitions.

        ``attributes_filter`` is accepted for parity and ignored; whole rows
        are always returned.
        """
        return [
            item_to_typed_item(item, row_type, self._codec)
            for item in self._execute_raw_items(
                partition_keys, attributes_filter, additional_where_clause
            )
        ]

    def polymorphic_execute(
        self,
        partition_keys: Sequence[str],
        registry: TypeRegistry,
        attributes_filter: Optional[Sequence[str]] = None,
        additional_where_clause: Optional[str] = None,
    ) -> List[Any]:
        return [
            registry.decode(item, self._codec)
            for item in self._execute_raw_items(
                partition_keys, attributes_filter, additional_where_clause
            )
        ]

    # ─────────────────────────── transactions ───────────────────────────
    def transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None:
        """Applies entries atomically.

        Raises:
            ItemCollectionSizeLimitExceededError: If there are more than 100
                entries and constraints combined.
            DynamoDBValidationError: If two entries or constraints target
                the same row.
            EntityValidationError: If an entry cannot be written.
            TransactionCanceledError: With one reason per entry followed by
                one per constraint. No entry is applied.
        """
        keys = transaction_keys(entries, constraints)
        for entry in entries:
            self._validate(entry)
        if self.transaction_delegate is not None:
            injected = list(self.transaction_delegate(keys, self))
            if any(error is not None for error in injected):
                raise TransactionCanceledError(injected)

        with self._lock:
            staged = copy.deepcopy(self._store)
            reasons: List[Optional[DynamoDBError]] = []
            for entry in entries:
                reasons.append(self._transaction_reason(staged, entry))
            for constraint in constraints:
                stored = self._stored(
                    self._store, constraint.composite_primary_key
                )
                if stored is not None and stored[ROW_VERSION_ATTRIBUTE][
                    "N"
                ] == str(constraint.existing_item.row_version):
                    reasons.append(None)
                else:
                    key = constraint.composite_primary_key
                    reasons.append(
                        ConditionalCheckFailedError(
                            partition_key=key.partition_key,
                            sort_key=key.sort_key,
                            message=(
                                "Item doesn't exist or doesn't have correct "
                                "version"
                            ),
                        )
                    )
            if any(reason is not None for reason in reasons):
                raise TransactionCanceledError(reasons)
            self._store = staged

    def _transaction_reason(
        self, staged: Store, entry: WriteEntry[Any]
    ) -> Optional[DynamoDBError]:
        try:
            self._apply(staged, entry)
        except ConditionalCheckFailedError as e:
            if e.message == ROW_ALREADY_EXISTS:
                return DuplicateItemError(
                    partition_key=e.partition_key,
                    sort_key=e.sort_key,
                    message=e.message,
                )
            return e
        return None

    def polymorphic_transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        registry: TypeRegistry,
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None:
        for entry in entries:
            registry.check_row_type(entry.row_type)
        self.transact_write(entries, constraints=constraints)

    # ────────────────────────────── bulk ──────────────────────────────
    def bulk_write(self, entries: Sequence[WriteEntry[Any]]) -> None:
        """Applies each entry independently.

        Every entry is validated before any is applied.

        Raises:
            EntityValidationError: If an entry cannot be written. No entry
                is applied.
            BatchFailuresError: With one error per failed entry. The other
                entries are applied.
        """
        errors = self.bulk_write_without_throwing(entries)
        if errors:
            raise BatchFailuresError(errors)

    def bulk_write_without_throwing(
        self, entries: Sequence[WriteEntry[Any]]
    ) -> List[Exception]:
        """Applies each entry independently and returns the failures."""
        for entry in entries:
            self._validate(entry)
        errors: List[Exception] = []
        with self._lock:
            for entry in entries:
                try:
                    self._apply(self._store, entry)
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

    def __repr__(self) -> str:
        with self._lock:
            count = sum(len(partition) for partition in self._store.values())
        return f"InMemoryDynamoTable(items={count})"
