import logging
from typing import Any, Dict, List, Optional, Sequence, Type, TypeVar

from dynamo_tables.constants import (
    CREATE_DATE_ATTRIBUTE,
    MAX_KEYS_PER_BATCH_GET,
    PARTITION_KEY_ATTRIBUTE,
    ROW_VERSION_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
)
from dynamo_tables.data._base import (
    DeleteItemInputTypeDef,
    GetItemInputTypeDef,
    PutItemInputTypeDef,
)
from dynamo_tables.data.base_operations import (
    DynamoDBBaseOperations,
    handle_dynamodb_errors,
)
from dynamo_tables.data.shared_exceptions import UnexpectedResponseError
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import (
    TypedItem,
    check_update,
    item_to_typed_item,
)
from dynamo_tables.entities.util import format_timestamp

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")

INSERT_CONDITION = "attribute_not_exists(#pk) AND attribute_not_exists(#sk)"
VERSION_CONDITION = (
    "#rowversion = :versionnumber AND #createdate = :creationdate"
)


def _version_condition(existing_item: TypedItem[Any]) -> Dict[str, Any]:
    return {
        "ConditionExpression": VERSION_CONDITION,
        "ExpressionAttributeNames": {
            "#rowversion": ROW_VERSION_ATTRIBUTE,
            "#createdate": CREATE_DATE_ATTRIBUTE,
        },
        "ExpressionAttributeValues": {
            ":versionnumber": {"N": str(existing_item.row_version)},
            ":creationdate": {
                "S": format_timestamp(existing_item.create_date)
            },
        },
    }


class _WriteOperations(DynamoDBBaseOperations):
    """
    Single-item conditional writes and key lookups.

    Methods
    -------
    insert_item(item)
        Writes a new row, failing if the key is already present.
    clobber_item(item)
        Writes a row unconditionally.
    update_item(new_item, existing_item)
        Replaces a row if it is still at ``existing_item``'s version.
    delete_item(existing_item)
        Deletes a row if it is still at ``existing_item``'s version.
    delete_item_for_key(key)
        Deletes a row unconditionally.
    get_item(key, row_type) / get_items(keys, row_type)
        Reads rows of one type.
    polymorphic_get_item(key, registry) / polymorphic_get_items(keys, registry)
        Reads rows of any registered type.
    """

    @handle_dynamodb_errors("insert_item")
    def insert_item(self, item: TypedItem[Any]) -> None:
        """Adds a new row to the table.

        Args:
            item (TypedItem): The first version of the row.

        Raises:
            ConditionalCheckFailedError: If a row with the key exists.
        """
        params: PutItemInputTypeDef = {
            "TableName": self.table_name,
            "Item": item.to_item(self._codec),
            "ConditionExpression": INSERT_CONDITION,
            "ExpressionAttributeNames": {
                "#pk": PARTITION_KEY_ATTRIBUTE,
                "#sk": SORT_KEY_ATTRIBUTE,
            },
        }
        self._client.put_item(**params)

    @handle_dynamodb_errors("clobber_item")
    def clobber_item(self, item: TypedItem[Any]) -> None:
        """Writes a row, replacing whatever is stored under its key."""
        params: PutItemInputTypeDef = {
            "TableName": self.table_name,
            "Item": item.to_item(self._codec),
        }
        self._client.put_item(**params)

    @handle_dynamodb_errors("update_item")
    def update_item(
        self, new_item: TypedItem[Any], existing_item: TypedItem[Any]
    ) -> None:
        """Replaces a row that has not changed since it was read.

        Args:
            new_item (TypedItem): The next version of the row.
            existing_item (TypedItem): The row as it was read.

        Raises:
            EntityValidationError: If the items do not share a key or
                ``new_item`` is not the next version.
            ConditionalCheckFailedError: If the stored row has a different
                version or creation date.
        """
        check_update(new_item, existing_item)
        params: PutItemInputTypeDef = {
            "TableName": self.table_name,
            "Item": new_item.to_item(self._codec),
            **_version_condition(existing_item),
        }
        self._client.put_item(**params)

    @handle_dynamodb_errors("delete_item")
    def delete_item(self, existing_item: TypedItem[Any]) -> None:
        """Deletes a row that has not changed since it was read.

        Raises:
            ConditionalCheckFailedError: If the stored row has a different
                version or creation date, or no longer exists.
        """
        params: DeleteItemInputTypeDef = {
            "TableName": self.table_name,
            "Key": existing_item.key,
            **_version_condition(existing_item),
        }
        self._client.delete_item(**params)

    @handle_dynamodb_errors("delete_item_for_key")
    def delete_item_for_key(self, key: CompositePrimaryKey) -> None:
        params: DeleteItemInputTypeDef = {
            "TableName": self.table_name,
            "Key": key.key,
        }
        self._client.delete_item(**params)

    @handle_dynamodb_errors("get_item")
    def _get_raw_item(
        self, key: CompositePrimaryKey
    ) -> Optional[Dict[str, Any]]:
        params: GetItemInputTypeDef = {
            "TableName": self.table_name,
            "Key": key.key,
            "ConsistentRead": self._config.consistent_read,
        }
        response = self._client.get_item(**params)
        return response.get("Item")

    def get_item(
        self, key: CompositePrimaryKey, row_type: Type[RowT]
    ) -> Optional[TypedItem[RowT]]:
        """Reads one row.

        Args:
            key (CompositePrimaryKey): The key of the row.
            row_type (type): The dataclass stored in the row.

        Returns:
            TypedItem | None: The row, or None if the key is absent.

        Raises:
            TypeMismatchError: If the row holds a different type.
        """
        item = self._get_raw_item(key)
        if item is None:
            return None
        return item_to_typed_item(item, row_type, self._codec)

    def polymorphic_get_item(
        self, key: CompositePrimaryKey, registry: TypeRegistry
    ) -> Optional[Any]:
        """Reads one row of any type registered in ``registry``."""
        item = self._get_raw_item(key)
        if item is None:
            return None
        return registry.decode(item, self._codec)

    @handle_dynamodb_errors("get_items")
    def _batch_get_raw_items(
        self, keys: Sequence[CompositePrimaryKey]
    ) -> List[Dict[str, Any]]:
        unique_keys = list(dict.fromkeys(keys))
        items: List[Dict[str, Any]] = []
        for i in range(0, len(unique_keys), MAX_KEYS_PER_BATCH_GET):
            chunk = unique_keys[i : i + MAX_KEYS_PER_BATCH_GET]
            request: Dict[str, Any] = {
                self.table_name: {
                    "Keys": [key.key for key in chunk],
                    "ConsistentRead": self._config.consistent_read,
                }
            }
            while request:
                response = self._client.batch_get_item(RequestItems=request)
                items.extend(
                    response.get("Responses", {}).get(self.table_name, [])
                )
                request = response.get("UnprocessedKeys") or {}
                if request:
                    logger.debug(
                        "Re-requesting %d unprocessed keys",
                        len(request.get(self.table_name, {}).get("Keys", [])),
                    )
        return items

    def get_items(
        self, keys: Sequence[CompositePrimaryKey], row_type: Type[RowT]
    ) -> Dict[CompositePrimaryKey, TypedItem[RowT]]:
        """Reads many rows of one type, keyed by their composite key.

        Keys without a stored row are absent from the result.
        """
        result: Dict[CompositePrimaryKey, TypedItem[RowT]] = {}
        for item in self._batch_get_raw_items(keys):
            typed_item = item_to_typed_item(item, row_type, self._codec)
            result[typed_item.composite_primary_key] = typed_item
        return result

    def polymorphic_get_items(
        self, keys: Sequence[CompositePrimaryKey], registry: TypeRegistry
    ) -> Dict[CompositePrimaryKey, Any]:
        """Reads many rows of any registered type, keyed by composite key."""
        result: Dict[CompositePrimaryKey, Any] = {}
        for item in self._batch_get_raw_items(keys):
            key = CompositePrimaryKey.from_item(item)
            if key in result:
                raise UnexpectedResponseError(
                    f"Duplicate item returned for {key!r}"
                )
            result[key] = registry.decode(item, self._codec)
        return result
