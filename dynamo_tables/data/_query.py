import json
import logging
from typing import Any, Dict, List, Optional, Sequence, Tuple, Type, TypeVar

from dynamo_tables.constants import (
    MAX_KEYS_PER_EXECUTE_STATEMENT,
    MAX_STATEMENT_LENGTH,
    PARTITION_KEY_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
)
from dynamo_tables.data._base import (
    ExecuteStatementInputTypeDef,
    QueryInputTypeDef,
)
from dynamo_tables.data.base_operations import (
    DynamoDBBaseOperations,
    handle_dynamodb_errors,
)
from dynamo_tables.data.shared_exceptions import (
    StatementLengthExceededError,
    UnexpectedResponseError,
)
from dynamo_tables.entities.attribute_condition import AttributeCondition
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import TypedItem, item_to_typed_item

logger = logging.getLogger(__name__)

RowT = TypeVar("RowT")


def encode_pagination_token(
    last_evaluated_key: Optional[Dict[str, Any]],
) -> Optional[str]:
    """Serialize a LastEvaluatedKey as an opaque continuation token."""
    if not last_evaluated_key:
        return None
    return json.dumps(last_evaluated_key, sort_keys=True)


def decode_pagination_token(token: str) -> Dict[str, Any]:
    try:
        decoded = json.loads(token)
    except json.JSONDecodeError as e:
        raise UnexpectedResponseError(
            f"Invalid pagination token: {token!r}"
        ) from e
    if not isinstance(decoded, dict):
        raise UnexpectedResponseError(f"Invalid pagination token: {token!r}")
    return decoded


class _QueryOperations(DynamoDBBaseOperations):
    """
    Reads of many rows by partition key.

    ``query`` pages through one partition with an opaque continuation token;
    ``execute`` reads several partitions with a PartiQL ``SELECT``.
    """

    @handle_dynamodb_errors("query")
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

        key_condition_expression = "#pk = :pk"
        expression_attribute_names = {"#pk": PARTITION_KEY_ATTRIBUTE}
        expression_attribute_values: Dict[str, Any] = {
            ":pk": {"S": partition_key}
        }
        if sort_key_condition is not None:
            expression, values = sort_key_condition.key_condition("#sk")
            key_condition_expression += f" AND {expression}"
            expression_attribute_names["#sk"] = SORT_KEY_ATTRIBUTE
            expression_attribute_values.update(values)
        if keys_only:
            expression_attribute_names["#sk"] = SORT_KEY_ATTRIBUTE

        query_params: QueryInputTypeDef = {
            "TableName": self.table_name,
            "KeyConditionExpression": key_condition_expression,
            "ExpressionAttributeNames": expression_attribute_names,
            "ExpressionAttributeValues": expression_attribute_values,
            "ConsistentRead": self._config.consistent_read,
            "ScanIndexForward": scan_index_forward,
        }
        if keys_only:
            query_params["ProjectionExpression"] = "#pk, #sk"
        if limit is not None:
            query_params["Limit"] = limit
        if exclusive_start_key is not None:
            query_params["ExclusiveStartKey"] = decode_pagination_token(
                exclusive_start_key
            )

        response = self._client.query(**query_params)
        return (
            response.get("Items", []),
            encode_pagination_token(response.get("LastEvaluatedKey")),
        )

    def query(
        self,
        partition_key: str,
        row_type: Type[RowT],
        sort_key_condition: Optional[AttributeCondition] = None,
        limit: Optional[int] = None,
        scan_index_forward: bool = True,
        exclusive_start_key: Optional[str] = None,
    ) -> Tuple[List[TypedItem[RowT]], Optional[str]]:
        """Reads one page of rows of a partition.

        Args:
            partition_key (str): The partition to read.
            row_type (type): The dataclass stored in the rows.
            sort_key_condition (AttributeCondition, optional): Restricts the
                sort keys returned.
            limit (int, optional): Maximum number of rows evaluated.
            scan_index_forward (bool): Ascending sort key order when True.
            exclusive_start_key (str, optional): Token returned by the
                previous page.

        Returns:
            Tuple[List[TypedItem], Optional[str]]: The rows and the token of
                the next page, or None when there are no more rows.
        """
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
        """Reads every row of a partition, following continuation tokens."""
        results: List[TypedItem[RowT]] = []
        token: Optional[str] = None
        while True:
            page, token = self.query(
                partition_key,
                row_type,
                sort_key_condition=sort_key_condition,
                scan_index_forward=scan_index_forward,
                exclusive_start_key=token,
            )
            results.extend(page)
            if token is None:
                return results

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
        results: List[Any] = []
        token: Optional[str] = None
        while True:
            page, token = self.polymorphic_query(
                partition_key,
                registry,
                sort_key_condition=sort_key_condition,
                scan_index_forward=scan_index_forward,
                exclusive_start_key=token,
            )
            results.extend(page)
            if token is None:
                return results

    # ─────────────────────── keys-only projection ───────────────────────
    def query_keys(
        self,
        partition_key: str,
        sort_key_condition: Optional[AttributeCondition] = None,
        limit: Optional[int] = None,
        scan_index_forward: bool = True,
        exclusive_start_key: Optional[str] = None,
    ) -> Tuple[List[CompositePrimaryKey], Optional[str]]:
        """Reads one page of the keys of a partition.

        Only ``PK`` and ``SK`` are projected, so rows of any type can be
        listed without decoding them.

        Returns:
            Tuple[List[CompositePrimaryKey], Optional[str]]: The keys and
                the token of the next page.
        """
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
        keys: List[CompositePrimaryKey] = []
        token: Optional[str] = None
        while True:
            page, token = self.query_keys(
                partition_key,
                sort_key_condition=sort_key_condition,
                scan_index_forward=scan_index_forward,
                exclusive_start_key=token,
            )
            keys.extend(page)
            if token is None:
                return keys

    def _select_statements(
        self,
        partition_keys: Sequence[str],
        attributes_filter: Optional[Sequence[str]],
        additional_where_clause: Optional[str],
    ) -> List[str]:
        """Split the keys across SELECT statements within the length limit."""
        statements: List[str] = []
        chunk: List[str] = []
        for partition_key in dict.fromkeys(partition_keys):
            candidate = chunk + [partition_key]
            statement = self._statements.select_statement(
                candidate, attributes_filter, additional_where_clause
            )
            if (
                len(statement) <= MAX_STATEMENT_LENGTH
                and len(candidate) <= MAX_KEYS_PER_EXECUTE_STATEMENT
            ):
                chunk = candidate
                continue
            if chunk:
                statements.append(
                    self._statements.select_statement(
                        chunk, attributes_filter, additional_where_clause
                    )
                )
            single = self._statements.select_statement(
                [partition_key], attributes_filter, additional_where_clause
            )
            if len(single) > MAX_STATEMENT_LENGTH:
                raise StatementLengthExceededError(
                    f"SELECT statement for partition key {partition_key!r} "
                    f"exceeds {MAX_STATEMENT_LENGTH} characters"
                )
            chunk = [partition_key]
        if chunk:
            statements.append(
                self._statements.select_statement(
                    chunk, attributes_filter, additional_where_clause
                )
            )
        return statements

    @handle_dynamodb_errors("execute")
    def _execute_raw_items(
        self,
        partition_keys: Sequence[str],
        attributes_filter: Optional[Sequence[str]],
        additional_where_clause: Optional[str],
    ) -> List[Dict[str, Any]]:
        items: List[Dict[str, Any]] = []
        statements = self._select_statements(
            partition_keys, attributes_filter, additional_where_clause
        )
        logger.debug("Executing %d SELECT statements", len(statements))
        for statement in statements:
            next_token: Optional[str] = None
            while True:
                params: ExecuteStatementInputTypeDef = {
                    "Statement": statement,
                    "ConsistentRead": self._config.consistent_read,
                }
                if next_token is not None:
                    params["NextToken"] = next_token
                response = self._client.execute_statement(**params)
                items.extend(response.get("Items", []))
                next_token = response.get("NextToken")
                if next_token is None:
                    break
        return items

    def execute(
        self,
        partition_keys: Sequence[str],
        row_type: Type[RowT],
        attributes_filter: Optional[Sequence[str]] = None,
        additional_where_clause: Optional[str] = None,
    ) -> List[TypedItem[RowT]]:
        """Reads the rows of several partitions with PartiQL ``SELECT``.

        Args:
            partition_keys (Sequence[str]): The partitions to read.
            row_type (type): The dataclass stored in the rows.
            attributes_filter (Sequence[str], optional): Attributes to
                project. All attributes are returned when omitted.
            additional_where_clause (str, optional): PartiQL condition
                combined with the partition key condition using AND.
        """
        items = self._execute_raw_items(
            partition_keys, attributes_filter, additional_where_clause
        )
        return [
            item_to_typed_item(item, row_type, self._codec) for item in items
        ]

    def polymorphic_execute(
        self,
        partition_keys: Sequence[str],
        registry: TypeRegistry,
        attributes_filter: Optional[Sequence[str]] = None,
        additional_where_clause: Optional[str] = None,
    ) -> List[Any]:
        items = self._execute_raw_items(
            partition_keys, attributes_filter, additional_where_clause
        )
        return [registry.decode(item, self._codec) for item in items]
