from typing import (
    TYPE_CHECKING,
    Any,
    Dict,
    List,
    Optional,
    Protocol,
    Sequence,
    Type,
    TypeVar,
)

from dynamo_tables.config import TableConfiguration
from dynamo_tables.data.partiql import PartiQLStatementBuilder
from dynamo_tables.entities.codec import AttributeValueCodec
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import TypedItem
from dynamo_tables.entities.write_entry import (
    TransactionConstraintEntry,
    WriteEntry,
)

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBClient
    from mypy_boto3_dynamodb.type_defs import (
        DeleteItemInputTypeDef,
        ExecuteStatementInputTypeDef,
        GetItemInputTypeDef,
        PutItemInputTypeDef,
        QueryInputTypeDef,
    )
else:
    # Runtime fallback
    DynamoDBClient = object
    DeleteItemInputTypeDef = dict
    ExecuteStatementInputTypeDef = dict
    GetItemInputTypeDef = dict
    PutItemInputTypeDef = dict
    QueryInputTypeDef = dict

RowT = TypeVar("RowT")


class DynamoClientProtocol(Protocol):
    """Protocol defining attributes shared by DynamoDB mixin classes."""

    table_name: str
    _client: DynamoDBClient
    _codec: AttributeValueCodec
    _config: TableConfiguration
    _statements: PartiQLStatementBuilder


class CompositePrimaryKeyTable(Protocol):
    """The single-item and transactional operations every table provides."""

    def insert_item(self, item: TypedItem[Any]) -> None: ...

    def clobber_item(self, item: TypedItem[Any]) -> None: ...

    def update_item(
        self, new_item: TypedItem[Any], existing_item: TypedItem[Any]
    ) -> None: ...

    def get_item(
        self, key: CompositePrimaryKey, row_type: Type[RowT]
    ) -> Optional[TypedItem[RowT]]: ...

    def get_items(
        self, keys: Sequence[CompositePrimaryKey], row_type: Type[RowT]
    ) -> Dict[CompositePrimaryKey, TypedItem[RowT]]: ...

    def delete_item(self, existing_item: TypedItem[Any]) -> None: ...

    def delete_item_for_key(self, key: CompositePrimaryKey) -> None: ...

    def transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None: ...

    def polymorphic_transact_write(
        self,
        entries: Sequence[WriteEntry[Any]],
        registry: TypeRegistry,
        constraints: Sequence[TransactionConstraintEntry[Any]] = (),
    ) -> None: ...

    def bulk_write(self, entries: List[WriteEntry[Any]]) -> None: ...