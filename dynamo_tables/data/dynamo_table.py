from typing import TYPE_CHECKING, Optional

import boto3

from dynamo_tables.config import (
    TableConfiguration,
    TableSettings,
    get_settings,
)
from dynamo_tables.data._bulk import _BulkOperations
from dynamo_tables.data._query import _QueryOperations
from dynamo_tables.data._retrying import _RetryingOperations
from dynamo_tables.data._transaction import _TransactionOperations
from dynamo_tables.data._write import _WriteOperations
from dynamo_tables.data.partiql import PartiQLStatementBuilder
from dynamo_tables.entities.codec import AttributeValueCodec

if TYPE_CHECKING:
    from mypy_boto3_dynamodb import DynamoDBClient


class DynamoTable(
    _WriteOperations,
    _TransactionOperations,
    _BulkOperations,
    _QueryOperations,
    _RetryingOperations,
):
    """A DynamoDB table storing typed items under composite keys."""

    def __init__(
        self,
        table_name: str,
        region: str = "us-east-1",
        configuration: Optional[TableConfiguration] = None,
        codec: Optional[AttributeValueCodec] = None,
        client: Optional["DynamoDBClient"] = None,
        endpoint_url: Optional[str] = None,
    ):
        """Initializes a DynamoTable instance.

        Args:
            table_name (str): The name of the DynamoDB table.
            region (str, optional): The AWS region where the DynamoDB table is
                located. Defaults to "us-east-1".
            configuration (TableConfiguration, optional): Read, statement and
                retry behaviour. Defaults to ``TableConfiguration()``.
            codec (AttributeValueCodec, optional): Codec for row values.
            client (DynamoDBClient, optional): A pre-built boto3 client.
            endpoint_url (str, optional): Endpoint override, e.g. DynamoDB
                Local.

        Attributes:
            _client (DynamoDBClient): The Boto3 DynamoDB client.
            table_name (str): The name of the DynamoDB table.

        Raises:
            ValueError: If the table does not exist.
        """
        super().__init__()

        if client is None:
            client = boto3.client(
                "dynamodb", region_name=region, endpoint_url=endpoint_url
            )
        self._client: DynamoDBClient = client
        self.table_name = table_name
        self._config = configuration or TableConfiguration()
        self._codec = codec or AttributeValueCodec()
        self._statements = PartiQLStatementBuilder(
            table_name,
            self._codec,
            escape_single_quote=self._config.escape_single_quote_in_partiql,
        )
        # Ensure the table already exists
        try:
            self._client.describe_table(TableName=self.table_name)
        except self._client.exceptions.ResourceNotFoundException as e:
            raise ValueError(
                f"The table '{self.table_name}' does not exist in region "
                f"'{region}'."
            ) from e

    @classmethod
    def from_settings(
        cls, settings: Optional[TableSettings] = None
    ) -> "DynamoTable":
        """Build a table from ``DYNAMO_TABLES_*`` environment settings."""
        settings = settings or get_settings()
        return cls(
            settings.table_name,
            region=settings.aws_region,
            configuration=TableConfiguration.from_settings(settings),
            endpoint_url=settings.endpoint_url,
        )

    def __repr__(self) -> str:
        return f"DynamoTable(table_name={self.table_name!r})"
