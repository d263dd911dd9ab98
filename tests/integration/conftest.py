import boto3
import pytest
from moto import mock_aws

from dynamo_tables.config import RetryConfiguration, TableConfiguration
from dynamo_tables.data.dynamo_table import DynamoTable


@pytest.fixture
def dynamodb_table():
    """
    Spins up a mock DynamoDB instance, creates a table keyed by PK and SK,
    waits until it is active, then yields the table name for tests.

    After the tests, everything is torn down automatically.
    """
    with mock_aws():
        dynamodb = boto3.resource("dynamodb", region_name="us-east-1")

        table_name = "MyMockedTable"
        dynamodb.create_table(
            TableName=table_name,
            KeySchema=[
                {"AttributeName": "PK", "KeyType": "HASH"},
                {"AttributeName": "SK", "KeyType": "RANGE"},
            ],
            AttributeDefinitions=[
                {"AttributeName": "PK", "AttributeType": "S"},
                {"AttributeName": "SK", "AttributeType": "S"},
            ],
            ProvisionedThroughput={
                "ReadCapacityUnits": 5,
                "WriteCapacityUnits": 5,
            },
        )

        # Wait for the table to be created
        dynamodb.meta.client.get_waiter("table_exists").wait(
            TableName=table_name
        )

        yield table_name


@pytest.fixture
def dynamo_table(dynamodb_table):
    """Return a DynamoTable that uses the mocked DynamoDB table."""
    return DynamoTable(
        table_name=dynamodb_table,
        configuration=TableConfiguration(
            retry=RetryConfiguration(
                num_retries=2, base_retry_interval_ms=0, jitter=False
            )
        ),
    )
