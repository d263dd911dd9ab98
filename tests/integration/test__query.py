import json

import pytest
from botocore.exceptions import ClientError

from dynamo_tables.data.shared_exceptions import (
    DynamoDBValidationError,
    StatementLengthExceededError,
    UnexpectedResponseError,
)
from dynamo_tables.entities import (
    AttributeCondition,
    TypedItem,
    TypeRegistry,
)
from tests.helpers.rows import (
    Customer,
    Order,
    make_customer_item,
    make_key,
)

pytestmark = pytest.mark.integration


@pytest.fixture
def stored_partition(dynamo_table):
    items = [
        make_customer_item("customer#1", sort_key, first_name=sort_key)
        for sort_key in ("a#1", "a#2", "b#1", "b#2", "c#1")
    ]
    for item in items:
        dynamo_table.insert_item(item)
    return items


# ---------------------------------------------------------------------------
# query
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_query_returns_partition_in_order(dynamo_table, stored_partition):
    items, token = dynamo_table.query("customer#1", Customer)

    assert items == stored_partition
    assert token is None


@pytest.mark.integration
@pytest.mark.parametrize(
    "condition,expected",
    [
        (AttributeCondition.equals("b#1"), ["b#1"]),
        (AttributeCondition.begins_with("a#"), ["a#1", "a#2"]),
        (AttributeCondition.between("a#2", "b#2"), ["a#2", "b#1", "b#2"]),
        (AttributeCondition.greater_than("b#2"), ["c#1"]),
        (AttributeCondition.less_than_or_equal("a#2"), ["a#1", "a#2"]),
    ],
)
def test_query_with_sort_key_condition(
    dynamo_table, stored_partition, condition, expected
):
    items, _ = dynamo_table.query(
        "customer#1", Customer, sort_key_condition=condition
    )

    assert [item.sort_key for item in items] == expected


@pytest.mark.integration
def test_query_in_reverse(dynamo_table, stored_partition):
    items, _ = dynamo_table.query(
        "customer#1", Customer, scan_index_forward=False
    )

    assert [item.sort_key for item in items] == [
        "c#1",
        "b#2",
        "b#1",
        "a#2",
        "a#1",
    ]


@pytest.mark.integration
def test_query_pagination(dynamo_table, stored_partition):
    first, token = dynamo_table.query("customer#1", Customer, limit=2)

    assert [item.sort_key for item in first] == ["a#1", "a#2"]
    assert json.loads(token) == {
        "PK": {"S": "customer#1"},
        "SK": {"S": "a#2"},
    }

    second, _ = dynamo_table.query(
        "customer#1", Customer, limit=2, exclusive_start_key=token
    )
    assert [item.sort_key for item in second] == ["b#1", "b#2"]


@pytest.mark.integration
def test_query_all_follows_tokens(dynamo_table, stored_partition, mocker):
    spy = mocker.spy(dynamo_table._client, "query")

    items = dynamo_table.query_all("customer#1", Customer)

    assert items == stored_partition
    assert spy.call_count >= 1
    assert dynamo_table.query_all("nobody", Customer) == []


@pytest.mark.integration
def test_query_all_pages(dynamo_table, stored_partition, mocker):
    codec = dynamo_table._codec
    raw = [item.to_item(codec) for item in stored_partition]
    mock_query = mocker.patch.object(
        dynamo_table._client,
        "query",
        side_effect=[
            {"Items": raw[:3], "LastEvaluatedKey": stored_partition[2].key},
            {"Items": raw[3:]},
        ],
    )

    items = dynamo_table.query_all("customer#1", Customer)

    assert items == stored_partition
    assert mock_query.call_count == 2
    assert mock_query.call_args.kwargs["ExclusiveStartKey"] == (
        stored_partition[2].key
    )
    assert mock_query.call_args.kwargs["ConsistentRead"] is True


@pytest.mark.integration
def test_query_rejects_invalid_arguments(dynamo_table):
    with pytest.raises(ValueError, match="limit"):
        dynamo_table.query("customer#1", Customer, limit=0)

    with pytest.raises(UnexpectedResponseError):
        dynamo_table.query(
            "customer#1", Customer, exclusive_start_key="[1, 2]"
        )


@pytest.mark.integration
def test_polymorphic_query(dynamo_table, stored_partition):
    order = TypedItem.new_item(
        make_key("customer#1", "d#1"), Order(order_id="d", total=1.0)
    )
    dynamo_table.insert_item(order)
    registry = TypeRegistry([Customer, Order])

    rows, token = dynamo_table.polymorphic_query(
        "customer#1",
        registry,
        sort_key_condition=AttributeCondition.greater_than_or_equal("c"),
    )

    assert rows == [stored_partition[-1], order]
    assert token is None
    assert len(dynamo_table.polymorphic_query_all("customer#1", registry)) == 6


@pytest.mark.integration
def test_query_keys_projects_key_attributes(
    dynamo_table, stored_partition, mocker
):
    spy = mocker.spy(dynamo_table._client, "query")

    first, token = dynamo_table.query_keys(
        "customer#1",
        sort_key_condition=AttributeCondition.greater_than("a#1"),
        limit=2,
    )
    second, token = dynamo_table.query_keys(
        "customer#1",
        sort_key_condition=AttributeCondition.greater_than("a#1"),
        limit=2,
        exclusive_start_key=token,
    )

    assert first == [make_key("customer#1", s) for s in ("a#2", "b#1")]
    assert [key.sort_key for key in second] == ["b#2", "c#1"]
    assert spy.call_args.kwargs["ProjectionExpression"] == "#pk, #sk"


@pytest.mark.integration
def test_query_all_keys(dynamo_table, stored_partition):
    keys = dynamo_table.query_all_keys(
        "customer#1", scan_index_forward=False
    )

    assert keys == [
        item.composite_primary_key for item in reversed(stored_partition)
    ]
    assert dynamo_table.query_all_keys("nobody") == []

# ---------------------------------------------------------------------------
# execute
# ---------------------------------------------------------------------------


@pytest.mark.integration
def test_execute_pages_through_results(dynamo_table, mocker):
    codec = dynamo_table._codec
    first = make_customer_item("p1", "s")
    second = make_customer_item("p2", "s")
    mock_execute = mocker.patch.object(
        dynamo_table._client,
        "execute_statement",
        side_effect=[
            {"Items": [first.to_item(codec)], "NextToken": "next"},
            {"Items": [second.to_item(codec)]},
        ],
    )

    items = dynamo_table.execute(
        ["p1", "p2"],
        Customer,
        additional_where_clause="begins_with(SK, 's')",
    )

    assert items == [first, second]
    statement = (
        "SELECT * FROM \"MyMockedTable\" "
        "WHERE PK IN ['p1', 'p2'] AND begins_with(SK, 's')"
    )
    assert mock_execute.call_args_list[0].kwargs == {
        "Statement": statement,
        "ConsistentRead": True,
    }
    assert mock_execute.call_args_list[1].kwargs == {
        "Statement": statement,
        "ConsistentRead": True,
        "NextToken": "next",
    }


@pytest.mark.integration
def test_execute_chunks_partition_keys(dynamo_table, mocker):
    mock_execute = mocker.patch.object(
        dynamo_table._client, "execute_statement", return_value={"Items": []}
    )

    dynamo_table.execute([f"p{i}" for i in range(120)], Customer)

    statements = [
        call.kwargs["Statement"] for call in mock_execute.call_args_list
    ]
    assert len(statements) == 3
    assert statements[0].count("'p") == 50
    assert statements[2].count("'p") == 20
    assert all(len(statement) <= 8192 for statement in statements)


@pytest.mark.integration
def test_execute_chunks_long_partition_keys(dynamo_table, mocker):
    mock_execute = mocker.patch.object(
        dynamo_table._client, "execute_statement", return_value={"Items": []}
    )
    keys = [f"{i}" + "x" * 3000 for i in range(5)]

    dynamo_table.execute(keys, Customer)

    statements = [
        call.kwargs["Statement"] for call in mock_execute.call_args_list
    ]
    assert len(statements) == 3
    assert all(len(statement) <= 8192 for statement in statements)


@pytest.mark.integration
def test_execute_rejects_oversized_partition_key(dynamo_table, mocker):
    mock_execute = mocker.patch.object(
        dynamo_table._client, "execute_statement", return_value={"Items": []}
    )

    with pytest.raises(StatementLengthExceededError):
        dynamo_table.execute(["p1", "x" * 8200], Customer)

    mock_execute.assert_not_called()


@pytest.mark.integration
def test_execute_with_attribute_filter(dynamo_table, mocker):
    mock_execute = mocker.patch.object(
        dynamo_table._client, "execute_statement", return_value={"Items": []}
    )

    assert (
        dynamo_table.polymorphic_execute(
            ["p1"],
            TypeRegistry([Customer]),
            attributes_filter=["PK", "SK", "RowType"],
        )
        == []
    )
    mock_execute.assert_called_once_with(
        Statement="SELECT PK, SK, RowType FROM \"MyMockedTable\" "
        "WHERE PK IN ['p1']",
        ConsistentRead=True,
    )


@pytest.mark.integration
def test_execute_client_error(dynamo_table, mocker):
    mocker.patch.object(
        dynamo_table._client,
        "execute_statement",
        side_effect=ClientError(
            {
                "Error": {
                    "Code": "ValidationException",
                    "Message": "Statement wasn't well formed",
                }
            },
            "ExecuteStatement",
        ),
    )

    with pytest.raises(DynamoDBValidationError, match="well formed"):
        dynamo_table.execute(["p1"], Customer)
