import pytest

from dynamo_tables.data.in_memory_table import InMemoryDynamoTable
from dynamo_tables.data.shared_exceptions import (
    BatchFailuresError,
    ConditionalCheckFailedError,
    DuplicateItemError,
    DynamoDBValidationError,
    EntityValidationError,
    ItemCollectionSizeLimitExceededError,
    TransactionCanceledError,
    TransactionConflictError,
    TypeMismatchError,
    UnexpectedResponseError,
    UnexpectedTypeError,
)
from dynamo_tables.entities import (
    AttributeCondition,
    TransactionConstraintEntry,
    TypeRegistry,
    WriteEntry,
)
from tests.helpers.rows import (
    Counter,
    Customer,
    make_counter_item,
    make_customer_item,
    make_key,
)


@pytest.fixture
def table():
    return InMemoryDynamoTable()


@pytest.fixture
def stored_item(table):
    item = make_customer_item()
    table.insert_item(item)
    return item


def _updated(item, **changes):
    value = item.row_value
    return item.create_updated_item(
        type(value)(**{**value.__dict__, **changes})
    )


# ---------------------------------------------------------------------------
# Single-item writes
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_insert_and_get(table, stored_item):
    assert table.get_item(stored_item.composite_primary_key, Customer) == (
        stored_item
    )
    assert table.get_item(make_key("missing", "key"), Customer) is None


@pytest.mark.unit
def test_insert_existing_key_fails(table, stored_item):
    with pytest.raises(ConditionalCheckFailedError, match="already exists"):
        table.insert_item(make_customer_item(first_name="Other"))

    assert table.get_item(stored_item.composite_primary_key, Customer) == (
        stored_item
    )


@pytest.mark.unit
def test_get_item_of_wrong_type(table, stored_item):
    with pytest.raises(TypeMismatchError):
        table.get_item(stored_item.composite_primary_key, Counter)


@pytest.mark.unit
def test_update_item(table, stored_item):
    updated = _updated(stored_item, last_name="Smith")

    table.update_item(updated, stored_item)

    stored = table.get_item(stored_item.composite_primary_key, Customer)
    assert stored.row_version == 2
    assert stored.row_value.last_name == "Smith"
    assert stored.create_date == stored_item.create_date


@pytest.mark.unit
def test_update_item_with_stale_version_fails(table, stored_item):
    table.update_item(_updated(stored_item, last_name="A"), stored_item)

    with pytest.raises(ConditionalCheckFailedError, match="incorrect version"):
        table.update_item(_updated(stored_item, last_name="B"), stored_item)

    stored = table.get_item(stored_item.composite_primary_key, Customer)
    assert stored.row_value.last_name == "A"


@pytest.mark.unit
def test_update_missing_item_fails(table):
    item = make_customer_item()

    with pytest.raises(ConditionalCheckFailedError, match="does not exist"):
        table.update_item(_updated(item), item)


@pytest.mark.unit
def test_update_item_must_be_next_version(table, stored_item):
    skipped = _updated(_updated(stored_item))

    with pytest.raises(EntityValidationError):
        table.update_item(skipped, stored_item)


@pytest.mark.unit
def test_versions_increase_by_one(table, stored_item):
    current = stored_item
    for expected_version in range(2, 6):
        updated = _updated(current, age=expected_version)
        table.update_item(updated, current)
        current = table.get_item(stored_item.composite_primary_key, Customer)
        assert current.row_version == expected_version


@pytest.mark.unit
def test_clobber_item_ignores_stored_version(table, stored_item):
    replacement = make_customer_item(first_name="Clobbered")

    table.clobber_item(replacement)

    stored = table.get_item(stored_item.composite_primary_key, Customer)
    assert stored.row_value.first_name == "Clobbered"
    assert stored.row_version == 1


@pytest.mark.unit
def test_delete_item(table, stored_item):
    table.delete_item(stored_item)

    assert table.get_item(stored_item.composite_primary_key, Customer) is None
    assert table.store == {}


@pytest.mark.unit
def test_delete_item_with_stale_version_fails(table, stored_item):
    table.update_item(_updated(stored_item), stored_item)

    with pytest.raises(ConditionalCheckFailedError, match="incorrect version"):
        table.delete_item(stored_item)


@pytest.mark.unit
def test_delete_item_for_key_is_unconditional(table, stored_item):
    table.delete_item_for_key(stored_item.composite_primary_key)
    table.delete_item_for_key(make_key("missing", "key"))

    assert table.get_item(stored_item.composite_primary_key, Customer) is None


@pytest.mark.unit
def test_store_is_a_copy(table, stored_item):
    snapshot = table.store
    snapshot["partition"]["sort"]["first_name"] = {"S": "Changed"}

    stored = table.get_item(stored_item.composite_primary_key, Customer)
    assert stored.row_value.first_name == "John"


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_get_items(table):
    items = [make_customer_item(sort_key=str(i)) for i in range(3)]
    for item in items:
        table.insert_item(item)

    result = table.get_items(
        [make_key("partition", "0"), make_key("partition", "2")]
        + [make_key("partition", "missing"), make_key("partition", "0")],
        Customer,
    )

    assert result == {
        items[0].composite_primary_key: items[0],
        items[2].composite_primary_key: items[2],
    }


@pytest.mark.unit
def test_polymorphic_reads(table):
    customer = make_customer_item(sort_key="customer")
    counter = make_counter_item(sort_key="counter")
    table.insert_item(customer)
    table.insert_item(counter)
    registry = TypeRegistry([Customer, Counter])

    assert table.polymorphic_get_item(
        counter.composite_primary_key, registry
    ) == counter
    assert table.polymorphic_get_items(
        [customer.composite_primary_key, counter.composite_primary_key],
        registry,
    ) == {
        customer.composite_primary_key: customer,
        counter.composite_primary_key: counter,
    }

    with pytest.raises(UnexpectedTypeError):
        table.polymorphic_get_item(
            counter.composite_primary_key, TypeRegistry([Customer])
        )


@pytest.fixture
def partition(table):
    items = [
        make_customer_item(sort_key=sort_key)
        for sort_key in ("a#1", "a#2", "b#1", "b#2", "c#1")
    ]
    for item in items:
        table.insert_item(item)
    return items


@pytest.mark.unit
def test_query_returns_sorted_rows(table, partition):
    items, token = table.query("partition", Customer)

    assert [item.sort_key for item in items] == [
        "a#1",
        "a#2",
        "b#1",
        "b#2",
        "c#1",
    ]
    assert token is None


@pytest.mark.unit
def test_query_with_condition_and_reverse_order(table, partition):
    items, _ = table.query(
        "partition",
        Customer,
        sort_key_condition=AttributeCondition.begins_with("b#"),
        scan_index_forward=False,
    )

    assert [item.sort_key for item in items] == ["b#2", "b#1"]


@pytest.mark.unit
def test_query_pages_with_token(table, partition):
    first, token = table.query("partition", Customer, limit=2)
    second, token = table.query(
        "partition", Customer, limit=2, exclusive_start_key=token
    )
    third, token = table.query(
        "partition", Customer, limit=2, exclusive_start_key=token
    )

    assert [item.sort_key for item in first] == ["a#1", "a#2"]
    assert [item.sort_key for item in second] == ["b#1", "b#2"]
    assert [item.sort_key for item in third] == ["c#1"]
    assert token is None


@pytest.mark.unit
def test_query_all(table, partition):
    items = table.query_all(
        "partition",
        Customer,
        sort_key_condition=AttributeCondition.greater_than("a#2"),
    )

    assert [item.sort_key for item in items] == ["b#1", "b#2", "c#1"]
    assert table.query_all("empty", Customer) == []


@pytest.mark.unit
def test_query_keys_pages_through_keys(table, partition):
    first, token = table.query_keys("partition", limit=3)
    second, token = table.query_keys(
        "partition", limit=3, exclusive_start_key=token
    )

    assert first == [make_key(sort_key=s) for s in ("a#1", "a#2", "b#1")]
    assert second == [make_key(sort_key=s) for s in ("b#2", "c#1")]
    assert token is None


@pytest.mark.unit
def test_query_all_keys_ignores_row_types(table, partition):
    table.insert_item(make_counter_item(sort_key="b#3"))

    keys = table.query_all_keys(
        "partition",
        sort_key_condition=AttributeCondition.begins_with("b#"),
        scan_index_forward=False,
    )

    assert [key.sort_key for key in keys] == ["b#3", "b#2", "b#1"]


@pytest.mark.unit
def test_query_rejects_invalid_arguments(table, partition):
    with pytest.raises(ValueError, match="limit"):
        table.query("partition", Customer, limit=0)

    with pytest.raises(UnexpectedResponseError, match="pagination token"):
        table.query("partition", Customer, exclusive_start_key="not json")


@pytest.mark.unit
def test_polymorphic_query(table, partition):
    counter = make_counter_item(sort_key="d#1")
    table.insert_item(counter)
    registry = TypeRegistry([Customer, Counter])

    rows = table.polymorphic_query_all(
        "partition",
        registry,
        sort_key_condition=AttributeCondition.between("c", "e"),
    )

    assert rows == [partition[-1], counter]


@pytest.mark.unit
def test_execute_reads_several_partitions(table):
    for partition_key in ("p1", "p2", "p3"):
        table.insert_item(make_customer_item(partition_key=partition_key))

    items = table.execute(["p1", "p3", "p1", "missing"], Customer)

    assert [item.partition_key for item in items] == ["p1", "p3"]


@pytest.mark.unit
def test_execute_where_clause_requires_filter(table):
    with pytest.raises(ValueError, match="execute_item_filter"):
        table.execute(["p1"], Customer, additional_where_clause="age > 3")


@pytest.mark.unit
def test_execute_where_clause_uses_filter():
    calls = []

    def item_filter(partition_key, sort_key, clause, item):
        calls.append((partition_key, sort_key, clause))
        return item["first_name"]["S"] == "Keep"

    table = InMemoryDynamoTable(execute_item_filter=item_filter)
    table.insert_item(make_customer_item("p1", "a", first_name="Keep"))
    table.insert_item(make_customer_item("p1", "b", first_name="Drop"))

    items = table.execute(
        ["p1"], Customer, additional_where_clause="first_name = 'Keep'"
    )

    assert [item.sort_key for item in items] == ["a"]
    assert calls == [
        ("p1", "a", "first_name = 'Keep'"),
        ("p1", "b", "first_name = 'Keep'"),
    ]


# ---------------------------------------------------------------------------
# Transactions
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_transact_write_applies_all_entries(table, stored_item):
    new_item = make_customer_item(sort_key="new")

    table.transact_write(
        [
            WriteEntry.insert(new_item),
            WriteEntry.update(_updated(stored_item), stored_item),
        ]
    )

    assert table.get_item(new_item.composite_primary_key, Customer)
    assert (
        table.get_item(stored_item.composite_primary_key, Customer).row_version
        == 2
    )


@pytest.mark.unit
def test_transact_write_is_all_or_nothing(table, stored_item):
    table.update_item(_updated(stored_item), stored_item)
    new_item = make_customer_item(sort_key="new")

    with pytest.raises(TransactionCanceledError) as excinfo:
        table.transact_write(
            [
                WriteEntry.insert(new_item),
                WriteEntry.update(_updated(stored_item), stored_item),
            ]
        )

    reasons = excinfo.value.reasons
    assert reasons[0] is None
    assert isinstance(reasons[1], ConditionalCheckFailedError)
    assert reasons[1].sort_key == "sort"
    assert table.get_item(new_item.composite_primary_key, Customer) is None


@pytest.mark.unit
@pytest.mark.parametrize("as_constraint", [False, True])
def test_transact_write_rejects_two_operations_on_one_row(
    table, stored_item, as_constraint
):
    update = WriteEntry.update(_updated(stored_item), stored_item)
    if as_constraint:
        entries = [update]
        constraints = [TransactionConstraintEntry.required(stored_item)]
    else:
        entries = [update, WriteEntry.delete_item(stored_item)]
        constraints = []

    with pytest.raises(DynamoDBValidationError) as excinfo:
        table.transact_write(entries, constraints=constraints)

    assert excinfo.value.sort_key == "sort"
    assert (
        table.get_item(stored_item.composite_primary_key, Customer)
        == stored_item
    )


@pytest.mark.unit
def test_transact_write_duplicate_insert(table, stored_item):
    with pytest.raises(TransactionCanceledError) as excinfo:
        table.transact_write([WriteEntry.insert(stored_item)])

    assert isinstance(excinfo.value.reasons[0], DuplicateItemError)


@pytest.mark.unit
def test_transact_write_constraints(table, stored_item):
    other = make_customer_item(sort_key="other")
    table.insert_item(other)
    constraint = TransactionConstraintEntry.required(stored_item)

    table.transact_write(
        [WriteEntry.update(_updated(other), other)], constraints=[constraint]
    )
    table.update_item(_updated(stored_item), stored_item)
    current_other = table.get_item(other.composite_primary_key, Customer)

    with pytest.raises(TransactionCanceledError) as excinfo:
        table.transact_write(
            [WriteEntry.update(_updated(current_other), current_other)],
            constraints=[constraint],
        )

    assert excinfo.value.reasons[0] is None
    assert isinstance(excinfo.value.reasons[1], ConditionalCheckFailedError)
    assert (
        table.get_item(other.composite_primary_key, Customer).row_version == 2
    )


@pytest.mark.unit
def test_transact_write_size_limit(table):
    items = [make_customer_item(sort_key=str(i)) for i in range(101)]

    with pytest.raises(ItemCollectionSizeLimitExceededError) as excinfo:
        table.transact_write([WriteEntry.insert(item) for item in items])

    assert excinfo.value.attempted_size == 101
    assert table.store == {}

    table.transact_write([WriteEntry.insert(item) for item in items[:100]])
    assert len(table.store["partition"]) == 100


@pytest.mark.unit
def test_transaction_delegate_injects_conflicts():
    seen_keys = []

    def delegate(keys, table):
        seen_keys.append(list(keys))
        return [TransactionConflictError()] + [None] * (len(keys) - 1)

    table = InMemoryDynamoTable(transaction_delegate=delegate)
    item = make_customer_item(sort_key="a")

    with pytest.raises(TransactionCanceledError) as excinfo:
        table.transact_write([WriteEntry.insert(item)])

    assert isinstance(excinfo.value.reasons[0], TransactionConflictError)
    assert seen_keys == [[item.composite_primary_key]]
    assert table.store == {}


@pytest.mark.unit
def test_polymorphic_transact_write_checks_row_types(table):
    counter = make_counter_item(sort_key="counter")

    with pytest.raises(UnexpectedTypeError):
        table.polymorphic_transact_write(
            [
                WriteEntry.insert(make_customer_item()),
                WriteEntry.insert(counter),
            ],
            TypeRegistry([Customer]),
        )

    assert table.store == {}

    table.polymorphic_transact_write(
        [WriteEntry.insert(counter)], TypeRegistry([Customer, Counter])
    )
    assert table.get_item(counter.composite_primary_key, Counter) == counter


# ---------------------------------------------------------------------------
# Bulk writes
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_bulk_write_reports_failures_per_entry(table, stored_item):
    new_items = [make_customer_item(sort_key=f"n{i}") for i in range(3)]

    with pytest.raises(BatchFailuresError) as excinfo:
        table.bulk_write(
            [WriteEntry.insert(item) for item in new_items]
            + [WriteEntry.insert(stored_item)]
        )

    assert len(excinfo.value.errors) == 1
    assert isinstance(excinfo.value.errors[0], ConditionalCheckFailedError)
    for item in new_items:
        assert table.get_item(item.composite_primary_key, Customer) == item


@pytest.mark.unit
def test_bulk_write_validates_every_entry_before_applying(table):
    first = make_customer_item(sort_key="a")
    second = make_customer_item(sort_key="b")
    third = make_customer_item(sort_key="c")
    table.insert_item(second)
    skipped_version = second.create_updated_item(
        second.row_value
    ).create_updated_item(second.row_value)

    with pytest.raises(EntityValidationError, match="row_version 2"):
        table.bulk_write(
            [
                WriteEntry.insert(first),
                WriteEntry.update(skipped_version, second),
                WriteEntry.insert(third),
            ]
        )

    assert list(table.store["partition"]) == ["b"]
    assert table.get_item(second.composite_primary_key, Customer) == second


@pytest.mark.unit
def test_bulk_write_without_throwing_returns_failures(table, stored_item):
    new_item = make_customer_item(sort_key="new")

    errors = table.bulk_write_without_throwing(
        [WriteEntry.insert(stored_item), WriteEntry.insert(new_item)]
    )

    (error,) = errors
    assert isinstance(error, ConditionalCheckFailedError)
    assert table.get_item(new_item.composite_primary_key, Customer) == (
        new_item
    )
    assert table.bulk_write_without_throwing([]) == []

@pytest.mark.unit
def test_bulk_deletes(table):
    items = [make_customer_item(sort_key=str(i)) for i in range(4)]
    table.bulk_write_with_fallback([WriteEntry.insert(i) for i in items])

    table.delete_items(items[:2])
    table.delete_items_for_keys([items[2].composite_primary_key])

    assert list(table.store["partition"]) == ["3"]


@pytest.mark.unit
def test_polymorphic_bulk_write_checks_row_types(table):
    with pytest.raises(UnexpectedTypeError):
        table.polymorphic_bulk_write(
            [WriteEntry.insert(make_counter_item())], TypeRegistry([Customer])
        )

    assert table.store == {}
