from dataclasses import dataclass
from datetime import datetime, timezone

import pytest
from freezegun import freeze_time

from dynamo_tables.data.shared_exceptions import (
    EntityValidationError,
    TypeMismatchError,
)
from dynamo_tables.entities import (
    AttributeValueCodec,
    CompositePrimaryKey,
    RowStatus,
    TimeToLive,
    TypedItem,
    WriteEntry,
    WriteEntryKind,
    get_row_type_identifier,
    item_to_typed_item,
)
from dynamo_tables.entities.typed_item import check_update
from tests.helpers.rows import Customer, Order, make_customer_item, make_key


@pytest.fixture
def codec():
    return AttributeValueCodec()


# ---------------------------------------------------------------------------
# CompositePrimaryKey
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_key_attributes():
    key = make_key("p", "s")

    assert key.key == {"PK": {"S": "p"}, "SK": {"S": "s"}}
    assert dict(key) == {"partition_key": "p", "sort_key": "s"}
    assert repr(key) == (
        "CompositePrimaryKey(partition_key='p', sort_key='s')"
    )


@pytest.mark.unit
def test_key_from_item():
    key = CompositePrimaryKey.from_item(
        {"PK": {"S": "p"}, "SK": {"S": "s"}, "other": {"N": "1"}}
    )

    assert key == make_key("p", "s")


@pytest.mark.unit
def test_key_from_item_missing_attribute():
    with pytest.raises(ValueError, match="missing key attribute"):
        CompositePrimaryKey.from_item({"PK": {"S": "p"}})


@pytest.mark.unit
@pytest.mark.parametrize(
    "partition_key,sort_key", [(1, "s"), ("p", None), (None, None)]
)
def test_key_requires_strings(partition_key, sort_key):
    with pytest.raises(ValueError, match="must be str"):
        CompositePrimaryKey(partition_key=partition_key, sort_key=sort_key)


@pytest.mark.unit
def test_keys_are_hashable_and_ordered():
    keys = [make_key("b", "1"), make_key("a", "2"), make_key("a", "1")]

    assert sorted(keys) == [
        make_key("a", "1"),
        make_key("a", "2"),
        make_key("b", "1"),
    ]
    assert len(set(keys + [make_key("a", "1")])) == 3


# ---------------------------------------------------------------------------
# RowStatus and TimeToLive
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize("row_version", [0, -1, True, "1"])
def test_row_status_rejects_invalid_versions(row_version):
    with pytest.raises(ValueError, match="row_version"):
        RowStatus(
            row_version=row_version,
            last_updated_date=datetime.now(timezone.utc),
        )


@pytest.mark.unit
def test_time_to_live_from_datetime():
    expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)

    assert TimeToLive.from_datetime(expiry).timestamp == 1893456000


# ---------------------------------------------------------------------------
# TypedItem
# ---------------------------------------------------------------------------


@pytest.mark.unit
@freeze_time("2024-01-02 03:04:05")
def test_new_item_starts_at_version_one():
    item = make_customer_item()
    now = datetime(2024, 1, 2, 3, 4, 5, tzinfo=timezone.utc)

    assert item.row_version == 1
    assert item.create_date == now
    assert item.row_status.last_updated_date == now
    assert item.time_to_live is None
    assert item.row_type is Customer
    assert item.row_type_identifier == "Customer"


@pytest.mark.unit
def test_create_updated_item_increments_version():
    with freeze_time("2024-01-01"):
        item = make_customer_item()
    with freeze_time("2024-02-01"):
        updated = item.create_updated_item(
            Customer(first_name="Jane", last_name="Doe")
        )

    assert updated.row_version == 2
    assert updated.create_date == item.create_date
    assert updated.row_status.last_updated_date == datetime(
        2024, 2, 1, tzinfo=timezone.utc
    )
    assert updated.row_value.first_name == "Jane"
    assert updated.composite_primary_key == item.composite_primary_key
    assert item.row_version == 1


@pytest.mark.unit
def test_create_updated_item_time_to_live():
    item = TypedItem.new_item(
        make_key(),
        Customer(first_name="John", last_name="Doe"),
        time_to_live=TimeToLive(timestamp=100),
    )
    value = item.row_value

    assert item.create_updated_item(value).time_to_live == TimeToLive(100)
    assert item.create_updated_item(
        value, time_to_live=TimeToLive(200)
    ).time_to_live == TimeToLive(200)
    assert (
        item.create_updated_item(value, does_not_expire=True).time_to_live
        is None
    )


@pytest.mark.unit
@freeze_time("2024-01-02 03:04:05")
def test_to_item_layout(codec):
    item = TypedItem.new_item(
        make_key("p", "s"),
        Customer(first_name="John", last_name="Doe", age=30),
        time_to_live=TimeToLive(timestamp=1700000000),
    )

    assert item.to_item(codec) == {
        "PK": {"S": "p"},
        "SK": {"S": "s"},
        "RowType": {"S": "Customer"},
        "CreateDate": {"S": "2024-01-02T03:04:05+00:00"},
        "RowVersion": {"N": "1"},
        "LastUpdatedDate": {"S": "2024-01-02T03:04:05+00:00"},
        "ExpireDate": {"N": "1700000000"},
        "first_name": {"S": "John"},
        "last_name": {"S": "Doe"},
        "age": {"N": "30"},
    }


@pytest.mark.unit
def test_to_item_rejects_reserved_field_names(codec):
    @dataclass(frozen=True)
    class Clashing:
        RowVersion: int

    item = TypedItem.new_item(make_key(), Clashing(RowVersion=3))

    with pytest.raises(EntityValidationError, match="reserved attribute"):
        item.to_item(codec)


@pytest.mark.unit
def test_item_to_typed_item_round_trip(codec):
    item = TypedItem.new_item(
        make_key(),
        Customer(first_name="John", last_name="Doe", tags=["x"]),
        time_to_live=TimeToLive(timestamp=5),
    )

    assert item_to_typed_item(item.to_item(codec), Customer, codec) == item


@pytest.mark.unit
def test_item_to_typed_item_type_mismatch(codec):
    raw = make_customer_item().to_item(codec)

    with pytest.raises(TypeMismatchError) as excinfo:
        item_to_typed_item(raw, Order, codec)

    assert excinfo.value.expected == "OrderRow"
    assert excinfo.value.provided == "Customer"
    assert str(excinfo.value) == (
        "Expected to decode OrderRow. Instead found Customer."
    )


@pytest.mark.unit
def test_item_to_typed_item_missing_attributes(codec):
    raw = make_customer_item().to_item(codec)
    del raw["RowVersion"]

    with pytest.raises(ValueError, match="missing keys"):
        item_to_typed_item(raw, Customer, codec)


@pytest.mark.unit
def test_row_type_identifier_override():
    assert get_row_type_identifier(Order) == "OrderRow"
    assert get_row_type_identifier(Customer) == "Customer"


@pytest.mark.unit
def test_check_update_requires_next_version():
    item = make_customer_item()
    updated = item.create_updated_item(item.row_value)

    check_update(updated, item)

    with pytest.raises(EntityValidationError, match="row_version 2"):
        check_update(updated.create_updated_item(item.row_value), item)


@pytest.mark.unit
def test_check_update_requires_same_key():
    item = make_customer_item(sort_key="a")
    other = make_customer_item(sort_key="b").create_updated_item(
        item.row_value
    )

    with pytest.raises(EntityValidationError, match="must share a key"):
        check_update(other, item)


# ---------------------------------------------------------------------------
# WriteEntry
# ---------------------------------------------------------------------------


@pytest.mark.unit
def test_write_entry_constructors():
    item = make_customer_item()
    updated = item.create_updated_item(item.row_value)

    insert = WriteEntry.insert(item)
    update = WriteEntry.update(updated, item)
    delete_item = WriteEntry.delete_item(item)
    delete_at_key = WriteEntry.delete_at_key(make_key("x", "y"))

    assert insert.kind is WriteEntryKind.INSERT
    assert update.kind is WriteEntryKind.UPDATE
    assert delete_item.kind is WriteEntryKind.DELETE_ITEM
    assert delete_at_key.kind is WriteEntryKind.DELETE_AT_KEY
    assert insert.composite_primary_key == item.composite_primary_key
    assert update.composite_primary_key == item.composite_primary_key
    assert delete_at_key.composite_primary_key == make_key("x", "y")
    assert update.row_type is Customer
    assert delete_at_key.row_type is None


@pytest.mark.unit
def test_write_entry_requires_items():
    with pytest.raises(EntityValidationError, match="update entry requires"):
        WriteEntry(
            kind=WriteEntryKind.UPDATE, new_item=make_customer_item()
        )

    with pytest.raises(
        EntityValidationError, match="delete_at_key entry requires key"
    ):
        WriteEntry(kind=WriteEntryKind.DELETE_AT_KEY)

    with pytest.raises(
        EntityValidationError, match="delete_item entry requires existing_item"
    ):
        WriteEntry(kind=WriteEntryKind.DELETE_ITEM, key=make_key())


@pytest.mark.unit
def test_write_entry_handle_dispatches_to_context():
    class KindName:
        def transform(self, entry):
            return entry.kind.value

    entry = WriteEntry.insert(make_customer_item())

    assert entry.handle(KindName()) == "insert"
