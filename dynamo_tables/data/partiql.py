"""
Rendering of write entries and reads as PartiQL statements.

Update and delete statements carry the optimistic concurrency condition in
their WHERE clause, so no separate condition expression is needed when they
are executed in a transaction or a batch.
"""

from typing import Any, List, Optional, Sequence, cast

from dynamo_tables.constants import (
    PARTITION_KEY_ATTRIBUTE,
    ROW_VERSION_ATTRIBUTE,
    SORT_KEY_ATTRIBUTE,
)
from dynamo_tables.data.attribute_diff import diff_items, flatten, sanitize
from dynamo_tables.entities.attribute_difference import AttributeDifference
from dynamo_tables.entities.codec import AttributeValueCodec
from dynamo_tables.entities.keys import CompositePrimaryKey
from dynamo_tables.entities.type_registry import TypeRegistry
from dynamo_tables.entities.typed_item import TypedItem, check_update
from dynamo_tables.entities.write_entry import (
    TransactionConstraintEntry,
    WriteEntry,
    WriteEntryKind,
)


class PartiQLStatementBuilder:
    """Builds PartiQL statements against one table.

    Args:
        table_name (str): The DynamoDB table the statements target.
        codec (AttributeValueCodec): Codec used to encode row values.
        escape_single_quote (bool): Double single quotes in literals.
    """

    def __init__(
        self,
        table_name: str,
        codec: AttributeValueCodec,
        escape_single_quote: bool = False,
    ):
        self.table_name = table_name
        self.codec = codec
        self.escape_single_quote = escape_single_quote

    def _literal(self, value: str) -> str:
        return f"'{sanitize(value, self.escape_single_quote)}'"

    def _key_condition(self, key: CompositePrimaryKey) -> str:
        return (
            f"{PARTITION_KEY_ATTRIBUTE}={self._literal(key.partition_key)} "
            f"AND {SORT_KEY_ATTRIBUTE}={self._literal(key.sort_key)}"
        )

    def _version_condition(self, existing_item: TypedItem[Any]) -> str:
        return (
            f"{self._key_condition(existing_item.composite_primary_key)} "
            f"AND {ROW_VERSION_ATTRIBUTE}={existing_item.row_version}"
        )

    def differences(
        self, new_item: TypedItem[Any], existing_item: TypedItem[Any]
    ) -> List[AttributeDifference]:
        """Attribute edits that turn ``existing_item`` into ``new_item``."""
        return diff_items(
            new_item.to_item(self.codec),
            existing_item.to_item(self.codec),
            escape_single_quote=self.escape_single_quote,
        )

    def update_statement(
        self, new_item: TypedItem[Any], existing_item: TypedItem[Any]
    ) -> str:
        """An UPDATE conditioned on the version of ``existing_item``.

        Raises:
            EntityValidationError: If ``new_item`` is not the next version
                of ``existing_item``.
        """
        check_update(new_item, existing_item)
        clauses = [
            (
                f"SET {difference.path}={difference.value}"
                if difference.is_update
                else f"REMOVE {difference.path}"
            )
            for difference in self.differences(new_item, existing_item)
        ]
        return (
            f'UPDATE "{self.table_name}" {" ".join(clauses)} '
            f"WHERE {self._version_condition(existing_item)}"
        )

    def insert_statement(self, new_item: TypedItem[Any]) -> str:
        item = new_item.to_item(self.codec)
        literal = flatten({"M": item}, self.escape_single_quote)
        return f'INSERT INTO "{self.table_name}" value {literal}'

    def delete_statement_for_key(self, key: CompositePrimaryKey) -> str:
        return (
            f'DELETE FROM "{self.table_name}" '
            f"WHERE {self._key_condition(key)}"
        )

    def delete_statement(self, existing_item: TypedItem[Any]) -> str:
        return (
            f'DELETE FROM "{self.table_name}" '
            f"WHERE {self._version_condition(existing_item)}"
        )

    def exists_statement(self, existing_item: TypedItem[Any]) -> str:
        return (
            f'EXISTS(SELECT * FROM "{self.table_name}" '
            f"WHERE {self._version_condition(existing_item)})"
        )

    def select_statement(
        self,
        partition_keys: Sequence[str],
        attributes_filter: Optional[Sequence[str]] = None,
        additional_where_clause: Optional[str] = None,
    ) -> str:
        columns = ", ".join(attributes_filter) if attributes_filter else "*"
        keys = ", ".join(self._literal(key) for key in partition_keys)
        statement = (
            f'SELECT {columns} FROM "{self.table_name}" '
            f"WHERE {PARTITION_KEY_ATTRIBUTE} IN [{keys}]"
        )
        if additional_where_clause:
            statement += f" AND {additional_where_clause}"
        return statement

    def statement_for_entry(self, entry: WriteEntry[Any]) -> str:
        # WriteEntry validates that the items of its kind are present
        new_item = cast(TypedItem[Any], entry.new_item)
        existing_item = cast(TypedItem[Any], entry.existing_item)
        if entry.kind is WriteEntryKind.INSERT:
            return self.insert_statement(new_item)
        if entry.kind is WriteEntryKind.UPDATE:
            return self.update_statement(new_item, existing_item)
        if entry.kind is WriteEntryKind.DELETE_AT_KEY:
            return self.delete_statement_for_key(
                cast(CompositePrimaryKey, entry.key)
            )
        return self.delete_statement(existing_item)

    def statement_for_constraint(
        self, constraint: TransactionConstraintEntry[Any]
    ) -> str:
        return self.exists_statement(constraint.existing_item)


class RegisteredStatementContext:
    """Renders write entries whose row type is part of a ``TypeRegistry``.

    Passed to ``WriteEntry.handle`` so that heterogeneous entry lists are
    checked against the closed set of row types before any request.
    """

    def __init__(
        self, registry: TypeRegistry, builder: PartiQLStatementBuilder
    ):
        self.registry = registry
        self.builder = builder

    def transform(self, entry: WriteEntry[Any]) -> str:
        self.registry.check_row_type(entry.row_type)
        return self.builder.statement_for_entry(entry)
