from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Tuple, cast


class ConditionKind(str, Enum):
    EQUALS = "="
    LESS_THAN = "<"
    LESS_THAN_OR_EQUAL = "<="
    GREATER_THAN = ">"
    GREATER_THAN_OR_EQUAL = ">="
    BETWEEN = "between"
    BEGINS_WITH = "begins_with"


@dataclass(frozen=True)
class AttributeCondition:
    """A condition on the sort key of a query."""

    kind: ConditionKind
    value: str
    upper: Optional[str] = None

    def __post_init__(self) -> None:
        if self.kind is ConditionKind.BETWEEN and self.upper is None:
            raise ValueError("between requires an upper bound")

    @classmethod
    def equals(cls, value: str) -> "AttributeCondition":
        return cls(ConditionKind.EQUALS, value)

    @classmethod
    def less_than(cls, value: str) -> "AttributeCondition":
        return cls(ConditionKind.LESS_THAN, value)

    @classmethod
    def less_than_or_equal(cls, value: str) -> "AttributeCondition":
        return cls(ConditionKind.LESS_THAN_OR_EQUAL, value)

    @classmethod
    def greater_than(cls, value: str) -> "AttributeCondition":
        return cls(ConditionKind.GREATER_THAN, value)

    @classmethod
    def greater_than_or_equal(cls, value: str) -> "AttributeCondition":
        return cls(ConditionKind.GREATER_THAN_OR_EQUAL, value)

    @classmethod
    def between(cls, lower: str, upper: str) -> "AttributeCondition":
        return cls(ConditionKind.BETWEEN, lower, upper)

    @classmethod
    def begins_with(cls, prefix: str) -> "AttributeCondition":
        return cls(ConditionKind.BEGINS_WITH, prefix)

    def key_condition(
        self, name: str, placeholder: str = ":sortkey"
    ) -> Tuple[str, Dict[str, Any]]:
        """Render as a key condition expression and its attribute values."""
        values: Dict[str, Any] = {placeholder: {"S": self.value}}
        if self.kind is ConditionKind.BEGINS_WITH:
            return f"begins_with({name}, {placeholder})", values
        if self.kind is ConditionKind.BETWEEN:
            upper_placeholder = f"{placeholder}upper"
            values[upper_placeholder] = {"S": self.upper}
            return (
                f"{name} BETWEEN {placeholder} AND {upper_placeholder}",
                values,
            )
        return f"{name} {self.kind.value} {placeholder}", values

    def matches(self, sort_key: str) -> bool:
        if self.kind is ConditionKind.EQUALS:
            return sort_key == self.value
        if self.kind is ConditionKind.LESS_THAN:
            return sort_key < self.value
        if self.kind is ConditionKind.LESS_THAN_OR_EQUAL:
            return sort_key <= self.value
        if self.kind is ConditionKind.GREATER_THAN:
            return sort_key > self.value
        if self.kind is ConditionKind.GREATER_THAN_OR_EQUAL:
            return sort_key >= self.value
        if self.kind is ConditionKind.BETWEEN:
            return self.value <= sort_key <= cast(str, self.upper)
        return sort_key.startswith(self.value)
