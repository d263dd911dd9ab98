from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Tuple, Type, Union

TypeSpec = Union[Type[Any], Tuple[Type[Any], ...]]


def require_type(name: str, value: Any, expected: TypeSpec) -> None:
    """Raise ValueError unless ``value`` is an instance of ``expected``."""
    if isinstance(value, expected):
        return
    if isinstance(expected, tuple):
        names = " or ".join(t.__name__ for t in expected)
    else:
        names = expected.__name__
    raise ValueError(f"{name} must be {names}, got {type(value).__name__}")


def format_timestamp(value: datetime) -> str:
    """Render a timestamp as an ISO-8601 string in UTC.

    Naive datetimes are taken to already be in UTC.
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat()


def parse_timestamp(value: str) -> datetime:
    """Parse an ISO-8601 string written by ``format_timestamp``."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def require_attributes(
    item: Dict[str, Any], attributes: Iterable[str], description: str
) -> None:
    """Raise ValueError if a raw DynamoDB item lacks any of ``attributes``."""
    missing = sorted(name for name in attributes if name not in item)
    if missing:
        raise ValueError(
            f"Invalid {description}: missing keys {', '.join(missing)}"
        )
