"""Window parsing, bucket arithmetic and the persisted key layout.

Every counter lives in a sorted set named ``{prefix}:{table}:{bucket}`` where
``bucket`` is the millisecond timestamp at which its window starts. Members
are the canonical JSON of an event's attributes.
"""
from __future__ import annotations

import json
import math
import re
import time
from dataclasses import dataclass
from typing import Any, Iterator, Mapping

from ..errors import InvalidEvent, InvalidTableName, InvalidWindow

WINDOW_PATTERN = re.compile(r"^(\d+)([smhd])$")
TABLE_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")
UNIT_MILLISECONDS = {
    "s": 1000,
    "m": 60 * 1000,
    "h": 60 * 60 * 1000,
    "d": 24 * 60 * 60 * 1000,
}
TIME_FIELD = "time"


def now_ms() -> int:
    return int(time.time() * 1000)


def parse_window(value: int | float | str) -> int:
    """Resolve a window to a positive number of milliseconds."""
    if isinstance(value, bool):
        raise InvalidWindow(f"Invalid window: {value!r}")
    if isinstance(value, (int, float)):
        if value <= 0 or not float(value).is_integer():
            raise InvalidWindow(f"Invalid window: {value!r}")
        return int(value)
    if not isinstance(value, str):
        raise InvalidWindow(f"Invalid window: {value!r}")
    match = WINDOW_PATTERN.fullmatch(value)
    if match is None:
        raise InvalidWindow(f"Invalid window: {value!r}")
    amount, unit = match.groups()
    milliseconds = int(amount) * UNIT_MILLISECONDS[unit]
    if milliseconds <= 0:
        raise InvalidWindow(f"Invalid window: {value!r}")
    return milliseconds


def parse_retention(value: int | float | str | None) -> int | None:
    """Retention uses window syntax; None, zero or negative disables it."""
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool) and value <= 0:
        return None
    return parse_window(value)


def bucket_start(timestamp: int | float | None, bucket_size: int) -> int:
    if timestamp is None:
        timestamp = now_ms()
    return int(timestamp // bucket_size) * bucket_size


def walk_back(start: int, bucket_size: int, count: int) -> Iterator[int]:
    """Yield ``count`` bucket starts ending at ``start``, newest first."""
    for step in range(count):
        yield start - step * bucket_size


def validate_table_name(table: str) -> str:
    if not isinstance(table, str) or not TABLE_PATTERN.fullmatch(table):
        raise InvalidTableName(
            f"Invalid table name: {table!r}. Table names can only contain letters, numbers, dashes and underscores."
        )
    return table


@dataclass(frozen=True)
class BucketKey:
    prefix: str
    table: str
    bucket: int

    def __str__(self) -> str:
        return f"{self.prefix}:{self.table}:{self.bucket}"

    @classmethod
    def parse(cls, raw: str) -> "BucketKey":
        parts = raw.split(":")
        if len(parts) != 3:
            raise ValueError(f"Not a bucket key: {raw!r}")
        prefix, table, bucket = parts
        return cls(prefix, table, int(bucket))

    @classmethod
    def pattern(cls, prefix: str, table: str) -> str:
        return f"{prefix}:{table}:*"


def _check_scalar(name: str, value: Any) -> None:
    if not isinstance(value, (str, int, float, bool)):
        raise InvalidEvent(f"Attribute {name!r} must be a string, number or boolean, got {type(value).__name__}")


def canonical_member(attributes: Mapping[str, Any]) -> str:
    return json.dumps(dict(attributes), sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def serialize_event(event: Mapping[str, Any]) -> tuple[int | float | None, str]:
    """Split an event into its timestamp and its counter member."""
    timestamp = event.get(TIME_FIELD)
    if timestamp is not None and (
        isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)) or not math.isfinite(timestamp)
    ):
        raise InvalidEvent(f"Event time must be epoch milliseconds, got {timestamp!r}")
    attributes: dict[str, Any] = {}
    for name, value in event.items():
        if name == TIME_FIELD or value is None:
            continue
        _check_scalar(name, value)
        attributes[name] = value
    return timestamp, canonical_member(attributes)


def decode_member(member: str) -> dict[str, Any]:
    decoded = json.loads(member)
    if not isinstance(decoded, dict):
        raise ValueError(f"Counter member is not an object: {member!r}")
    return decoded


def value_label(value: Any) -> str:
    """Render an attribute value the way it appears as a grouping key."""
    if value is True:
        return "true"
    if value is False:
        return "false"
    if value is None:
        return "null"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
