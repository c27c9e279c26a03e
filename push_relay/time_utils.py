import math
import re
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Optional

from google.protobuf.timestamp_pb2 import Timestamp

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MILLISECOND = timedelta(milliseconds=1)

# Leading optionally signed digit run; trailing text is ignored
_NUMERIC_STRING = re.compile(r"^\s*([+-]?\d+)")


class TimestampKind(str, Enum):
    INTEGER_MILLIS = "integer_millis"
    NUMERIC_STRING = "numeric_string"
    STRUCTURED = "structured"
    UNSUPPORTED = "unsupported"


@dataclass(frozen=True)
class NormalizedTimestamp:
    """Result of normalizing a raw message timestamp"""
    kind: TimestampKind
    millis: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.kind is not TimestampKind.UNSUPPORTED


@dataclass(frozen=True)
class ServerEpoch:
    """Instant the process started, in epoch-milliseconds"""
    millis: int

    @classmethod
    def capture(cls) -> "ServerEpoch":
        return cls(millis=current_millis())


def current_millis() -> int:
    return time.time_ns() // 1_000_000


def datetime_to_millis(value: datetime) -> int:
    """Convert a datetime to epoch-milliseconds, reading naive values as UTC"""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return (value - EPOCH) // ONE_MILLISECOND


def classify_timestamp(raw: Any) -> TimestampKind:
    # bool is an int subclass but never a timestamp
    if isinstance(raw, bool):
        return TimestampKind.UNSUPPORTED
    if isinstance(raw, str):
        if _NUMERIC_STRING.match(raw):
            return TimestampKind.NUMERIC_STRING
        return TimestampKind.UNSUPPORTED
    if isinstance(raw, int):
        return TimestampKind.INTEGER_MILLIS
    if isinstance(raw, float):
        return TimestampKind.INTEGER_MILLIS if math.isfinite(raw) else TimestampKind.UNSUPPORTED
    if isinstance(raw, (datetime, Timestamp)):
        return TimestampKind.STRUCTURED
    return TimestampKind.UNSUPPORTED


def normalize_timestamp(raw: Any) -> NormalizedTimestamp:
    """
    Normalize a message timestamp to epoch-milliseconds.

    Accepts integer millis, a string whose leading base-10 digit run holds
    the same (so "1700000000000.0" reads as 1700000000000), or a
    Firestore timestamp (DatetimeWithNanoseconds / datetime or a protobuf
    Timestamp). Anything else yields an UNSUPPORTED result with no millis.
    """
    kind = classify_timestamp(raw)

    if kind is TimestampKind.NUMERIC_STRING:
        return NormalizedTimestamp(kind, int(_NUMERIC_STRING.match(raw).group(1), 10))
    if kind is TimestampKind.INTEGER_MILLIS:
        return NormalizedTimestamp(kind, int(raw))
    if kind is TimestampKind.STRUCTURED:
        if isinstance(raw, Timestamp):
            return NormalizedTimestamp(kind, raw.ToMilliseconds())
        return NormalizedTimestamp(kind, datetime_to_millis(raw))
    return NormalizedTimestamp(TimestampKind.UNSUPPORTED)
