"""Tagged timestamps produced once at the system boundary.

The upstream API mixes two shapes:

* untagged values (``2025-10-13 12:15:00`` or ``2025-10-13T12:15``) which
  the backend stores as wall-clock local time, and
* tagged values (``...Z`` or ``...+04:00``) which are absolute instants.

Parsing happens exactly once, when an ``Activity`` is validated; the rest
of the package compares naive local datetimes obtained through
``to_local()``.
"""

import re
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Optional, Union
from zoneinfo import ZoneInfo

# Wire format for dateFrom/dateTo: local time, never UTC-converted
LOCAL_TS_FORMAT = "%Y-%m-%d %H:%M:%S"

_TAGGED_RE = re.compile(r"(Z|[+-]\d{2}:?\d{2})$", re.IGNORECASE)
_LOCAL_RE = re.compile(
    r"^(\d{4})-(\d{2})-(\d{2})[ T](\d{2}):(\d{2})(?::(\d{2})(?:\.(\d{1,6}))?)?$"
)
_DATE_ONLY_RE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_TAGGED_PARTS_RE = re.compile(
    r"^(?P<body>.+?)(?:\.(?P<fraction>\d+))?(?P<zone>Z|[+-]\d{2}:?\d{2})$",
    re.IGNORECASE,
)


def _normalize_tagged(text: str) -> str:
    """Rewrite a tagged value into the subset ``fromisoformat`` accepts on 3.9.

    ``Z`` becomes ``+00:00``, ``+0400`` becomes ``+04:00`` and fractional
    seconds are cut or padded to six digits.
    """
    match = _TAGGED_PARTS_RE.match(text)
    if match is None:
        return text
    body, fraction, zone = match.group("body", "fraction", "zone")
    if zone in ("Z", "z"):
        zone = "+00:00"
    elif ":" not in zone:
        zone = f"{zone[:3]}:{zone[3:]}"
    if fraction:
        body = f"{body}.{fraction[:6].ljust(6, '0')}"
    return body + zone


def resolve_timezone(name: str = "") -> Optional[tzinfo]:
    """Return the configured zone, or ``None`` for the host's local zone."""
    return ZoneInfo(name) if name else None


@dataclass(frozen=True)
class LocalTimestamp:
    """Wall-clock time without a zone; already local."""

    value: datetime

    def to_local(self, tz: Optional[tzinfo] = None) -> datetime:
        return self.value

    def isoformat(self) -> str:
        return self.value.strftime(LOCAL_TS_FORMAT)


@dataclass(frozen=True)
class AbsoluteTimestamp:
    """An instant carrying an explicit UTC offset."""

    value: datetime

    def to_local(self, tz: Optional[tzinfo] = None) -> datetime:
        return self.value.astimezone(tz).replace(tzinfo=None)

    def isoformat(self) -> str:
        return self.value.isoformat()


Timestamp = Union[LocalTimestamp, AbsoluteTimestamp]


def parse_timestamp(raw: Union[str, datetime, Timestamp]) -> Timestamp:
    """Tag *raw* as local or absolute.

    Raises ``ValueError`` for empty or unrecognised input.
    """
    if isinstance(raw, (LocalTimestamp, AbsoluteTimestamp)):
        return raw
    if isinstance(raw, datetime):
        if raw.tzinfo is None:
            return LocalTimestamp(raw)
        return AbsoluteTimestamp(raw)

    text = str(raw or "").strip()
    if not text:
        raise ValueError("empty timestamp")

    if _TAGGED_RE.search(text):
        try:
            return AbsoluteTimestamp(datetime.fromisoformat(_normalize_tagged(text)))
        except ValueError as exc:
            raise ValueError(f"invalid timestamp: {text!r}") from exc

    match = _LOCAL_RE.match(text)
    if match:
        year, month, day, hour, minute, second, fraction = match.groups()
        micro = int((fraction or "0").ljust(6, "0"))
        return LocalTimestamp(
            datetime(
                int(year),
                int(month),
                int(day),
                int(hour),
                int(minute),
                int(second or 0),
                micro,
            )
        )

    match = _DATE_ONLY_RE.match(text)
    if match:
        return LocalTimestamp(datetime(*(int(p) for p in match.groups())))

    raise ValueError(f"invalid timestamp: {text!r}")


def local_now(tz: Optional[tzinfo] = None) -> datetime:
    """Current wall-clock time in *tz* (host zone when ``None``), naive."""
    if tz is None:
        return datetime.now()
    return datetime.now(tz).replace(tzinfo=None)


def format_local(value: datetime) -> str:
    """Render a local datetime as ``YYYY-MM-DD HH:MM:SS`` for the wire."""
    if value.tzinfo is not None:
        raise ValueError("format_local expects a naive local datetime")
    return value.strftime(LOCAL_TS_FORMAT)
