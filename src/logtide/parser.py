from __future__ import annotations

import json
import math
import re
from datetime import datetime, timezone
from typing import Any, AsyncIterable, AsyncIterator, Iterable, Iterator, List, Optional

from logtide.models import LogEntry, utcnow

# ----------------------------
# Grammars (tried in this order)
# ----------------------------
_JSON_RE = re.compile(r"^\{.*\}$")

_APPLICATION_RE = re.compile(
    r"""
    ^
    (?P<ts>\d{4}-\d{2}-\d{2}
        (?:[T\s]\d{2}:\d{2}:\d{2}(?:[.,]\d+)?)?
        (?:Z|[+-]\d{2}:?\d{2})?)
    \s+
    \[?(?P<level>\w+)\]?
    \s+
    (?P<msg>.+)
    """,
    re.VERBOSE,
)

_ACCESS_RE = re.compile(
    r"""
    ^
    (?P<ip>\S+)\s(?P<ident>\S+)\s(?P<user>\S+)\s
    \[(?P<ts>[\w:/]+\s[+\-]\d{4})\]\s
    "(?P<method>\S+)\s?(?P<path>\S+)?\s?(?P<protocol>\S+)?"\s
    (?P<status>\d{3}|-)\s
    (?P<size>\d+|-)
    \s?"?(?P<referrer>[^"]*)"?
    \s?"?(?P<ua>[^"]*)?"?
    """,
    re.VERBOSE,
)

_SIMPLE_RE = re.compile(r"^(?P<ts>\d{4}-\d{2}-\d{2}\s\d{2}:\d{2}:\d{2})\s+(?P<msg>.+)")

_ZONE_NO_COLON_RE = re.compile(r"([+-]\d{2})(\d{2})$")

_JSON_KEYS = {
    "timestamp": "timestamp", "time": "timestamp", "ts": "timestamp",
    "level": "level", "severity": "level",
    "message": "message", "msg": "message",
    "method": "method",
    "path": "path", "url": "path",
    "protocol": "protocol",
    "status": "status",
    "size": "size", "bytes": "size",
    "ip": "ip",
    "referrer": "referrer", "referer": "referrer",
    "user_agent": "user_agent", "userAgent": "user_agent",
}


# ----------------------------
# Helpers
# ----------------------------
def _aware(dt: datetime) -> datetime:
    return dt if dt.tzinfo else dt.replace(tzinfo=timezone.utc)


def parse_iso_timestamp(value: str) -> Optional[datetime]:
    v = value.strip().replace(",", ".")
    if v.endswith("Z"):
        v = v[:-1] + "+00:00"
    v = _ZONE_NO_COLON_RE.sub(r"\1:\2", v)
    try:
        return _aware(datetime.fromisoformat(v))
    except ValueError:
        return None


def parse_access_timestamp(value: str) -> Optional[datetime]:
    try:
        return datetime.strptime(value, "%d/%b/%Y:%H:%M:%S %z")
    except ValueError:
        return None


def _json_timestamp(value: Any) -> Optional[datetime]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        # epoch seconds, or milliseconds for large values
        secs = value / 1000.0 if value > 1e11 else float(value)
        try:
            return datetime.fromtimestamp(secs, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        return parse_iso_timestamp(value)
    return None


def _to_int(value: Any) -> int:
    if isinstance(value, float) and not math.isfinite(value):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError, OverflowError):
        return 0


def _opt_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


# ----------------------------
# Format detection
# ----------------------------
def _parse_json(line: str) -> Optional[LogEntry]:
    try:
        data = json.loads(line)
    except ValueError:
        return None
    if not isinstance(data, dict):
        return None

    fields: dict = {}
    extra: dict = {}
    for key, value in data.items():
        target = _JSON_KEYS.get(key)
        if target is None or target in fields:
            extra[key] = value
        else:
            fields[target] = value

    ts = _json_timestamp(fields.pop("timestamp", None)) or utcnow()
    level = _opt_str(fields.get("level"))
    status = fields.get("status")
    size = fields.get("size")
    return LogEntry(
        timestamp=ts,
        level=level.upper() if level else None,
        message=_opt_str(fields.get("message")),
        method=_opt_str(fields.get("method")),
        path=_opt_str(fields.get("path")),
        protocol=_opt_str(fields.get("protocol")),
        status=_to_int(status) if status is not None else None,
        size=_to_int(size) if size is not None else None,
        ip=_opt_str(fields.get("ip")),
        referrer=_opt_str(fields.get("referrer")),
        user_agent=_opt_str(fields.get("user_agent")),
        extra=extra,
        raw=line,
        format="json",
    )


def _parse_application(line: str) -> Optional[LogEntry]:
    m = _APPLICATION_RE.match(line)
    if not m:
        return None
    return LogEntry(
        timestamp=parse_iso_timestamp(m.group("ts")) or utcnow(),
        level=m.group("level").upper(),
        message=m.group("msg"),
        raw=line,
        format="application",
    )


def _parse_access(line: str) -> Optional[LogEntry]:
    m = _ACCESS_RE.match(line)
    if not m:
        return None
    return LogEntry(
        timestamp=parse_access_timestamp(m.group("ts")) or utcnow(),
        ip=m.group("ip"),
        method=m.group("method"),
        path=m.group("path"),
        protocol=m.group("protocol"),
        status=_to_int(m.group("status")),
        size=_to_int(m.group("size")),
        referrer=m.group("referrer"),
        user_agent=m.group("ua"),
        raw=line,
        format="access",
    )


def _parse_simple(line: str) -> Optional[LogEntry]:
    m = _SIMPLE_RE.match(line)
    if not m:
        return None
    return LogEntry(
        timestamp=parse_iso_timestamp(m.group("ts")) or utcnow(),
        message=m.group("msg"),
        raw=line,
        format="simple",
    )


def parse_line(line: str) -> LogEntry:
    """
    Classify one line. Grammars are tried as JSON, application, access,
    simple; the first structural match wins. Never raises: a line nothing
    matches comes back with `unparsed=True`.
    """
    line = line.strip()

    if _JSON_RE.match(line):
        entry = _parse_json(line)
        if entry is not None:
            return entry

    for grammar in (_parse_application, _parse_access, _parse_simple):
        entry = grammar(line)
        if entry is not None:
            return entry

    return LogEntry(message=line, raw=line, unparsed=True, format="unparsed")


# ----------------------------
# Line buffering
# ----------------------------
class LineBuffer:
    """
    Holds at most one partial line between chunks. Complete lines come back
    trimmed; blank lines are dropped.
    """

    def __init__(self):
        self._buf = ""

    @property
    def pending(self) -> int:
        return len(self._buf)

    def feed(self, chunk: str) -> List[str]:
        if not chunk:
            return []
        parts = (self._buf + chunk).split("\n")
        self._buf = parts.pop()
        return [p.strip() for p in parts if p.strip()]

    def flush(self) -> List[str]:
        rest, self._buf = self._buf.strip(), ""
        return [rest] if rest else []


def iter_lines(chunks: Iterable[str]) -> Iterator[str]:
    buf = LineBuffer()
    for chunk in chunks:
        yield from buf.feed(chunk)
    yield from buf.flush()


async def aiter_lines(chunks: AsyncIterable[str]) -> AsyncIterator[str]:
    buf = LineBuffer()
    async for chunk in chunks:
        for line in buf.feed(chunk):
            yield line
    for line in buf.flush():
        yield line


def parse_lines(lines: Iterable[str]) -> Iterator[LogEntry]:
    for line in lines:
        yield parse_line(line)


async def aparse_chunks(chunks: AsyncIterable[str]) -> AsyncIterator[LogEntry]:
    async for line in aiter_lines(chunks):
        yield parse_line(line)
