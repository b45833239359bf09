from __future__ import annotations

import re
from datetime import date, datetime, timezone
from typing import Iterator
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from calky.errors import IcsDateError
from calky.models import parse_iso_datetime, to_utc

CRLF = "\r\n"
FOLD_LIMIT = 75

_LINE_BREAK_PATTERN = re.compile(r"\r?\n")
_ESCAPE_PATTERN = re.compile(r"\\([\\;,nNr])")
_UNESCAPED = {"\\": "\\", ";": ";", ",": ",", "n": "\n", "N": "\n", "r": "\r"}
_DATETIME_PATTERN = re.compile(r"^(\d{4})(\d{2})(\d{2})T(\d{2})(\d{2})(\d{2})(Z?)$")
_DATE_PATTERN = re.compile(r"^(\d{4})(\d{2})(\d{2})$")


def escape_text(text: str) -> str:
    return (
        text.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\n", "\\n")
        .replace("\r", "\\r")
    )


def unescape_text(text: str) -> str:
    # Single pass, so "\\n" (escaped backslash, then n) never turns into a newline.
    return _ESCAPE_PATTERN.sub(lambda match: _UNESCAPED[match.group(1)], text)


def split_escaped_list(text: str) -> list[str]:
    """Split a comma separated value on unescaped commas and unescape each item."""
    items: list[str] = []
    current: list[str] = []
    escaped = False
    for char in text:
        if escaped:
            current.append(char)
            escaped = False
        elif char == "\\":
            current.append(char)
            escaped = True
        elif char == ",":
            items.append("".join(current))
            current = []
        else:
            current.append(char)
    items.append("".join(current))
    return [unescape_text(item).strip() for item in items if item.strip()]


def fold_line(line: str) -> str:
    """Fold a content line to 75 octets, continuation lines start with one space.

    The byte budget is measured on the UTF-8 encoding and a character is never
    split across two segments.
    """
    if len(line.encode("utf-8")) <= FOLD_LIMIT:
        return line
    segments: list[str] = []
    current: list[str] = []
    current_bytes = 0
    limit = FOLD_LIMIT
    for char in line:
        width = len(char.encode("utf-8"))
        if current and current_bytes + width > limit:
            segments.append("".join(current))
            current = []
            current_bytes = 0
            limit = FOLD_LIMIT - 1
        current.append(char)
        current_bytes += width
    if current:
        segments.append("".join(current))
    return (CRLF + " ").join(segments)


def iter_logical_lines(text: str) -> Iterator[tuple[str, str]]:
    """Yield (unfolded line, physical text) pairs; physical lines are CRLF joined."""
    logical: str | None = None
    physical: list[str] = []
    for line in _LINE_BREAK_PATTERN.split(text):
        if logical is not None and line[:1] in (" ", "\t"):
            logical += line[1:]
            physical.append(line)
            continue
        if logical is not None:
            yield logical, CRLF.join(physical)
        logical = line
        physical = [line]
    if logical is not None:
        yield logical, CRLF.join(physical)


def unfold_lines(text: str) -> list[str]:
    return [logical for logical, _ in iter_logical_lines(text)]


def _split_outside_quotes(text: str, separator: str) -> list[str]:
    parts: list[str] = []
    current: list[str] = []
    in_quotes = False
    for char in text:
        if char == '"':
            in_quotes = not in_quotes
        if char == separator and not in_quotes:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def split_content_line(line: str) -> tuple[str, dict[str, str], str]:
    """Split ``NAME;PARAM=x:value`` into its name, parameters and raw value."""
    in_quotes = False
    colon = -1
    for index, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == ":" and not in_quotes:
            colon = index
            break
    if colon < 0:
        return line.strip().upper(), {}, ""
    head, value = line[:colon], line[colon + 1 :]
    parts = _split_outside_quotes(head, ";")
    params: dict[str, str] = {}
    for part in parts[1:]:
        key, sep, raw = part.partition("=")
        if not sep:
            continue
        raw = raw.strip()
        if len(raw) >= 2 and raw.startswith('"') and raw.endswith('"'):
            raw = raw[1:-1]
        params[key.strip().upper()] = raw
    return parts[0].strip().upper(), params, value


def format_datetime_utc(value: datetime) -> str:
    return to_utc(value).strftime("%Y%m%dT%H%M%SZ")


def format_date_utc(value: datetime | date) -> str:
    if isinstance(value, datetime):
        return to_utc(value).strftime("%Y%m%d")
    return value.strftime("%Y%m%d")


def _zone(tzid: str | None) -> ZoneInfo | None:
    if not tzid:
        return None
    try:
        return ZoneInfo(tzid.strip().strip("/"))
    except (ZoneInfoNotFoundError, ValueError):
        return None


def parse_ics_date(value: str, tzid: str | None = None) -> datetime:
    text = str(value or "").strip()
    match = _DATETIME_PATTERN.match(text)
    if match:
        year, month, day, hour, minute, second, utc_marker = match.groups()
        try:
            parsed = datetime(int(year), int(month), int(day), int(hour), int(minute), int(second))
        except ValueError as exc:
            raise IcsDateError(f"invalid date-time: {text!r}") from exc
        zone = None if utc_marker else _zone(tzid)
        if zone is not None:
            return parsed.replace(tzinfo=zone).astimezone(timezone.utc)
        return parsed.replace(tzinfo=timezone.utc)

    match = _DATE_PATTERN.match(text)
    if match:
        year, month, day = match.groups()
        try:
            return datetime(int(year), int(month), int(day), tzinfo=timezone.utc)
        except ValueError as exc:
            raise IcsDateError(f"invalid date: {text!r}") from exc

    try:
        parsed_iso = parse_iso_datetime(text)
    except ValueError as exc:
        raise IcsDateError(f"unrecognized date: {text!r}") from exc
    if parsed_iso is None:
        raise IcsDateError("empty date value")
    return parsed_iso.astimezone(timezone.utc)
