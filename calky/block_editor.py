from __future__ import annotations

import logging
from typing import Iterator

from calky.ics_text import CRLF, split_content_line, unfold_lines

logger = logging.getLogger(__name__)

CALENDAR_END = "END:VCALENDAR"


def _physical_lines(text: str) -> Iterator[str]:
    start = 0
    while start < len(text):
        end = text.find("\n", start)
        if end == -1:
            yield text[start:]
            return
        yield text[start : end + 1]
        start = end + 1


def _marker(line: str) -> str:
    # Trailing whitespace is ignored like the decoder does; a leading space marks a continuation line.
    return line.rstrip()


def block_uid(block: str) -> str:
    """UID of a VEVENT block, read from unfolded lines outside any VALARM."""
    depth = 0
    for line in unfold_lines(block):
        name, _, value = split_content_line(line)
        if name == "BEGIN":
            depth += 1
        elif name == "END":
            depth -= 1
        elif name == "UID" and depth == 1:
            return value.strip()
    return ""


def append_block(document: str, block: str) -> str:
    end_index = document.rfind(CALENDAR_END)
    if end_index == -1:
        logger.warning("Document has no %s marker, appending block at the end", CALENDAR_END)
        prefix = document
        if prefix and not prefix.endswith("\n"):
            prefix += CRLF
        return prefix + block + CRLF
    return document[:end_index] + block + CRLF + document[end_index:]


def remove_by_uid(document: str, uid: str) -> str:
    """Drop the VEVENT whose UID equals ``uid``; every other byte is kept."""
    target = uid.strip()
    if not target:
        return document
    output: list[str] = []
    block: list[str] | None = None
    for line in _physical_lines(document):
        marker = _marker(line)
        if block is None:
            if marker == "BEGIN:VEVENT":
                block = [line]
            else:
                output.append(line)
            continue
        block.append(line)
        if marker == "END:VEVENT":
            if block_uid("".join(block)) != target:
                output.extend(block)
            block = None
    if block is not None:
        # Unterminated block, keep it as it was.
        output.extend(block)
    return "".join(output)


def replace_by_uid(document: str, uid: str, block: str) -> str:
    return append_block(remove_by_uid(document, uid), block)


def has_uid(document: str, uid: str) -> bool:
    return remove_by_uid(document, uid) != document
