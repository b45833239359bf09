from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from calky.errors import IcsDateError
from calky.ics_text import (
    CRLF,
    escape_text,
    fold_line,
    format_datetime_utc,
    iter_logical_lines,
    parse_ics_date,
    split_content_line,
    split_escaped_list,
    unescape_text,
)
from calky.models import Alarm, Attendee, CalendarProps, EventInput, EventRecord, Organizer

logger = logging.getLogger(__name__)

DEFAULT_PRODID = "-//Calky//EN"
DEFAULT_UID_DOMAIN = "calky"

_DATE_FIELDS = {
    "DTSTART": "start",
    "DTEND": "end",
    "CREATED": "created",
    "LAST-MODIFIED": "last_modified",
    "DTSTAMP": "dtstamp",
}
_TEXT_FIELDS = {"SUMMARY": "summary", "DESCRIPTION": "description", "LOCATION": "location"}
_PLAIN_FIELDS = {"STATUS": "status", "CLASS": "event_class", "TRANSP": "transp", "RRULE": "rrule"}


def new_uid(uid_domain: str = DEFAULT_UID_DOMAIN) -> str:
    return f"{uuid.uuid4()}@{uid_domain}"


def _param_value(value: str) -> str:
    # Quoted parameter values may not carry DQUOTE or line breaks.
    return value.replace('"', "").replace("\r", " ").replace("\n", " ")


def _single_line(name: str, value: str) -> str:
    # Only TEXT values are escaped; anything else must not carry a line break.
    if "\r" in value or "\n" in value:
        raise ValueError(f"{name} must not contain line breaks")
    return value


def _strip_mailto(value: str) -> str:
    text = value.strip()
    if text.lower().startswith("mailto:"):
        return text[len("mailto:") :]
    return text


def new_document(props: CalendarProps | None = None, prodid: str = DEFAULT_PRODID) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        f"PRODID:{_single_line('PRODID', prodid)}",
        "VERSION:2.0",
        f"CALSCALE:{_single_line('CALSCALE', (props.calscale if props else '') or 'GREGORIAN')}",
    ]
    if props is not None and props.method:
        lines.append(f"METHOD:{_single_line('METHOD', props.method)}")
    if props is not None and props.display_name:
        lines.append(f"X-WR-CALNAME:{escape_text(props.display_name)}")
    lines.append("END:VCALENDAR")
    return CRLF.join(fold_line(line) for line in lines)


def _organizer_line(organizer: Organizer) -> str:
    line = "ORGANIZER"
    if organizer.cn:
        line += f';CN="{_param_value(organizer.cn)}"'
    if organizer.sent_by:
        line += f';SENT-BY="{_param_value(organizer.sent_by)}"'
    return f"{line}:MAILTO:{_single_line('ORGANIZER', organizer.email)}"


def _attendee_line(attendee: Attendee) -> str:
    line = "ATTENDEE"
    if attendee.cn:
        line += f';CN="{_param_value(attendee.cn)}"'
    if attendee.role:
        line += f";ROLE={_single_line('ROLE', attendee.role)}"
    if attendee.partstat:
        line += f";PARTSTAT={_single_line('PARTSTAT', attendee.partstat)}"
    if attendee.rsvp is not None:
        line += f";RSVP={'TRUE' if attendee.rsvp else 'FALSE'}"
    return f"{line}:MAILTO:{_single_line('ATTENDEE', attendee.email)}"


def _alarm_lines(alarm: Alarm) -> list[str]:
    lines = [
        "BEGIN:VALARM",
        f"ACTION:{_single_line('ACTION', alarm.action)}",
        f"TRIGGER:{_single_line('TRIGGER', alarm.trigger)}",
    ]
    if alarm.description:
        lines.append(f"DESCRIPTION:{escape_text(alarm.description)}")
    if alarm.repeat is not None:
        lines.append(f"REPEAT:{alarm.repeat}")
    if alarm.duration:
        lines.append(f"DURATION:{_single_line('DURATION', alarm.duration)}")
    lines.append("END:VALARM")
    return lines


def encode_event(
    event_input: EventInput,
    uid: str | None = None,
    *,
    now: datetime | None = None,
    created: datetime | None = None,
    uid_domain: str = DEFAULT_UID_DOMAIN,
) -> str:
    """Build one VEVENT block (CRLF separated, no trailing line break).

    ``created`` keeps the original creation stamp when an existing event is
    rewritten; ``now`` defaults to the current UTC time and stamps DTSTAMP and
    LAST-MODIFIED.
    """
    stamp = now or datetime.now(timezone.utc)
    lines = [
        "BEGIN:VEVENT",
        f"UID:{_single_line('UID', uid or new_uid(uid_domain))}",
        f"DTSTAMP:{format_datetime_utc(stamp)}",
        f"DTSTART:{format_datetime_utc(event_input.start)}",
        f"DTEND:{format_datetime_utc(event_input.end)}",
        f"SUMMARY:{escape_text(event_input.summary)}",
        f"CREATED:{format_datetime_utc(created or stamp)}",
        f"LAST-MODIFIED:{format_datetime_utc(stamp)}",
    ]
    if event_input.description:
        lines.append(f"DESCRIPTION:{escape_text(event_input.description)}")
    if event_input.location:
        lines.append(f"LOCATION:{escape_text(event_input.location)}")
    if event_input.categories:
        lines.append(f"CATEGORIES:{','.join(escape_text(x) for x in event_input.categories)}")
    if event_input.event_class:
        lines.append(f"CLASS:{_single_line('CLASS', event_input.event_class)}")
    if event_input.status:
        lines.append(f"STATUS:{_single_line('STATUS', event_input.status)}")
    if event_input.transp:
        lines.append(f"TRANSP:{_single_line('TRANSP', event_input.transp)}")
    if event_input.priority is not None:
        lines.append(f"PRIORITY:{event_input.priority}")
    lines.append(f"SEQUENCE:{event_input.sequence if event_input.sequence is not None else 0}")
    if event_input.rrule:
        lines.append(f"RRULE:{_single_line('RRULE', event_input.rrule)}")
    if event_input.exdate:
        lines.append(f"EXDATE:{','.join(format_datetime_utc(x) for x in event_input.exdate)}")
    if event_input.organizer is not None:
        lines.append(_organizer_line(event_input.organizer))
    for attendee in event_input.attendees:
        lines.append(_attendee_line(attendee))
    for alarm in event_input.alarms:
        lines.extend(_alarm_lines(alarm))
    lines.append("END:VEVENT")
    return CRLF.join(fold_line(line) for line in lines)


def _parse_int(value: str, default: int | None) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        return default


class _EventBuilder:
    def __init__(self) -> None:
        self.values: dict[str, Any] = {}
        self.categories: list[str] = []
        self.exdate: list[datetime] = []
        self.attendees: list[Attendee] = []
        self.alarms: list[Alarm] = []
        self.organizer: Organizer | None = None
        self._alarm: dict[str, str] | None = None

    def feed(self, line: str) -> None:
        name, params, value = split_content_line(line)
        if not name:
            return
        if name in {"BEGIN", "END"} and value.strip().upper() == "VALARM":
            if name == "BEGIN":
                self._alarm = {}
            else:
                self._close_alarm()
            return
        if self._alarm is not None:
            self._alarm[name] = value
            return

        if name == "UID":
            self.values["uid"] = value.strip()
        elif name in _TEXT_FIELDS:
            self.values[_TEXT_FIELDS[name]] = unescape_text(value)
        elif name in _PLAIN_FIELDS:
            self.values[_PLAIN_FIELDS[name]] = value.strip()
        elif name in _DATE_FIELDS:
            try:
                self.values[_DATE_FIELDS[name]] = parse_ics_date(value, params.get("TZID"))
            except IcsDateError as exc:
                logger.debug("Ignoring %s value: %s", name, exc)
        elif name == "SEQUENCE":
            self.values["sequence"] = _parse_int(value, 0)
        elif name == "PRIORITY":
            self.values["priority"] = _parse_int(value, None)
        elif name == "CATEGORIES":
            self.categories.extend(split_escaped_list(value))
        elif name == "EXDATE":
            for item in value.split(","):
                try:
                    self.exdate.append(parse_ics_date(item, params.get("TZID")))
                except IcsDateError:
                    continue
        elif name == "ORGANIZER":
            self.organizer = Organizer(
                email=_strip_mailto(value),
                cn=params.get("CN", ""),
                sent_by=params.get("SENT-BY", ""),
            )
        elif name == "ATTENDEE":
            rsvp = params.get("RSVP")
            self.attendees.append(
                Attendee(
                    email=_strip_mailto(value),
                    cn=params.get("CN", ""),
                    role=params.get("ROLE", ""),
                    partstat=params.get("PARTSTAT", ""),
                    rsvp=None if rsvp is None else rsvp.strip().upper() == "TRUE",
                )
            )

    def _close_alarm(self) -> None:
        alarm = self._alarm or {}
        self._alarm = None
        action = alarm.get("ACTION", "").strip()
        trigger = alarm.get("TRIGGER", "").strip()
        if not action or not trigger:
            return
        self.alarms.append(
            Alarm(
                action=action,
                trigger=trigger,
                description=unescape_text(alarm.get("DESCRIPTION", "")),
                repeat=_parse_int(alarm["REPEAT"], None) if "REPEAT" in alarm else None,
                duration=alarm.get("DURATION", "").strip(),
            )
        )

    def build(self, raw: str) -> EventRecord | None:
        values = self.values
        if not (values.get("uid") and values.get("summary") and values.get("start") and values.get("end")):
            return None
        return EventRecord(
            uid=values["uid"],
            summary=values["summary"],
            start=values["start"],
            end=values["end"],
            description=values.get("description", ""),
            location=values.get("location", ""),
            created=values.get("created"),
            last_modified=values.get("last_modified"),
            dtstamp=values.get("dtstamp"),
            sequence=values.get("sequence", 0),
            status=values.get("status", ""),
            categories=self.categories,
            priority=values.get("priority"),
            event_class=values.get("event_class", ""),
            transp=values.get("transp", ""),
            rrule=values.get("rrule", ""),
            exdate=self.exdate,
            organizer=self.organizer,
            attendees=self.attendees,
            alarms=self.alarms,
            raw=raw,
        )


def decode(document: str | None) -> list[EventRecord]:
    """Decode every complete VEVENT of a document, in document order.

    Blocks missing UID, SUMMARY, DTSTART or DTEND (or whose start/end cannot
    be parsed) are dropped without raising.
    """
    if not document or "BEGIN:VEVENT" not in document:
        return []
    records: list[EventRecord] = []
    builder: _EventBuilder | None = None
    raw_lines: list[str] = []
    for logical, physical in iter_logical_lines(document):
        marker = logical.strip()
        if marker == "BEGIN:VEVENT":
            builder = _EventBuilder()
            raw_lines = [physical]
            continue
        if builder is None:
            continue
        raw_lines.append(physical)
        if marker == "END:VEVENT":
            record = builder.build(CRLF.join(raw_lines))
            if record is None:
                logger.debug("Dropping incomplete VEVENT block (%d lines)", len(raw_lines))
            else:
                records.append(record)
            builder = None
            raw_lines = []
            continue
        builder.feed(logical)
    return records


def sort_by_start(records: list[EventRecord]) -> list[EventRecord]:
    return sorted(records, key=lambda record: record.start)


def find_event(document: str | None, uid: str) -> EventRecord | None:
    target = uid.strip()
    for record in decode(document):
        if record.uid == target:
            return record
    return None
