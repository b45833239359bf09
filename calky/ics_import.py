from __future__ import annotations

import logging
from datetime import date, datetime, timedelta
from typing import Any

from icalendar import Calendar as ICalendar

from calky.models import (
    EVENT_CLASSES,
    Alarm,
    Attendee,
    EventInput,
    Organizer,
    date_to_datetime,
    to_utc,
)

logger = logging.getLogger(__name__)


def _coerce_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return to_utc(value)
    if isinstance(value, date):
        return date_to_datetime(value)
    return None


def _decoded(component: Any, name: str) -> Any:
    if component.get(name) is None:
        return None
    try:
        return component.decoded(name)
    except (ValueError, TypeError):
        return None


def _text(component: Any, name: str) -> str:
    value = component.get(name)
    if value is None:
        return ""
    return str(value).strip()


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _to_ical_text(value: Any) -> str:
    if value is None:
        return ""
    if hasattr(value, "to_ical"):
        raw = value.to_ical()
        return raw.decode("utf-8") if isinstance(raw, bytes) else str(raw)
    return str(value)


def _optional_int(component: Any, name: str) -> int | None:
    value = component.get(name)
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


def _strip_mailto(value: Any) -> str:
    text = str(value or "").strip()
    if text.lower().startswith("mailto:"):
        return text[len("mailto:") :]
    return text


def _categories(component: Any) -> list[str]:
    categories: list[str] = []
    for item in _as_list(component.get("CATEGORIES")):
        cats = getattr(item, "cats", None)
        if cats is None:
            cats = str(item).split(",")
        categories.extend(str(cat).strip() for cat in cats if str(cat).strip())
    return categories


def _exdates(component: Any) -> list[datetime]:
    output: list[datetime] = []
    for item in _as_list(component.get("EXDATE")):
        for dt_value in getattr(item, "dts", []):
            coerced = _coerce_datetime(getattr(dt_value, "dt", None))
            if coerced is not None:
                output.append(coerced)
    return output


def _organizer(component: Any) -> Organizer | None:
    value = component.get("ORGANIZER")
    if value is None:
        return None
    params = getattr(value, "params", {})
    email = _strip_mailto(value)
    if not email:
        return None
    return Organizer(
        email=email,
        cn=str(params.get("CN", "") or ""),
        sent_by=str(params.get("SENT-BY", "") or ""),
    )


def _attendees(component: Any) -> list[Attendee]:
    attendees: list[Attendee] = []
    for value in _as_list(component.get("ATTENDEE")):
        params = getattr(value, "params", {})
        rsvp = params.get("RSVP")
        attendees.append(
            Attendee(
                email=_strip_mailto(value),
                cn=str(params.get("CN", "") or ""),
                role=str(params.get("ROLE", "") or "").upper(),
                partstat=str(params.get("PARTSTAT", "") or "").upper(),
                rsvp=None if rsvp is None else str(rsvp).upper() == "TRUE",
            )
        )
    return attendees


def _alarms(component: Any) -> list[Alarm]:
    alarms: list[Alarm] = []
    for sub in component.subcomponents:
        if sub.name != "VALARM":
            continue
        action = _text(sub, "ACTION").upper()
        trigger = _to_ical_text(sub.get("TRIGGER")).strip()
        if not action or not trigger:
            continue
        alarms.append(
            Alarm(
                action=action,
                trigger=trigger,
                description=_text(sub, "DESCRIPTION"),
                repeat=_optional_int(sub, "REPEAT"),
                duration=_to_ical_text(sub.get("DURATION")).strip(),
            )
        )
    return alarms


def _event_input(component: Any) -> EventInput | None:
    summary = _text(component, "SUMMARY")
    dtstart_raw = _decoded(component, "DTSTART")
    start = _coerce_datetime(dtstart_raw)
    if not summary or start is None:
        return None
    end = _coerce_datetime(_decoded(component, "DTEND"))
    if end is None:
        duration = _decoded(component, "DURATION")
        if isinstance(duration, timedelta):
            end = start + duration
        elif isinstance(dtstart_raw, date) and not isinstance(dtstart_raw, datetime):
            end = start + timedelta(days=1)
        else:
            end = start + timedelta(hours=1)
    event_class = _text(component, "CLASS").upper()
    priority = _optional_int(component, "PRIORITY")
    if priority is not None and not 0 <= priority <= 9:
        priority = None
    return EventInput(
        summary=summary,
        start=start,
        end=end,
        description=_text(component, "DESCRIPTION"),
        location=_text(component, "LOCATION"),
        categories=_categories(component),
        event_class=event_class if event_class in EVENT_CLASSES else "",
        status=_text(component, "STATUS").upper(),
        transp=_text(component, "TRANSP").upper(),
        priority=priority,
        sequence=_optional_int(component, "SEQUENCE"),
        rrule=_to_ical_text(component.get("RRULE")).strip(),
        exdate=_exdates(component),
        organizer=_organizer(component),
        attendees=_attendees(component),
        alarms=_alarms(component),
    )


def parse_foreign_events(ics_text: str | bytes) -> list[tuple[str, EventInput]]:
    """Read the events of an iCalendar file written by any producer.

    Returns ``(uid, input)`` pairs; the uid is empty when the source event had
    none. Events without a summary or a start are skipped.
    """
    raw = ics_text.decode("utf-8", errors="replace") if isinstance(ics_text, bytes) else str(ics_text)
    try:
        calendar_obj = ICalendar.from_ical(raw)
    except ValueError as exc:
        raise ValueError(f"Invalid iCalendar data: {exc}") from exc
    events: list[tuple[str, EventInput]] = []
    for component in calendar_obj.walk():
        if component.name != "VEVENT":
            continue
        event_input = _event_input(component)
        uid = _text(component, "UID")
        if event_input is None:
            logger.info("Skipping foreign event %r without summary or start", uid)
            continue
        events.append((uid, event_input))
    return events
