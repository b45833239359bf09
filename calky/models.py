from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any


EVENT_CLASSES = {"PUBLIC", "PRIVATE", "CONFIDENTIAL"}
PROPS_UPDATABLE_FIELDS = ("display_name", "color", "timezone", "description", "method", "calscale")


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_utc(dt: datetime) -> datetime:
    return _ensure_tz(dt).astimezone(timezone.utc)


def parse_iso_datetime(value: str | datetime | date | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def date_to_datetime(value: datetime | date | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


def _optional_bool(value: Any) -> bool | None:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return value.strip().upper() in {"TRUE", "1", "YES"}
    return bool(value)


@dataclass
class Organizer:
    email: str
    cn: str = ""
    sent_by: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Organizer | None":
        if not data:
            return None
        email = str(data.get("email", "")).strip()
        if not email:
            return None
        return cls(
            email=email,
            cn=str(data.get("cn", "") or "").strip(),
            sent_by=str(data.get("sent_by", data.get("sentBy", "")) or "").strip(),
        )


@dataclass
class Attendee:
    email: str
    cn: str = ""
    role: str = ""
    partstat: str = ""
    rsvp: bool | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Attendee":
        return cls(
            email=str(data.get("email", "")).strip(),
            cn=str(data.get("cn", "") or "").strip(),
            role=str(data.get("role", "") or "").strip().upper(),
            partstat=str(data.get("partstat", "") or "").strip().upper(),
            rsvp=_optional_bool(data.get("rsvp")),
        )


@dataclass
class Alarm:
    action: str
    trigger: str
    description: str = ""
    repeat: int | None = None
    duration: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Alarm":
        return cls(
            action=str(data.get("action", "DISPLAY") or "DISPLAY").strip().upper(),
            trigger=str(data.get("trigger", "")).strip(),
            description=str(data.get("description", "") or ""),
            repeat=_optional_int(data.get("repeat")),
            duration=str(data.get("duration", "") or "").strip(),
        )


@dataclass
class EventInput:
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    location: str = ""
    categories: list[str] = field(default_factory=list)
    event_class: str = ""
    status: str = ""
    transp: str = ""
    priority: int | None = None
    sequence: int | None = None
    rrule: str = ""
    exdate: list[datetime] = field(default_factory=list)
    organizer: Organizer | None = None
    attendees: list[Attendee] = field(default_factory=list)
    alarms: list[Alarm] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "EventInput":
        data = data or {}
        summary = str(data.get("summary", "") or "").strip()
        if not summary:
            raise ValueError("summary is required")
        start = parse_iso_datetime(data.get("start"))
        end = parse_iso_datetime(data.get("end"))
        if start is None or end is None:
            raise ValueError("start and end are required")
        priority = _optional_int(data.get("priority"))
        if priority is not None and not 0 <= priority <= 9:
            raise ValueError("priority must be between 0 and 9")
        event_class = str(data.get("event_class", data.get("class", "")) or "").strip().upper()
        if event_class and event_class not in EVENT_CLASSES:
            raise ValueError(f"unsupported class: {event_class}")
        exdate: list[datetime] = []
        for item in data.get("exdate") or []:
            parsed = parse_iso_datetime(item)
            if parsed is not None:
                exdate.append(parsed)
        return cls(
            summary=summary,
            start=start,
            end=end,
            description=str(data.get("description", "") or ""),
            location=str(data.get("location", "") or ""),
            categories=[str(x).strip() for x in data.get("categories") or [] if str(x).strip()],
            event_class=event_class,
            status=str(data.get("status", "") or "").strip().upper(),
            transp=str(data.get("transp", "") or "").strip().upper(),
            priority=priority,
            sequence=_optional_int(data.get("sequence")),
            rrule=str(data.get("rrule", "") or "").strip(),
            exdate=exdate,
            organizer=Organizer.from_dict(data.get("organizer")),
            attendees=[Attendee.from_dict(x) for x in data.get("attendees") or [] if x],
            alarms=[Alarm.from_dict(x) for x in data.get("alarms") or [] if x],
        )


@dataclass
class EventRecord:
    uid: str
    summary: str
    start: datetime
    end: datetime
    description: str = ""
    location: str = ""
    created: datetime | None = None
    last_modified: datetime | None = None
    dtstamp: datetime | None = None
    sequence: int = 0
    status: str = ""
    categories: list[str] = field(default_factory=list)
    priority: int | None = None
    event_class: str = ""
    transp: str = ""
    rrule: str = ""
    exdate: list[datetime] = field(default_factory=list)
    organizer: Organizer | None = None
    attendees: list[Attendee] = field(default_factory=list)
    alarms: list[Alarm] = field(default_factory=list)
    raw: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("start", "end", "created", "last_modified", "dtstamp"):
            payload[key] = serialize_datetime(getattr(self, key))
        payload["exdate"] = [serialize_datetime(x) for x in self.exdate]
        return payload


@dataclass
class CalendarProps:
    id: str
    display_name: str
    color: str = ""
    timezone: str = ""
    description: str = ""
    method: str = ""
    calscale: str = ""
    ctag: str = "v1"
    read_only: bool = False
    owner: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarProps":
        data = data or {}
        return cls(
            id=str(data.get("id", "")).strip(),
            display_name=str(data.get("displayName", "") or ""),
            color=str(data.get("color", "") or ""),
            timezone=str(data.get("timezone", "") or ""),
            description=str(data.get("description", "") or ""),
            method=str(data.get("method", "") or ""),
            calscale=str(data.get("calscale", "") or ""),
            ctag=str(data.get("ctag", "v1") or "v1"),
            read_only=bool(data.get("readOnly", False)),
            owner=str(data.get("owner", "") or ""),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "displayName": self.display_name,
            "color": self.color,
            "timezone": self.timezone,
            "description": self.description,
            "method": self.method,
            "calscale": self.calscale,
            "ctag": self.ctag,
            "readOnly": self.read_only,
            "owner": self.owner,
        }

    def next_ctag(self) -> str:
        try:
            current = int(self.ctag[1:])
        except (TypeError, ValueError):
            current = 0
        return f"v{(current or 1) + 1}"


@dataclass
class IndexEntry:
    id: str
    href: str
    display_name: str
    color: str = ""
    read_only: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "IndexEntry":
        return cls(
            id=str(data.get("id", "")).strip(),
            href=str(data.get("href", "") or ""),
            display_name=str(data.get("displayName", "") or ""),
            color=str(data.get("color", "") or ""),
            read_only=bool(data.get("readOnly", False)),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "href": self.href,
            "displayName": self.display_name,
            "color": self.color,
            "readOnly": self.read_only,
        }


@dataclass
class CalendarIndex:
    calendars: list[IndexEntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarIndex":
        data = data or {}
        raw_entries = data.get("calendars", [])
        if not isinstance(raw_entries, list):
            raw_entries = []
        return cls(calendars=[IndexEntry.from_dict(x) for x in raw_entries if isinstance(x, dict)])

    def to_dict(self) -> dict[str, Any]:
        return {"calendars": [entry.to_dict() for entry in self.calendars]}


@dataclass
class CachedSnapshot:
    document: str
    etag: str | None
    updated_at: datetime

    def is_fresh(self, now: datetime, window: timedelta) -> bool:
        return _ensure_tz(now) - _ensure_tz(self.updated_at) < window


@dataclass
class DocumentState:
    document: str | None = None
    etag: str | None = None


@dataclass
class MutationResult:
    calendar_id: str
    document: str
    etag: str | None
    uid: str = ""
    changed: bool = True
    uids: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "calendar_id": self.calendar_id,
            "uid": self.uid,
            "uids": list(self.uids),
            "etag": self.etag,
            "changed": self.changed,
        }


@dataclass
class CreatedCalendar:
    props: CalendarProps
    document: str
    etag: str

    def to_dict(self) -> dict[str, Any]:
        return {"props": self.props.to_dict(), "etag": self.etag, "ics": self.document}


@dataclass
class StoreConfig:
    base_url: str = ""
    owner: str = ""
    token: str = ""
    app_root: str = "/pub/calky"
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "StoreConfig":
        data = data or {}
        app_root = "/" + str(data.get("app_root", "/pub/calky") or "/pub/calky").strip().strip("/")
        return cls(
            base_url=str(data.get("base_url", "")).strip().rstrip("/"),
            owner=str(data.get("owner", "")).strip(),
            token=str(data.get("token", "")).strip(),
            app_root=app_root,
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class SyncConfig:
    freshness_minutes: int = 40

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        return cls(freshness_minutes=max(1, int(data.get("freshness_minutes", 40))))

    @property
    def freshness_window(self) -> timedelta:
        return timedelta(minutes=self.freshness_minutes)


@dataclass
class CacheConfig:
    path: str = "data/cache.db"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CacheConfig":
        data = data or {}
        return cls(path=str(data.get("path", "data/cache.db")).strip() or "data/cache.db")


@dataclass
class CodecConfig:
    prodid: str = "-//Calky//EN"
    uid_domain: str = "calky"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CodecConfig":
        data = data or {}
        return cls(
            prodid=str(data.get("prodid", "-//Calky//EN")).strip() or "-//Calky//EN",
            uid_domain=str(data.get("uid_domain", "calky")).strip() or "calky",
        )


@dataclass
class AppConfig:
    store: StoreConfig = field(default_factory=StoreConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    codec: CodecConfig = field(default_factory=CodecConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            store=StoreConfig.from_dict(data.get("store")),
            sync=SyncConfig.from_dict(data.get("sync")),
            cache=CacheConfig.from_dict(data.get("cache")),
            codec=CodecConfig.from_dict(data.get("codec")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()
