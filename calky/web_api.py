from __future__ import annotations

import os
from datetime import datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, Field

from calky.config_manager import MASK, ConfigManager
from calky.errors import CalendarNotFoundError, ReadOnlyCalendarError, StoreError, WriteConflictError
from calky.models import EventInput, to_utc
from calky.snapshot_cache import SqliteSnapshotCache
from calky.store_client import ICS_CONTENT_TYPE, HttpBlobStore
from calky.sync_controller import CalendarSync


class OrganizerPayload(BaseModel):
    email: str = Field(min_length=1)
    cn: str = ""
    sent_by: str = ""


class AttendeePayload(BaseModel):
    email: str = Field(min_length=1)
    cn: str = ""
    role: str = ""
    partstat: str = ""
    rsvp: bool | None = None


class AlarmPayload(BaseModel):
    action: str = "DISPLAY"
    trigger: str = Field(min_length=1)
    description: str = ""
    repeat: int | None = None
    duration: str = ""


class EventPayload(BaseModel):
    summary: str = Field(min_length=1)
    start: datetime
    end: datetime
    description: str = ""
    location: str = ""
    categories: list[str] = Field(default_factory=list)
    event_class: str = ""
    status: str = ""
    transp: str = ""
    priority: int | None = Field(default=None, ge=0, le=9)
    sequence: int | None = Field(default=None, ge=0)
    rrule: str = ""
    exdate: list[datetime] = Field(default_factory=list)
    organizer: OrganizerPayload | None = None
    attendees: list[AttendeePayload] = Field(default_factory=list)
    alarms: list[AlarmPayload] = Field(default_factory=list)


class CalendarCreateRequest(BaseModel):
    display_name: str = Field(min_length=1, max_length=200)
    color: str = ""
    timezone: str = ""
    description: str = ""
    method: str = ""
    calscale: str = ""
    initial_event: EventPayload | None = None


class CalendarPropsUpdateRequest(BaseModel):
    display_name: str | None = None
    color: str | None = None
    timezone: str | None = None
    description: str | None = None
    method: str | None = None
    calscale: str | None = None


class ImportRequest(BaseModel):
    ics: str = Field(min_length=1)


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class AppContext:
    def __init__(self, config_path: str, cache_path: str | None = None) -> None:
        self.config_manager = ConfigManager(config_path)
        self.cache_path = cache_path
        self.store: HttpBlobStore | None = None
        self.sync = self._build_sync()

    def _build_sync(self) -> CalendarSync:
        config = self.config_manager.load()
        self.store = HttpBlobStore(config.store)
        cache = SqliteSnapshotCache(self.cache_path or config.cache.path)
        return CalendarSync.from_config(config, self.store, cache)

    def reload(self) -> None:
        self.close()
        self.sync = self._build_sync()

    def close(self) -> None:
        if self.store is not None:
            self.store.close()


def _event_input(payload: EventPayload) -> EventInput:
    event_input = EventInput.from_dict(payload.model_dump())
    if to_utc(event_input.end) < to_utc(event_input.start):
        raise HTTPException(status_code=400, detail="end must be later than start")
    return event_input


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    store = sanitized.get("store")
    if isinstance(store, dict):
        store = dict(store)
        token = store.get("token")
        if token is not None and str(token).strip() in {"", MASK}:
            if current.get("store", {}).get("token"):
                store.pop("token", None)
            else:
                store["token"] = ""
        if store:
            sanitized["store"] = store
        else:
            sanitized.pop("store", None)
    return sanitized


def create_app(context: AppContext | None = None) -> FastAPI:
    if context is None:
        config_path = os.getenv("CALKY_CONFIG_PATH", "config.yaml")
        cache_path = os.getenv("CALKY_CACHE_PATH") or None
        context = AppContext(config_path=config_path, cache_path=cache_path)

    app = FastAPI(title="Calky", version="0.1.0")
    app.state.context = context

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.close()

    @app.exception_handler(WriteConflictError)
    def _conflict(_: Request, exc: WriteConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": exc.user_message})

    @app.exception_handler(StoreError)
    def _store_error(_: Request, exc: StoreError) -> JSONResponse:
        return JSONResponse(status_code=502, content={"detail": exc.user_message})

    @app.exception_handler(ReadOnlyCalendarError)
    def _read_only(_: Request, exc: ReadOnlyCalendarError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": str(exc)})

    @app.exception_handler(CalendarNotFoundError)
    def _not_found(_: Request, exc: CalendarNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(ValueError)
    def _invalid(_: Request, exc: ValueError) -> JSONResponse:
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    def sync() -> CalendarSync:
        return app.state.context.sync

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        manager = app.state.context.config_manager
        current = manager.load().to_dict()
        manager.update(_sanitize_config_payload(request.payload, current))
        app.state.context.reload()
        return {"message": "config updated", "config": manager.masked()}

    @app.get("/api/calendars")
    def list_calendars() -> dict[str, Any]:
        return sync().get_index().to_dict()

    @app.post("/api/calendars", status_code=201)
    def create_calendar(request: CalendarCreateRequest) -> dict[str, Any]:
        initial = _event_input(request.initial_event) if request.initial_event else None
        created = sync().create_calendar(
            request.display_name,
            color=request.color,
            timezone=request.timezone,
            description=request.description,
            method=request.method,
            calscale=request.calscale,
            initial_event=initial,
        )
        return created.to_dict()

    @app.get("/api/calendars/{calendar_id}")
    def get_calendar(calendar_id: str) -> dict[str, Any]:
        props = sync().get_props(calendar_id)
        if props is None:
            raise HTTPException(status_code=404, detail="calendar not found")
        return props.to_dict()

    @app.patch("/api/calendars/{calendar_id}")
    def update_calendar(calendar_id: str, request: CalendarPropsUpdateRequest) -> dict[str, Any]:
        updated = sync().update_props(calendar_id, request.model_dump(exclude_none=True))
        return updated.to_dict()

    @app.delete("/api/calendars/{calendar_id}")
    def delete_calendar(calendar_id: str) -> dict[str, str]:
        sync().delete_calendar(calendar_id)
        return {"message": "calendar deleted"}

    @app.get("/api/calendars/{calendar_id}/ics")
    def get_calendar_ics(calendar_id: str) -> Response:
        state = sync().get_document(calendar_id)
        if state.document is None:
            raise HTTPException(status_code=404, detail="calendar has no document yet")
        headers = {"ETag": state.etag} if state.etag else {}
        return Response(content=state.document, media_type=ICS_CONTENT_TYPE, headers=headers)

    @app.get("/api/calendars/{calendar_id}/events")
    def list_events(calendar_id: str) -> dict[str, Any]:
        records = sync().list_events(calendar_id)
        events = []
        for record in records:
            payload = record.to_dict()
            payload.pop("raw", None)
            events.append(payload)
        return {"events": events}

    @app.post("/api/calendars/{calendar_id}/events", status_code=201)
    def add_event(calendar_id: str, request: EventPayload) -> dict[str, Any]:
        return sync().add_event(calendar_id, _event_input(request)).to_dict()

    @app.put("/api/calendars/{calendar_id}/events/{uid}")
    def update_event(calendar_id: str, uid: str, request: EventPayload) -> dict[str, Any]:
        return sync().update_event(calendar_id, uid, _event_input(request)).to_dict()

    @app.delete("/api/calendars/{calendar_id}/events/{uid}")
    def delete_event(calendar_id: str, uid: str) -> dict[str, Any]:
        return sync().delete_event(calendar_id, uid).to_dict()

    @app.post("/api/calendars/{calendar_id}/import")
    def import_events(calendar_id: str, request: ImportRequest) -> dict[str, Any]:
        return sync().import_events(calendar_id, request.ics).to_dict()

    return app
