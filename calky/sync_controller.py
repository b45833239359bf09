from __future__ import annotations

import dataclasses
import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Callable

from calky.block_editor import append_block, remove_by_uid, replace_by_uid
from calky.errors import CalendarNotFoundError, ReadOnlyCalendarError, StoreError, WriteConflictError
from calky.fingerprint import fingerprint
from calky.ics_codec import decode, encode_event, find_event, new_document, new_uid, sort_by_start
from calky.ics_import import parse_foreign_events
from calky.models import (
    PROPS_UPDATABLE_FIELDS,
    AppConfig,
    CachedSnapshot,
    CalendarIndex,
    CalendarProps,
    CodecConfig,
    CreatedCalendar,
    DocumentState,
    EventInput,
    EventRecord,
    IndexEntry,
    MutationResult,
    SyncConfig,
)
from calky.store_client import (
    ICS_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    TEXT_CONTENT_TYPE,
    StoreLayout,
    StoreResponse,
)

logger = logging.getLogger(__name__)

CONFLICT_STATUSES = {409, 412}


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CalendarSync:
    """Reads and mutates calendar documents kept in a remote blob store.

    Reads arbitrate between the remote copy and a local snapshot cache. Every
    event mutation is a conditional write guarded by the document fingerprint,
    retried exactly once on a precondition failure by re-reading the remote
    document and applying the same edit to it.
    """

    def __init__(
        self,
        store: Any,
        cache: Any,
        *,
        owner: str,
        layout: StoreLayout | None = None,
        sync_config: SyncConfig | None = None,
        codec_config: CodecConfig | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        self.owner = owner
        self.layout = layout or StoreLayout()
        self.sync_config = sync_config or SyncConfig()
        self.codec_config = codec_config or CodecConfig()
        self._clock = clock or _utc_now

    @classmethod
    def from_config(cls, config: AppConfig, store: Any, cache: Any) -> "CalendarSync":
        return cls(
            store,
            cache,
            owner=config.store.owner,
            layout=StoreLayout(config.store.app_root),
            sync_config=config.sync,
            codec_config=config.codec,
        )

    # JSON resources

    def _read_json(self, path: str) -> tuple[StoreResponse, Any]:
        response = self.store.get(path)
        if not response.ok:
            return response, None
        try:
            return response, json.loads(response.text or "null")
        except ValueError as exc:
            raise StoreError(f"Invalid JSON in {path}: {exc}", response.status) from exc

    def _write_json(self, path: str, payload: dict[str, Any]) -> StoreResponse:
        return self.store.put(path, json.dumps(payload, ensure_ascii=False), JSON_CONTENT_TYPE)

    def get_index(self) -> CalendarIndex:
        response, data = self._read_json(self.layout.index())
        if response.ok:
            return CalendarIndex.from_dict(data if isinstance(data, dict) else None)
        if response.status == 404:
            return CalendarIndex()
        raise StoreError(f"Failed to load index.json (status {response.status})", response.status)

    def ensure_index(self) -> CalendarIndex:
        response, data = self._read_json(self.layout.index())
        if response.ok:
            return CalendarIndex.from_dict(data if isinstance(data, dict) else None)
        if response.status != 404:
            raise StoreError(f"Failed to read index.json (status {response.status})", response.status)
        empty = CalendarIndex()
        put = self._write_json(self.layout.index(), empty.to_dict())
        if not put.ok:
            raise StoreError(f"Failed to create index.json (status {put.status})", put.status)
        return empty

    def get_props(self, calendar_id: str) -> CalendarProps | None:
        response, data = self._read_json(self.layout.props(calendar_id))
        if response.ok and isinstance(data, dict):
            return CalendarProps.from_dict(data)
        if response.ok or response.status == 404:
            return None
        raise StoreError(f"Failed to load props.json (status {response.status})", response.status)

    # Document reads

    def _remote_etag(self, calendar_id: str) -> str | None:
        try:
            response = self.store.get(self.layout.etag(calendar_id))
        except StoreError as exc:
            logger.warning("Could not read etag of %s: %s", calendar_id, exc)
            return None
        if not response.ok:
            return None
        return response.text.strip() or None

    def _download_document(self, calendar_id: str) -> str | None:
        response = self.store.get(self.layout.document(calendar_id))
        if response.ok:
            return response.text
        if response.status == 404:
            return None
        raise StoreError(f"Failed to read calendar.ics (status {response.status})", response.status)

    def _store_snapshot(self, calendar_id: str, document: str, etag: str | None) -> None:
        self.cache.set(
            self.owner,
            calendar_id,
            CachedSnapshot(document=document, etag=etag, updated_at=self._clock()),
        )

    def get_document(self, calendar_id: str) -> DocumentState:
        local = self.cache.get(self.owner, calendar_id)
        remote_etag = self._remote_etag(calendar_id)

        if local is not None and local.etag and local.etag == remote_etag:
            return DocumentState(document=local.document, etag=local.etag)

        if (
            local is not None
            and remote_etag
            and local.etag != remote_etag
            and local.is_fresh(self._clock(), self.sync_config.freshness_window)
        ):
            # A recent local write beats a remote signal that may still lag behind it.
            logger.info("Remote etag of %s differs from a fresh local snapshot, using the snapshot", calendar_id)
            return DocumentState(document=local.document, etag=local.etag)

        try:
            remote_document = self._download_document(calendar_id)
        except StoreError as exc:
            logger.warning("Could not download %s: %s", calendar_id, exc)
            remote_document = None
        if remote_document is not None:
            self._store_snapshot(calendar_id, remote_document, remote_etag)
            return DocumentState(document=remote_document, etag=remote_etag)

        if local is not None:
            logger.info("Serving cached snapshot of %s, remote copy unavailable", calendar_id)
            return DocumentState(document=local.document, etag=local.etag)
        return DocumentState()

    def list_events(self, calendar_id: str) -> list[EventRecord]:
        return sort_by_start(decode(self.get_document(calendar_id).document))

    def get_event(self, calendar_id: str, uid: str) -> EventRecord | None:
        return find_event(self.get_document(calendar_id).document, uid)

    # Event mutations

    def _empty_document(self, props: CalendarProps | None) -> str:
        return new_document(props, prodid=self.codec_config.prodid)

    @staticmethod
    def _is_conflict(response: StoreResponse, if_match: str | None) -> bool:
        if response.status in CONFLICT_STATUSES:
            return True
        return response.status == 404 and bool(if_match)

    def _mutate(
        self,
        calendar_id: str,
        edit: Callable[[str], str],
        *,
        uid: str = "",
        uids: list[str] | None = None,
    ) -> MutationResult:
        props = self.get_props(calendar_id)
        if props is not None and props.read_only:
            raise ReadOnlyCalendarError(f"Calendar is read-only: {calendar_id}")

        state = self.get_document(calendar_id)
        base = state.document if state.document is not None else self._empty_document(props)
        next_document = edit(base)
        if next_document == base:
            return MutationResult(calendar_id, base, state.etag, uid=uid, changed=False, uids=list(uids or []))

        path = self.layout.document(calendar_id)
        response = self.store.put(path, next_document, ICS_CONTENT_TYPE, if_match=state.etag)
        if self._is_conflict(response, state.etag):
            logger.info(
                "Write of %s rejected with status %s, retrying against the remote copy",
                calendar_id,
                response.status,
            )
            fresh = self._download_document(calendar_id)
            base = fresh if fresh is not None else self._empty_document(props)
            if_match = fingerprint(fresh) if fresh is not None else None
            next_document = edit(base)
            if next_document == base:
                self._store_snapshot(calendar_id, base, if_match)
                return MutationResult(calendar_id, base, if_match, uid=uid, changed=False, uids=list(uids or []))
            response = self.store.put(path, next_document, ICS_CONTENT_TYPE, if_match=if_match)
            if self._is_conflict(response, if_match):
                raise WriteConflictError(f"Write conflict (status {response.status})", response.status)
            if not response.ok:
                raise StoreError(f"Failed to write calendar.ics on retry (status {response.status})", response.status)
        elif not response.ok:
            raise StoreError(f"Failed to write calendar.ics (status {response.status})", response.status)

        next_etag = fingerprint(next_document)
        self._store_snapshot(calendar_id, next_document, next_etag)
        etag_response = self.store.put(self.layout.etag(calendar_id), next_etag, TEXT_CONTENT_TYPE)
        if not etag_response.ok:
            raise StoreError(f"Failed to update etag.txt (status {etag_response.status})", etag_response.status)
        self._bump_ctag(calendar_id)
        logger.info("Wrote %s (%s)", calendar_id, next_etag)
        return MutationResult(calendar_id, next_document, next_etag, uid=uid, uids=list(uids or []))

    def add_event(self, calendar_id: str, event_input: EventInput) -> MutationResult:
        uid = new_uid(self.codec_config.uid_domain)
        block = encode_event(event_input, uid, now=self._clock())
        return self._mutate(calendar_id, lambda document: append_block(document, block), uid=uid)

    def delete_event(self, calendar_id: str, uid: str) -> MutationResult:
        return self._mutate(calendar_id, lambda document: remove_by_uid(document, uid), uid=uid)

    def _revised_block(self, document: str, uid: str, event_input: EventInput, now: datetime) -> str:
        previous = find_event(document, uid)
        created = None
        if previous is not None:
            created = previous.created
            if event_input.sequence is None:
                event_input = dataclasses.replace(event_input, sequence=previous.sequence + 1)
        return encode_event(event_input, uid, now=now, created=created)

    def update_event(self, calendar_id: str, uid: str, event_input: EventInput) -> MutationResult:
        now = self._clock()

        def edit(document: str) -> str:
            return replace_by_uid(document, uid, self._revised_block(document, uid, event_input, now))

        return self._mutate(calendar_id, edit, uid=uid)

    def import_events(self, calendar_id: str, ics_text: str | bytes) -> MutationResult:
        now = self._clock()
        prepared = [
            (uid or new_uid(self.codec_config.uid_domain), event_input)
            for uid, event_input in parse_foreign_events(ics_text)
        ]

        def edit(document: str) -> str:
            for uid, event_input in prepared:
                document = replace_by_uid(document, uid, self._revised_block(document, uid, event_input, now))
            return document

        return self._mutate(calendar_id, edit, uids=[uid for uid, _ in prepared])

    # Calendar level operations

    def _bump_ctag(self, calendar_id: str) -> str | None:
        try:
            props = self.get_props(calendar_id)
            if props is None:
                return None
            props.ctag = props.next_ctag()
            response = self._write_json(self.layout.props(calendar_id), props.to_dict())
        except StoreError as exc:
            logger.warning("Could not bump ctag of %s: %s", calendar_id, exc)
            return None
        if not response.ok:
            logger.warning("Could not bump ctag of %s (status %s)", calendar_id, response.status)
            return None
        return props.ctag

    def create_calendar(
        self,
        display_name: str,
        *,
        color: str = "",
        timezone: str = "",
        description: str = "",
        method: str = "",
        calscale: str = "",
        initial_event: EventInput | None = None,
    ) -> CreatedCalendar:
        if not display_name.strip():
            raise ValueError("display_name is required")
        index = self.ensure_index()
        calendar_id = str(uuid.uuid4())
        props = CalendarProps(
            id=calendar_id,
            display_name=display_name.strip(),
            color=color,
            timezone=timezone,
            description=description,
            method=method or "PUBLISH",
            calscale=calscale or "GREGORIAN",
            ctag="v1",
            read_only=False,
            owner=self.owner,
        )
        document = self._empty_document(props)
        if initial_event is not None:
            block = encode_event(initial_event, new_uid(self.codec_config.uid_domain), now=self._clock())
            document = append_block(document, block)
        etag = fingerprint(document)

        written = [
            self._write_json(self.layout.props(calendar_id), props.to_dict()),
            self.store.put(self.layout.document(calendar_id), document, ICS_CONTENT_TYPE),
            self.store.put(self.layout.etag(calendar_id), etag, TEXT_CONTENT_TYPE),
        ]
        if not all(response.ok for response in written):
            statuses = "/".join(str(response.status) for response in written)
            raise StoreError(f"Failed to create calendar ({statuses})")
        self._store_snapshot(calendar_id, document, etag)

        entry = IndexEntry(
            id=calendar_id,
            href=self.layout.collection(calendar_id),
            display_name=props.display_name,
            color=props.color,
            read_only=props.read_only,
        )
        updated = CalendarIndex(calendars=[entry, *index.calendars])
        put = self._write_json(self.layout.index(), updated.to_dict())
        if not put.ok:
            raise StoreError(f"Failed to update index.json (status {put.status})", put.status)
        logger.info("Created calendar %s (%s)", calendar_id, props.display_name)
        return CreatedCalendar(props=props, document=document, etag=etag)

    def update_props(self, calendar_id: str, updates: dict[str, Any]) -> CalendarProps:
        current = self.get_props(calendar_id)
        if current is None:
            raise CalendarNotFoundError(f"Calendar not found: {calendar_id}")
        changes = {
            key: str(value)
            for key, value in updates.items()
            if key in PROPS_UPDATABLE_FIELDS and value is not None
        }
        updated = dataclasses.replace(current, **changes)
        put = self._write_json(self.layout.props(calendar_id), updated.to_dict())
        if not put.ok:
            raise StoreError(f"Failed to update props.json (status {put.status})", put.status)

        index = self.get_index()
        entry = next((item for item in index.calendars if item.id == calendar_id), None)
        if entry is not None:
            entry.display_name = updated.display_name
            entry.color = updated.color
            index_put = self._write_json(self.layout.index(), index.to_dict())
            if not index_put.ok:
                raise StoreError(f"Failed to update index.json (status {index_put.status})", index_put.status)

        new_ctag = self._bump_ctag(calendar_id)
        if new_ctag:
            updated.ctag = new_ctag
        return updated

    def delete_calendar(self, calendar_id: str) -> None:
        index = self.get_index()
        remaining = CalendarIndex(calendars=[item for item in index.calendars if item.id != calendar_id])
        put = self._write_json(self.layout.index(), remaining.to_dict())
        if not put.ok:
            raise StoreError(f"Failed to update index.json (status {put.status})", put.status)
        for path in (
            self.layout.document(calendar_id),
            self.layout.etag(calendar_id),
            self.layout.props(calendar_id),
        ):
            response = self.store.delete(path)
            if not response.ok and response.status != 404:
                logger.warning("Could not delete %s (status %s)", path, response.status)
        self.clear_cache(calendar_id)
        logger.info("Deleted calendar %s", calendar_id)

    def clear_cache(self, calendar_id: str) -> None:
        self.cache.delete(self.owner, calendar_id)

    def clear_all_cache(self) -> None:
        self.cache.clear_owner(self.owner)
