from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any

import requests

from calky.errors import StoreError
from calky.models import StoreConfig

logger = logging.getLogger(__name__)

ICS_CONTENT_TYPE = "text/calendar; charset=utf-8"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
JSON_CONTENT_TYPE = "application/json"


@dataclass
class StoreResponse:
    status: int
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class StoreLayout:
    def __init__(self, app_root: str = "/pub/calky") -> None:
        self.app_root = "/" + app_root.strip().strip("/")

    def index(self) -> str:
        return f"{self.app_root}/index.json"

    def collection(self, calendar_id: str) -> str:
        return f"{self.app_root}/cal/{calendar_id}/"

    def props(self, calendar_id: str) -> str:
        return f"{self.collection(calendar_id)}props.json"

    def document(self, calendar_id: str) -> str:
        return f"{self.collection(calendar_id)}calendar.ics"

    def etag(self, calendar_id: str) -> str:
        return f"{self.collection(calendar_id)}etag.txt"


class HttpBlobStore:
    """Path addressed blob store spoken to over HTTP GET/PUT/DELETE."""

    def __init__(self, config: StoreConfig) -> None:
        self.config = config
        self._session = requests.Session()

    def is_configured(self) -> bool:
        return bool(self.config.base_url)

    def _url(self, path: str) -> str:
        if not self.is_configured():
            raise StoreError("Store config is incomplete: base_url required.")
        normalized = path if path.startswith("/") else f"/{path}"
        return f"{self.config.base_url.rstrip('/')}{normalized}"

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.config.token:
            headers["Authorization"] = f"Bearer {self.config.token}"
        headers.update(extra or {})
        return headers

    def _request(self, method: str, path: str, **kwargs: Any) -> StoreResponse:
        url = self._url(path)
        try:
            response = self._session.request(method, url, timeout=self.config.timeout_seconds, **kwargs)
        except requests.RequestException as exc:
            logger.warning("%s %s failed: %s", method, path, exc)
            raise StoreError(f"{method} {path} failed: {type(exc).__name__}: {exc}") from exc
        logger.debug("%s %s -> %s", method, path, response.status_code)
        return StoreResponse(
            status=response.status_code,
            text=response.content.decode("utf-8", errors="replace") if response.ok else "",
        )

    def get(self, path: str) -> StoreResponse:
        # Cache busting keeps intermediaries from serving a stale body.
        return self._request(
            "GET",
            path,
            params={"t": str(int(time.time() * 1000))},
            headers=self._headers({"Cache-Control": "no-cache"}),
        )

    def put(
        self,
        path: str,
        body: str,
        content_type: str,
        if_match: str | None = None,
    ) -> StoreResponse:
        extra = {"Content-Type": content_type}
        if if_match:
            extra["If-Match"] = if_match
        return self._request("PUT", path, data=body.encode("utf-8"), headers=self._headers(extra))

    def delete(self, path: str) -> StoreResponse:
        return self._request("DELETE", path, headers=self._headers())

    def close(self) -> None:
        self._session.close()
