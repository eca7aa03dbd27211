from __future__ import annotations

import threading
import time

import httpx

from markdrop.errors import PermanentDeliveryError, TransientDeliveryError
from markdrop.services.bookmarks import (
    BookmarkPayload,
    DuplicateCheckResult,
    ExistingBookmark,
    TagSuggestions,
)
from markdrop.services.common import parse_tags
from markdrop.services.content import (
    DEFAULT_HEADERS,
    _normalize_error,
    fetch_page_title,
)

PINBOARD_API_BASE = "https://api.pinboard.in/v1"


def _retry_after_seconds(response: httpx.Response) -> int | None:
    raw = (response.headers.get("Retry-After") or "").strip()
    if raw.isdigit():
        return int(raw)
    return None


def _extract_tag_list(value, key: str) -> list[str]:
    # posts/suggest answers either {"popular": [...]} or [{"popular": [...]}, ...]
    if isinstance(value, dict):
        if isinstance(value.get(key), list):
            return [tag for tag in value[key] if isinstance(tag, str)]
        for child in value.values():
            if isinstance(child, dict) and isinstance(child.get(key), list):
                return [tag for tag in child[key] if isinstance(tag, str)]
    if isinstance(value, list):
        for item in value:
            if isinstance(item, dict) and isinstance(item.get(key), list):
                return [tag for tag in item[key] if isinstance(tag, str)]
    return []


class PinboardClient:
    def __init__(
        self,
        token: str,
        base_url: str = PINBOARD_API_BASE,
        timeout: float = 10.0,
        min_interval: float = 3.0,
        content_timeout: float = 10.0,
        content_max_bytes: int = 2_500_000,
        transport: httpx.BaseTransport | None = None,
    ):
        self.token = (token or "").strip()
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.min_interval = min_interval
        self.content_timeout = content_timeout
        self.content_max_bytes = content_max_bytes
        self.transport = transport
        self._rate_lock = threading.Lock()
        self._last_call: float | None = None

    @classmethod
    def from_config(cls, config) -> "PinboardClient":
        return cls(
            token=config.get("PINBOARD_AUTH_TOKEN", ""),
            base_url=config.get("PINBOARD_API_BASE", PINBOARD_API_BASE),
            timeout=float(config.get("PINBOARD_TIMEOUT", 10)),
            min_interval=float(config.get("PINBOARD_MIN_INTERVAL", 3)),
            content_timeout=float(config.get("CONTENT_FETCH_TIMEOUT", 10)),
            content_max_bytes=int(config.get("CONTENT_MAX_BYTES", 2_500_000)),
        )

    @property
    def configured(self) -> bool:
        return ":" in self.token

    def check_duplicate(self, url: str) -> DuplicateCheckResult:
        value = self._get_json("posts/get", {"url": url})
        posts = value.get("posts") if isinstance(value, dict) else None
        if not isinstance(posts, list) or not posts:
            return DuplicateCheckResult(exists=False)

        first = posts[0]
        tags = first.get("tags") or first.get("tag") or ""
        return DuplicateCheckResult(
            exists=True,
            bookmark=ExistingBookmark(
                url=first.get("href") or first.get("url") or url,
                title=first.get("description") or "",
                notes=first.get("extended") or "",
                tags=tuple(parse_tags(tags)),
                private=first.get("shared") == "no",
                read_later=first.get("toread") == "yes",
                time=first.get("time") or "",
            ),
        )

    def fetch_tag_suggestions(self, url: str) -> TagSuggestions:
        value = self._get_json("posts/suggest", {"url": url})
        return TagSuggestions(
            popular=tuple(_extract_tag_list(value, "popular")),
            recommended=tuple(_extract_tag_list(value, "recommended")),
        )

    def fetch_title(self, url: str) -> str | None:
        return fetch_page_title(
            url,
            timeout=self.content_timeout,
            max_bytes=self.content_max_bytes,
            transport=self.transport,
        )

    def create(self, payload: BookmarkPayload) -> None:
        self._add(payload, replace=False)

    def update(self, payload: BookmarkPayload) -> None:
        self._add(payload, replace=True)

    def _add(self, payload: BookmarkPayload, replace: bool) -> None:
        result = self._get_json(
            "posts/add",
            {
                "url": payload.url,
                "description": payload.title,
                "extended": payload.notes,
                "tags": " ".join(payload.tags),
                "replace": "yes" if replace else "no",
                "shared": "no" if payload.private else "yes",
                "toread": "yes" if payload.read_later else "no",
            },
        )
        code = ""
        if isinstance(result, dict):
            code = str(result.get("result_code") or result.get("code") or "")
        if code != "done":
            raise PermanentDeliveryError(code or "unexpected response from Pinboard")

    def _wait_rate_limit(self) -> None:
        with self._rate_lock:
            now = time.monotonic()
            if self._last_call is not None:
                remaining = self.min_interval - (now - self._last_call)
                if remaining > 0:
                    time.sleep(remaining)
            self._last_call = time.monotonic()

    def _get_json(self, path: str, params: dict):
        if not self.configured:
            raise PermanentDeliveryError("Pinboard token is not set")

        self._wait_rate_limit()
        query = {"auth_token": self.token, "format": "json", **params}
        try:
            with httpx.Client(
                timeout=self.timeout,
                headers=DEFAULT_HEADERS,
                transport=self.transport,
            ) as client:
                response = client.get(f"{self.base_url}/{path}", params=query)
        except httpx.TimeoutException as exc:
            raise TransientDeliveryError(
                f"Pinboard timed out: {_normalize_error(exc)}"
            ) from exc
        except httpx.HTTPError as exc:
            raise TransientDeliveryError(
                f"network error: {_normalize_error(exc)}"
            ) from exc

        status_code = response.status_code
        if status_code == 429:
            raise TransientDeliveryError(
                "rate limited (429)", retry_after=_retry_after_seconds(response)
            )
        if status_code in {401, 403}:
            raise PermanentDeliveryError(
                f"authentication failed ({status_code}); check the Pinboard token"
            )
        if status_code >= 500:
            raise TransientDeliveryError(f"Pinboard server error ({status_code})")
        if status_code >= 400:
            raise PermanentDeliveryError(f"Pinboard API error ({status_code})")

        try:
            return response.json()
        except ValueError as exc:
            raise TransientDeliveryError(
                f"invalid API response from {path}"
            ) from exc
