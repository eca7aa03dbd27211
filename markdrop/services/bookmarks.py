from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from dateutil import parser as dt_parser

from markdrop.errors import ValidationError
from markdrop.services.common import looks_like_url, normalize_url, parse_tags

TITLE_MAX_LENGTH = 255
NOTES_MAX_LENGTH = 65536


class SubmitIntent(str, enum.Enum):
    CREATE = "create"
    UPDATE = "update"

    @classmethod
    def parse(cls, value, default: "SubmitIntent") -> "SubmitIntent":
        if value is None or value == "":
            return default
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValidationError(
                "intent", "Intent must be 'create' or 'update'."
            ) from None


def _to_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class BookmarkPayload:
    url: str
    title: str
    notes: str = ""
    tags: tuple[str, ...] = ()
    private: bool = False
    read_later: bool = False
    intent: SubmitIntent = SubmitIntent.CREATE

    @classmethod
    def from_dict(
        cls, data: dict, default_intent: SubmitIntent = SubmitIntent.CREATE
    ) -> "BookmarkPayload":
        if not isinstance(data, dict):
            raise ValidationError("payload", "Bookmark payload must be an object.")

        for name in ("url", "title", "notes"):
            if data.get(name) is not None and not isinstance(data[name], str):
                raise ValidationError(name, f"{name.capitalize()} must be a string")
        raw_tags = data.get("tags")
        if raw_tags is not None and not isinstance(raw_tags, (str, list, tuple)):
            raise ValidationError("tags", "Tags must be a string or a list")

        raw_url = (data.get("url") or "").strip()
        if not raw_url:
            raise ValidationError("url", "URL is required")
        if not looks_like_url(raw_url):
            raise ValidationError("url", "Enter a valid URL")
        url = normalize_url(raw_url)
        if not url:
            raise ValidationError("url", "Enter a valid URL")

        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title", "Title is required")
        if len(title) > TITLE_MAX_LENGTH:
            raise ValidationError(
                "title", f"Title must be at most {TITLE_MAX_LENGTH} characters"
            )

        notes = data.get("notes") or ""
        if len(notes) > NOTES_MAX_LENGTH:
            raise ValidationError(
                "notes", f"Notes must be at most {NOTES_MAX_LENGTH} characters"
            )

        return cls(
            url=url,
            title=title,
            notes=notes,
            tags=tuple(parse_tags(raw_tags)),
            private=_to_bool(data.get("private")),
            read_later=_to_bool(data.get("read_later", data.get("readLater"))),
            intent=SubmitIntent.parse(data.get("intent"), default_intent),
        )

    def as_dict(self) -> dict:
        return {
            "url": self.url,
            "title": self.title,
            "notes": self.notes,
            "tags": list(self.tags),
            "private": self.private,
            "read_later": self.read_later,
            "intent": self.intent.value,
        }


@dataclass(frozen=True)
class ExistingBookmark:
    url: str
    title: str = ""
    notes: str = ""
    tags: tuple[str, ...] = ()
    private: bool = False
    read_later: bool = False
    time: str = ""

    @property
    def saved_at(self) -> datetime | None:
        if not self.time:
            return None
        try:
            return dt_parser.isoparse(self.time)
        except (ValueError, OverflowError):
            return None

    def as_dict(self) -> dict:
        saved_at = self.saved_at
        return {
            "url": self.url,
            "title": self.title,
            "notes": self.notes,
            "tags": list(self.tags),
            "private": self.private,
            "read_later": self.read_later,
            "time": self.time,
            "saved_at": saved_at.isoformat() if saved_at else None,
        }


@dataclass(frozen=True)
class DuplicateCheckResult:
    exists: bool
    bookmark: ExistingBookmark | None = None

    def as_dict(self) -> dict:
        return {
            "exists": self.exists,
            "bookmark": self.bookmark.as_dict() if self.bookmark else None,
        }


@dataclass(frozen=True)
class TagSuggestions:
    popular: tuple[str, ...] = ()
    recommended: tuple[str, ...] = ()

    def as_dict(self) -> dict:
        return {"popular": list(self.popular), "recommended": list(self.recommended)}


@dataclass(frozen=True)
class SubmitResult:
    status: str
    message: str
    queued: bool
    queue_id: int | None = None

    def as_dict(self) -> dict:
        return {
            "status": self.status,
            "message": self.message,
            "queued": self.queued,
            "queue_id": self.queue_id,
        }


@dataclass
class QueueStats:
    pending: int = 0
    failed: int = 0

    def as_dict(self) -> dict:
        return {"pending": self.pending, "failed": self.failed}


@dataclass
class RetryResult:
    sent: int = 0
    remaining: int = 0
    failed: int = 0
    attempted_ids: list[int] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"sent": self.sent, "remaining": self.remaining, "failed": self.failed}


class RemoteBookmarkService(Protocol):
    def check_duplicate(self, url: str) -> DuplicateCheckResult: ...

    def fetch_tag_suggestions(self, url: str) -> TagSuggestions: ...

    def fetch_title(self, url: str) -> str | None: ...

    def create(self, payload: BookmarkPayload) -> None: ...

    def update(self, payload: BookmarkPayload) -> None: ...
