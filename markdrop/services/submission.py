from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace

from markdrop.errors import DeliveryError, InspectionLookupError, TransientDeliveryError
from markdrop.services.bookmarks import (
    BookmarkPayload,
    DuplicateCheckResult,
    RemoteBookmarkService,
    SubmitIntent,
    SubmitResult,
    TagSuggestions,
)
from markdrop.services.common import looks_like_url, normalize_url
from markdrop.services.queue_store import QueueStore
from markdrop.services.retry_worker import deliver

LOOKUP_DUPLICATE = "duplicate"
LOOKUP_SUGGESTIONS = "suggestions"
LOOKUP_TITLE = "title"

LOOKUP_FAILURE_MESSAGES = {
    LOOKUP_DUPLICATE: "Could not check for duplicates",
    LOOKUP_SUGGESTIONS: "Could not fetch tag suggestions",
    LOOKUP_TITLE: "Could not fetch page title",
}

TITLE_FROM_USER = "user"
TITLE_FROM_REMOTE = "remote"
TITLE_FROM_EXISTING = "existing"


@dataclass(frozen=True)
class BookmarkDraft:
    title: str = ""
    notes: str = ""
    tags: tuple[str, ...] = ()
    private: bool = False
    read_later: bool = False

    def as_dict(self) -> dict:
        return {
            "title": self.title,
            "notes": self.notes,
            "tags": list(self.tags),
            "private": self.private,
            "read_later": self.read_later,
        }


@dataclass(frozen=True)
class InspectionResult:
    generation: int
    stale: bool
    url: str
    duplicate: DuplicateCheckResult | None
    suggestions: TagSuggestions | None
    title: str | None
    intent: SubmitIntent
    draft: BookmarkDraft
    messages: tuple[str, ...] = ()

    def as_dict(self) -> dict:
        return {
            "generation": self.generation,
            "stale": self.stale,
            "url": self.url,
            "duplicate": self.duplicate.as_dict() if self.duplicate else None,
            "suggestions": self.suggestions.as_dict() if self.suggestions else None,
            "title": self.title,
            "intent": self.intent.value,
            "draft": self.draft.as_dict(),
            "messages": list(self.messages),
            "status_message": self.messages[-1] if self.messages else "",
        }


@dataclass
class SubmissionContext:
    # Inspection results only land while their generation is still current.

    generation: int = 0
    url: str = ""
    duplicate: DuplicateCheckResult | None = None
    suggestions: TagSuggestions | None = None
    fetched_title: str | None = None
    intent: SubmitIntent = SubmitIntent.CREATE
    draft: BookmarkDraft = field(default_factory=BookmarkDraft)
    title_source: str | None = None
    messages: list[str] = field(default_factory=list)
    _lock: threading.RLock = field(
        default_factory=threading.RLock, repr=False, compare=False
    )

    @property
    def status_message(self) -> str:
        with self._lock:
            return self.messages[-1] if self.messages else ""

    def set_status(self, message: str) -> None:
        with self._lock:
            self.messages = [message] if message else []

    def set_title(self, title: str) -> None:
        with self._lock:
            clean = (title or "").strip()
            if clean == self.draft.title:
                return
            self.draft = replace(self.draft, title=clean)
            self.title_source = TITLE_FROM_USER if clean else None

    def set_intent(self, intent: SubmitIntent) -> None:
        with self._lock:
            self.intent = intent

    def begin(self, url: str) -> int:
        with self._lock:
            self.generation += 1
            self.url = url
            self._clear_lookups()
            return self.generation

    def clear_inspection(self) -> int:
        with self._lock:
            self.generation += 1
            self.url = ""
            self._clear_lookups()
            return self.generation

    def reset(self) -> None:
        with self._lock:
            self.generation += 1
            self.url = ""
            self._clear_lookups()
            self.draft = BookmarkDraft()
            self.title_source = None

    def apply(self, generation: int, update) -> bool:
        with self._lock:
            if generation != self.generation:
                return False
            update(self)
            return True

    def snapshot(self, generation: int | None = None) -> InspectionResult:
        with self._lock:
            generation = self.generation if generation is None else generation
            return InspectionResult(
                generation=generation,
                stale=generation != self.generation,
                url=self.url,
                duplicate=self.duplicate,
                suggestions=self.suggestions,
                title=self.fetched_title,
                intent=self.intent,
                draft=self.draft,
                messages=tuple(self.messages),
            )

    def _clear_lookups(self) -> None:
        self.duplicate = None
        self.suggestions = None
        self.fetched_title = None
        self.intent = SubmitIntent.CREATE
        self.messages = []
        if self.title_source == TITLE_FROM_EXISTING:
            self.draft = BookmarkDraft()
            self.title_source = None
        elif self.title_source == TITLE_FROM_REMOTE:
            self.draft = replace(self.draft, title="")
            self.title_source = None

    # Result handlers below run with the lock held, via apply().

    def _apply_duplicate(self, result: DuplicateCheckResult) -> None:
        self.duplicate = result
        existing = result.bookmark if result.exists else None
        if existing is None:
            self.intent = SubmitIntent.CREATE
            self._prefill_fetched_title()
            return
        self.draft = BookmarkDraft(
            title=existing.title,
            notes=existing.notes,
            tags=tuple(existing.tags),
            private=existing.private,
            read_later=existing.read_later,
        )
        self.title_source = TITLE_FROM_EXISTING
        self.intent = SubmitIntent.UPDATE

    def _apply_suggestions(self, result: TagSuggestions) -> None:
        self.suggestions = result

    def _apply_title(self, title: str | None) -> None:
        self.fetched_title = (title or "").strip() or None
        self._prefill_fetched_title()

    def _prefill_fetched_title(self) -> None:
        if not self.fetched_title or self.draft.title:
            return
        if self.duplicate is not None and self.duplicate.exists:
            return
        self.draft = replace(self.draft, title=self.fetched_title)
        self.title_source = TITLE_FROM_REMOTE

    def _apply_failure(self, error: InspectionLookupError) -> None:
        prefix = LOOKUP_FAILURE_MESSAGES.get(error.lookup, "Could not inspect URL")
        self.messages.append(f"{prefix}: {error.cause}")
        if error.lookup == LOOKUP_DUPLICATE:
            self._prefill_fetched_title()


class SubmissionPipeline:
    def __init__(
        self,
        service: RemoteBookmarkService,
        store: QueueStore,
        logger,
        max_workers: int = 3,
    ):
        self.service = service
        self.store = store
        self.logger = logger
        self.max_workers = max(1, max_workers)

    def inspect(
        self, url: str, context: SubmissionContext, title: str | None = None
    ) -> InspectionResult:
        if title is not None:
            context.set_title(title)

        raw_url = (url or "").strip()
        if not raw_url or not looks_like_url(raw_url):
            generation = context.clear_inspection()
            return context.snapshot(generation)

        target = normalize_url(raw_url)
        if not target:
            generation = context.clear_inspection()
            return context.snapshot(generation)

        generation = context.begin(target)
        lookups = {
            LOOKUP_DUPLICATE: (
                self.service.check_duplicate,
                SubmissionContext._apply_duplicate,
            ),
            LOOKUP_SUGGESTIONS: (
                self.service.fetch_tag_suggestions,
                SubmissionContext._apply_suggestions,
            ),
            LOOKUP_TITLE: (self.service.fetch_title, SubmissionContext._apply_title),
        }

        with ThreadPoolExecutor(
            max_workers=min(self.max_workers, len(lookups)),
            thread_name_prefix=f"markdrop-inspect-{generation}",
        ) as executor:
            futures = {
                executor.submit(fetch, target): (lookup, handler)
                for lookup, (fetch, handler) in lookups.items()
            }
            for future in as_completed(futures):
                lookup, handler = futures[future]
                try:
                    value = future.result()
                except Exception as exc:
                    error = InspectionLookupError(lookup, exc)
                    self.logger.info("Inspection of %s: %s", target, error)
                    applied = context.apply(
                        generation, lambda ctx, error=error: ctx._apply_failure(error)
                    )
                else:
                    applied = context.apply(
                        generation,
                        lambda ctx, handler=handler, value=value: handler(ctx, value),
                    )
                if not applied:
                    self.logger.debug(
                        "Discarded stale %s result for %s (generation %s)",
                        lookup,
                        target,
                        generation,
                    )

        return context.snapshot(generation)

    def submit(
        self, data: dict, context: SubmissionContext | None = None
    ) -> SubmitResult:
        default_intent = context.intent if context else SubmitIntent.CREATE
        payload = BookmarkPayload.from_dict(data, default_intent=default_intent)

        try:
            deliver(self.service, payload)
        except TransientDeliveryError as exc:
            item_id = self.store.enqueue(payload, error=str(exc))
            self.logger.warning(
                "Queued %s for retry as item %s: %s", payload.url, item_id, exc
            )
            result = SubmitResult(
                status="queued",
                message=f"Pinboard unavailable right now. Queued for retry: {exc}",
                queued=True,
                queue_id=item_id,
            )
        except DeliveryError as exc:
            result = SubmitResult(
                status="rejected",
                message=f"Pinboard rejected bookmark: {exc}",
                queued=False,
            )
        else:
            self.logger.info(
                "Saved %s to Pinboard (%s)", payload.url, payload.intent.value
            )
            result = SubmitResult(
                status="sent", message="Saved to Pinboard", queued=False
            )
            if context is not None:
                context.reset()

        if context is not None:
            context.set_status(result.message)
        return result
