from __future__ import annotations

import threading
from contextlib import nullcontext
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from flask import Flask, has_app_context

from markdrop.errors import (
    DeliveryError,
    QueueStoreError,
    TransientDeliveryError,
    ValidationError,
)
from markdrop.models import ensure_utc, utcnow
from markdrop.services.bookmarks import (
    BookmarkPayload,
    RemoteBookmarkService,
    RetryResult,
    SubmitIntent,
)
from markdrop.services.events import EventNotifier
from markdrop.services.queue_store import QueueStore

# Delay after the Nth failed retry; the last entry repeats forever.
BACKOFF_SCHEDULE_SECONDS = (10, 30, 120, 600, 3600)

OUTCOME_SENT = "sent"
OUTCOME_FAILED = "failed"
# Delivered or failed, but the queue row was gone or could not be written.
OUTCOME_UNRECORDED = "unrecorded"


def backoff_seconds(attempt: int) -> int:
    index = max(attempt, 1) - 1
    return BACKOFF_SCHEDULE_SECONDS[min(index, len(BACKOFF_SCHEDULE_SECONDS) - 1)]


def retry_delay_seconds(attempt: int, retry_after: int | None = None) -> int:
    return max(backoff_seconds(attempt), retry_after or 0)


@dataclass
class _DueItem:
    item_id: int
    attempt_count: int
    payload: BookmarkPayload | None
    payload_error: str | None = None


def deliver(service: RemoteBookmarkService, payload: BookmarkPayload) -> None:
    if payload.intent == SubmitIntent.UPDATE:
        service.update(payload)
    else:
        service.create(payload)


class RetryScheduler:
    # Claiming due items happens under one lock; sends happen outside it.
    def __init__(
        self,
        app: Flask,
        store: QueueStore,
        service: RemoteBookmarkService,
        notifier: EventNotifier,
        clock: Callable[[], datetime] = utcnow,
        batch_limit: int | None = None,
    ):
        self.app = app
        self.store = store
        self.service = service
        self.notifier = notifier
        self.clock = clock
        self.batch_limit = batch_limit or None
        self._claim_lock = threading.Lock()
        self._in_flight: set[int] = set()

    @property
    def in_flight(self) -> set[int]:
        with self._claim_lock:
            return set(self._in_flight)

    def _context(self):
        if has_app_context():
            return nullcontext()
        return self.app.app_context()

    def retry_now(self) -> RetryResult:
        with self._context():
            result = self.process_due_items()
            result.remaining = self.store.stats().pending
        return result

    def run_pass(self) -> None:
        with self._context():
            try:
                result = self.process_due_items()
            except QueueStoreError:
                self.app.logger.exception("Retry pass could not read the queue")
                return
        if result.attempted_ids:
            self.app.logger.info(
                "Retry pass finished: %s sent, %s failed", result.sent, result.failed
            )

    def process_due_items(self, limit: int | None = None) -> RetryResult:
        result = RetryResult()
        targets = self._claim_due_items(limit or self.batch_limit)
        try:
            for target in targets:
                result.attempted_ids.append(target.item_id)
                outcome = self._attempt(target)
                if outcome == OUTCOME_SENT:
                    result.sent += 1
                elif outcome == OUTCOME_FAILED:
                    result.failed += 1
        finally:
            self._release([target.item_id for target in targets])
        return result

    def _claim_due_items(self, limit: int | None) -> list[_DueItem]:
        now = self.clock()
        with self._claim_lock:
            rows = self.store.due_items(now=now, exclude=self._in_flight, limit=limit)
            targets = []
            for row in rows:
                try:
                    payload, payload_error = row.bookmark, None
                except ValidationError as exc:
                    payload, payload_error = None, str(exc)
                except (TypeError, ValueError) as exc:
                    payload, payload_error = None, f"unreadable payload: {exc}"
                targets.append(
                    _DueItem(
                        item_id=row.id,
                        attempt_count=row.attempt_count,
                        payload=payload,
                        payload_error=payload_error,
                    )
                )
                self._in_flight.add(row.id)
        return targets

    def _release(self, item_ids: list[int]) -> None:
        with self._claim_lock:
            self._in_flight.difference_update(item_ids)

    def _attempt(self, target: _DueItem) -> str:
        if target.payload is None:
            return self._record_failure(
                target, target.payload_error or "unreadable payload"
            )

        try:
            deliver(self.service, target.payload)
        except TransientDeliveryError as exc:
            return self._record_failure(target, str(exc), retry_after=exc.retry_after)
        except DeliveryError as exc:
            return self._record_failure(target, str(exc))
        except Exception as exc:
            self.app.logger.exception(
                "Unexpected error delivering queue item %s", target.item_id
            )
            return self._record_failure(target, str(exc) or exc.__class__.__name__)

        try:
            removed = self.store.remove(target.item_id)
        except QueueStoreError:
            # Delivered but still queued; the next pass sends it again.
            self.app.logger.exception(
                "Delivered queue item %s but could not remove it", target.item_id
            )
            return OUTCOME_UNRECORDED
        if not removed:
            self.app.logger.info(
                "Delivered queue item %s, already removed from the queue",
                target.item_id,
            )
            return OUTCOME_UNRECORDED
        self.app.logger.info(
            "Delivered queued bookmark %s (%s) after %s retries",
            target.item_id,
            target.payload.url,
            target.attempt_count,
        )
        self.notifier.item_sent(target.item_id)
        return OUTCOME_SENT

    def _record_failure(
        self, target: _DueItem, error: str, retry_after: int | None = None
    ) -> str:
        attempts = target.attempt_count + 1
        next_attempt_at = ensure_utc(self.clock()) + timedelta(
            seconds=retry_delay_seconds(attempts, retry_after)
        )
        try:
            updated = self.store.update(
                target.item_id, attempts, next_attempt_at, error
            )
        except QueueStoreError:
            self.app.logger.exception(
                "Could not record failed retry for queue item %s", target.item_id
            )
            return OUTCOME_UNRECORDED
        if not updated:
            self.app.logger.info(
                "Retry for queue item %s failed after it left the queue: %s",
                target.item_id,
                error,
            )
            return OUTCOME_UNRECORDED
        self.app.logger.warning(
            "Retry %s for queue item %s failed: %s; next attempt at %s",
            attempts,
            target.item_id,
            error,
            next_attempt_at.isoformat(),
        )
        self.notifier.item_failed(target.item_id)
        return OUTCOME_FAILED
