from __future__ import annotations

from dataclasses import dataclass, field

from flask import Flask, current_app

from markdrop.services.bookmarks import RemoteBookmarkService
from markdrop.services.events import EventNotifier
from markdrop.services.queue_store import QueueStore
from markdrop.services.retry_worker import RetryScheduler
from markdrop.services.submission import SubmissionContext, SubmissionPipeline

EXTENSION_KEY = "markdrop"


@dataclass
class Runtime:
    service: RemoteBookmarkService
    store: QueueStore
    notifier: EventNotifier
    retry_scheduler: RetryScheduler
    pipeline: SubmissionPipeline
    context: SubmissionContext = field(default_factory=SubmissionContext)


def init_runtime(app: Flask, service: RemoteBookmarkService) -> Runtime:
    store = QueueStore()
    notifier = EventNotifier(app.logger)
    runtime = Runtime(
        service=service,
        store=store,
        notifier=notifier,
        retry_scheduler=RetryScheduler(
            app,
            store=store,
            service=service,
            notifier=notifier,
            batch_limit=app.config.get("RETRY_BATCH_LIMIT") or None,
        ),
        pipeline=SubmissionPipeline(
            service,
            store=store,
            logger=app.logger,
            max_workers=int(app.config.get("INSPECT_WORKERS", 3)),
        ),
    )
    app.extensions[EXTENSION_KEY] = runtime
    return runtime


def get_runtime(app: Flask | None = None) -> Runtime:
    return (app or current_app).extensions[EXTENSION_KEY]
