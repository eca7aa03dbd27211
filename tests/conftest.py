from datetime import datetime, timedelta, timezone

import pytest

from markdrop import create_app
from markdrop.config import TestConfig
from markdrop.extensions import db
from markdrop.runtime import get_runtime
from markdrop.services.bookmarks import DuplicateCheckResult, TagSuggestions


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now = self.now + timedelta(seconds=seconds)
        return self.now

    def set(self, value):
        self.now = value
        return self.now


class FakeRemoteService:
    configured = True

    def __init__(self):
        self.duplicates = {}
        self.suggestions = {}
        self.titles = {}
        self.errors = {}
        self.url_errors = {}
        self.sent = []
        self.calls = []
        self.on_send = None

    def fail(self, method, *errors):
        self.errors[method] = list(errors)

    def _raise_if_failing(self, method, url):
        if url in self.url_errors:
            raise self.url_errors[url]
        queued = self.errors.get(method)
        if queued:
            error = queued[0] if len(queued) == 1 else queued.pop(0)
            raise error

    def check_duplicate(self, url):
        self.calls.append(("check_duplicate", url))
        self._raise_if_failing("check_duplicate", url)
        return self.duplicates.get(url, DuplicateCheckResult(exists=False))

    def fetch_tag_suggestions(self, url):
        self.calls.append(("fetch_tag_suggestions", url))
        self._raise_if_failing("fetch_tag_suggestions", url)
        return self.suggestions.get(url, TagSuggestions())

    def fetch_title(self, url):
        self.calls.append(("fetch_title", url))
        self._raise_if_failing("fetch_title", url)
        return self.titles.get(url)

    def create(self, payload):
        self._send("create", payload)

    def update(self, payload):
        self._send("update", payload)

    def _send(self, method, payload):
        self.calls.append((method, payload.url))
        if self.on_send:
            self.on_send(method, payload)
        self._raise_if_failing(method, payload.url)
        self.sent.append((method, payload))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def remote():
    return FakeRemoteService()


@pytest.fixture
def app(remote, clock):
    app = create_app(TestConfig, remote_service=remote)
    with app.app_context():
        db.drop_all()
        db.create_all()
    runtime = get_runtime(app)
    runtime.store.clock = clock
    runtime.retry_scheduler.clock = clock
    yield app
    runtime.notifier.shutdown(wait=False)


@pytest.fixture
def runtime(app):
    return get_runtime(app)


@pytest.fixture
def client(app):
    return app.test_client()
