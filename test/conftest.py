import asyncio
from types import SimpleNamespace

import pytest

from push_relay.config import Settings
from push_relay.schemas import ChangeEvent, ChangeKind, ChatMessage, UserProfile


class FakeWatch:
    def __init__(self):
        self.is_active = True
        self.unsubscribed = False

    def unsubscribe(self):
        self.unsubscribed = True
        self.is_active = False


class FakeFirebaseClient:
    """In-memory stand-in for FirebaseClient that records lookups and sends."""

    def __init__(self, profiles=None, lookup_errors=None, send_error=None, subscribe_failures=0):
        self.profiles = profiles or {}
        self.lookup_errors = lookup_errors or {}
        self.send_error = send_error
        self.subscribe_failures = subscribe_failures
        self.subscribe_attempts = 0
        self.lookups = []
        self.sent = []
        self.collection_paths = []
        self.callbacks = []
        self.watches = []

    def get_user_profile(self, user_id):
        self.lookups.append(user_id)
        if user_id in self.lookup_errors:
            raise self.lookup_errors[user_id]
        data = self.profiles.get(user_id)
        if data is None:
            return None
        return UserProfile(userId=user_id, **data)

    def send_notification(self, token, title, body):
        if self.send_error is not None:
            raise self.send_error
        self.sent.append({"token": token, "title": title, "body": body})
        return f"projects/test/messages/{len(self.sent)}"

    def collection(self, path):
        self.collection_paths.append(path)
        return self

    def on_snapshot(self, callback):
        self.subscribe_attempts += 1
        if self.subscribe_attempts <= self.subscribe_failures:
            raise RuntimeError("listen stream unavailable")
        watch = FakeWatch()
        self.callbacks.append(callback)
        self.watches.append(watch)
        return watch


def make_event(kind=ChangeKind.ADDED, document_id="msg-1", **fields) -> ChangeEvent:
    return ChangeEvent(kind=kind, documentId=document_id, message=ChatMessage(**fields))


def make_document_change(type_name, document_id, data):
    return SimpleNamespace(
        type=SimpleNamespace(name=type_name),
        document=SimpleNamespace(id=document_id, to_dict=lambda: data),
    )


async def wait_until(predicate, timeout=2.0):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


@pytest.fixture
def fast_settings():
    return Settings(
        _env_file=None,
        watch_poll_interval_seconds=0.01,
        resubscribe_initial_backoff_seconds=0,
        resubscribe_max_backoff_seconds=0,
    )
