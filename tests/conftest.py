"""Shared fixtures and in-memory collaborators for the delivery tests."""

from contextlib import contextmanager
from datetime import datetime, timedelta, timezone

import pytest

from app.models.notification import Notification
from app.services.errors import ChannelUnavailable, ChannelWriteFailed, DeviceNotFound

TOKEN_HEX = "ab" * 32
BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_notification(id, device_id="device-1", minutes=0, **fields):
    return Notification(
        id=id,
        device_id=device_id,
        created_at=BASE_TIME + timedelta(minutes=minutes),
        **fields,
    )


class FakeStore:
    def __init__(self, notifications=()):
        self.notifications = list(notifications)
        self.marked = []
        self.attempts = []

    def insert(self, notification):
        self.notifications.append(notification)

    def list_pending(self):
        pending = [n for n in self.notifications if n.sent_at is None]
        return sorted(pending, key=lambda n: (n.device_id, n.created_at))

    def mark_sent(self, notification, sent_at, error=None):
        if notification.sent_at is not None:
            return
        notification.sent_at = sent_at
        notification.attempts += 1
        notification.last_error = error
        self.marked.append(notification.id)

    def record_attempt(self, notification, error):
        notification.attempts += 1
        notification.last_error = error
        self.attempts.append(notification.id)


class FakeRegistry:
    def __init__(self, tokens=None):
        self.tokens = tokens or {}

    def token_for(self, device_id):
        if device_id not in self.tokens:
            raise DeviceNotFound(device_id)
        return self.tokens[device_id]


class FakeChannel:
    """Records frames; `failures` maps a write index to the error it raises."""

    def __init__(self, failures=None):
        self.frames = []
        self.failures = failures or {}
        self.writes = 0
        self.opened = False
        self.released = False

    def write(self, frame):
        index = self.writes
        self.writes += 1
        if index in self.failures:
            raise self.failures[index]
        self.frames.append(frame)


class FakeChannelProvider:
    def __init__(self, channel=None, unavailable=False):
        self.channel = channel or FakeChannel()
        self.unavailable = unavailable

    @contextmanager
    def __call__(self):
        if self.unavailable:
            raise ChannelUnavailable("cannot connect to gateway")
        self.channel.opened = True
        try:
            yield self.channel
        finally:
            self.channel.released = True


@pytest.fixture
def token():
    return bytes.fromhex(TOKEN_HEX)


@pytest.fixture
def registry(token):
    return FakeRegistry({"device-1": token, "device-2": token})


@pytest.fixture
def broken_pipe():
    return ChannelWriteFailed("Broken pipe", fatal=True)
