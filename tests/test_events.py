import json

import redis

from iaf import events


class FakeRedis:
    def __init__(self, fail=False):
        self.streams = {}
        self.published = []
        self.fail = fail

    def xadd(self, key, fields, maxlen=None):
        if self.fail:
            raise redis.ConnectionError("down")
        self.streams.setdefault(key, []).append((str(len(self.streams.get(key, []))), dict(fields)))

    def publish(self, channel, message):
        self.published.append((channel, message))

    def xrange(self, key, count=None):
        if self.fail:
            raise redis.ConnectionError("down")
        return self.streams.get(key, [])[:count]


def test_publish_without_redis_is_a_noop(monkeypatch):
    monkeypatch.setattr(events, "_redis_client", None)
    monkeypatch.setattr(events, "get_redis", lambda: None)
    events.publish_event("Application", "ns", "myapp", "PHASE_CHANGED", "msg", "Running")
    assert events.read_events("Application", "ns", "myapp") == []


def test_publish_and_read(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(events, "get_redis", lambda: fake)

    events.publish_event("Application", "ns", "myapp", "PHASE_CHANGED", "1 replica(s) available", "Running")

    stored = events.read_events("Application", "ns", "myapp")
    assert stored[0]["phase"] == "Running"
    assert stored[0]["type"] == "PHASE_CHANGED"
    channel, payload = fake.published[0]
    assert channel == events.EVENTS_CHANNEL
    assert json.loads(payload)["name"] == "myapp"


def test_redis_errors_are_not_fatal(monkeypatch):
    monkeypatch.setattr(events, "get_redis", lambda: FakeRedis(fail=True))
    events.publish_event("ManagedService", "ns", "pgdb", "PHASE_CHANGED", "msg")
    assert events.read_events("ManagedService", "ns", "pgdb") == []
