"""
Optional Redis Stream publishing of reconcile events for dashboards and agents.
Graceful degradation: with no REDIS_URL, or Redis down, publishing is a no-op.
"""
import json as _json
import logging

import redis

from iaf.config import settings
from iaf.models import now

logger = logging.getLogger("iaf-events")

EVENTS_CHANNEL = "iaf:events"
STREAM_MAXLEN = 100

_redis_client = None


def get_redis():
    """Lazy-init Redis client. Returns None if unavailable."""
    global _redis_client
    if _redis_client is not None:
        return _redis_client
    if not settings.REDIS_URL:
        return None
    try:
        _redis_client = redis.Redis.from_url(settings.REDIS_URL, decode_responses=True)
        _redis_client.ping()
        logger.info(f"Redis connected: {settings.REDIS_URL}")
        return _redis_client
    except redis.RedisError as e:
        logger.warning(f"Redis unavailable (non-fatal): {e}")
        _redis_client = None
        return None


def stream_key(kind: str, namespace: str, name: str) -> str:
    return f"{EVENTS_CHANNEL}:{kind}:{namespace}/{name}"


def publish_event(kind: str, namespace: str, name: str, event_type: str, message: str, phase: str = ""):
    """Append to the object's stream and fan out on the global channel."""
    r = get_redis()
    if not r:
        return
    event = {
        "kind": kind,
        "namespace": namespace,
        "name": name,
        "type": event_type,
        "message": message,
        "phase": phase,
        "timestamp": now(),
    }
    try:
        r.xadd(stream_key(kind, namespace, name), event, maxlen=STREAM_MAXLEN)
        r.publish(EVENTS_CHANNEL, _json.dumps(event))
    except redis.RedisError as e:
        logger.debug(f"Redis publish failed (non-fatal): {e}")


def read_events(kind: str, namespace: str, name: str, count: int = 50) -> list[dict]:
    r = get_redis()
    if not r:
        return []
    try:
        return [data for _, data in r.xrange(stream_key(kind, namespace, name), count=count)]
    except redis.RedisError as e:
        logger.debug(f"Redis stream read failed: {e}")
        return []
