"""Live-update fanout: per-user topics relayed to every open tab/device.

Each user has one topic, ``user_{user_id}``.  The ingestion gateway
publishes an envelope to it from a transaction's after-commit hook, and
``quiz_progress.api.live`` relays the topic to that user's WebSockets.

Envelope::

    {"type": "progress_updated", "userId": "u1", "questionSetId": "s1",
     "stats": {...}, "timestamp": "2024-05-01T12:00:00+00:00", "source": "update"}

Transports:
  - In-process broker (no REDIS_URL): subscribers live in this process.
    Delivery is ``loop.call_soon_threadsafe(queue.put_nowait, ...)`` on the
    subscriber's own loop, so publish never waits on a slow consumer.
  - Redis pub/sub (REDIS_URL set): one PUBLISH per event; every API
    instance holding a socket for that user receives it.

Publishing is fire-and-forget.  A failed publish is logged and counted,
never raised: the write it describes is already committed.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import asdict
from datetime import UTC, datetime
from typing import Any, Protocol

from pydantic.alias_generators import to_camel

from quiz_progress.core.metrics import FANOUT_PUBLISHED
from quiz_progress.db.redis import redis_pool
from quiz_progress.models.progress import ProgressStats

logger = logging.getLogger(__name__)

PROGRESS_UPDATED = "progress_updated"
DETAILED_PROGRESS_CREATED = "detailed_progress_created"
BEACON_SYNC = "beacon_sync"
QUIZ_SUBMITTED = "quiz_submitted"
PROGRESS_DELETED = "progress_deleted"
PROGRESS_RESET = "progress_reset"


def user_topic(user_id: str) -> str:
    return f"user_{user_id}"


def stats_payload(stats: ProgressStats) -> dict[str, Any]:
    payload = {to_camel(k): v for k, v in asdict(stats).items()}
    if stats.last_activity is not None:
        payload["lastActivity"] = stats.last_activity.isoformat()
    return payload


def build_envelope(
    event_type: str,
    *,
    user_id: str,
    question_set_id: str | None,
    source: str,
    stats: ProgressStats | None = None,
    now: datetime | None = None,
    **extra: Any,
) -> dict[str, Any]:
    envelope: dict[str, Any] = {
        "type": event_type,
        "userId": user_id,
        "questionSetId": question_set_id,
        "timestamp": (now or datetime.now(UTC)).isoformat(),
        "source": source,
    }
    if stats is not None:
        envelope["stats"] = stats_payload(stats)
    envelope.update({to_camel(k): v for k, v in extra.items() if v is not None})
    return envelope


class Subscription(Protocol):
    async def get(self) -> dict[str, Any]:
        """Wait for the next envelope on this topic."""
        ...


class LiveUpdateBroker(Protocol):
    async def publish(self, topic: str, envelope: dict[str, Any]) -> None: ...

    def subscribe(self, topic: str) -> AbstractAsyncContextManager[Subscription]: ...


# ---------------------------------------------------------------------------
# In-process transport
# ---------------------------------------------------------------------------


class _QueueSubscription:
    def __init__(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue()

    def deliver(self, envelope: dict[str, Any]) -> None:
        # Publisher may be on another loop/thread.
        self._loop.call_soon_threadsafe(self._queue.put_nowait, envelope)

    async def get(self) -> dict[str, Any]:
        return await self._queue.get()


class InMemoryLiveBroker:
    def __init__(self) -> None:
        self._subscribers: dict[str, list[_QueueSubscription]] = defaultdict(list)

    def clear(self) -> None:
        self._subscribers.clear()

    def subscriber_count(self, topic: str) -> int:
        return len(self._subscribers.get(topic, []))

    async def publish(self, topic: str, envelope: dict[str, Any]) -> None:
        for sub in list(self._subscribers.get(topic, [])):
            try:
                sub.deliver(envelope)
            except RuntimeError:
                # Subscriber's loop already closed.
                logger.warning("Dropping dead subscriber on %s", topic)
                self._discard(topic, sub)

    def _discard(self, topic: str, sub: _QueueSubscription) -> None:
        subs = self._subscribers.get(topic)
        if subs and sub in subs:
            subs.remove(sub)
            if not subs:
                del self._subscribers[topic]

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[_QueueSubscription]:
        sub = _QueueSubscription()
        self._subscribers[topic].append(sub)
        try:
            yield sub
        finally:
            self._discard(topic, sub)


# ---------------------------------------------------------------------------
# Redis transport
# ---------------------------------------------------------------------------


class _RedisSubscription:
    _POLL_TIMEOUT = 1.0

    def __init__(self, pubsub) -> None:
        self._pubsub = pubsub

    async def get(self) -> dict[str, Any]:
        while True:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True, timeout=self._POLL_TIMEOUT
            )
            if message is None or message.get("type") != "message":
                continue
            try:
                return json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning("Skipping malformed live update: %r", message["data"])


class RedisLiveBroker:
    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def publish(self, topic: str, envelope: dict[str, Any]) -> None:
        await self._redis.publish(topic, json.dumps(envelope))

    @asynccontextmanager
    async def subscribe(self, topic: str) -> AsyncIterator[_RedisSubscription]:
        pubsub = self._redis.pubsub()
        await pubsub.subscribe(topic)
        try:
            yield _RedisSubscription(pubsub)
        finally:
            await pubsub.unsubscribe(topic)
            await pubsub.aclose()


# ---------------------------------------------------------------------------
# Publisher facade used by the ingestion gateway
# ---------------------------------------------------------------------------


class ProgressFanout:
    def __init__(self, broker: LiveUpdateBroker) -> None:
        self._broker = broker

    async def publish(
        self,
        event_type: str,
        *,
        user_id: str,
        question_set_id: str | None,
        source: str,
        stats: ProgressStats | None = None,
        **extra: Any,
    ) -> None:
        envelope = build_envelope(
            event_type,
            user_id=user_id,
            question_set_id=question_set_id,
            source=source,
            stats=stats,
            **extra,
        )
        try:
            await self._broker.publish(user_topic(user_id), envelope)
        except Exception:
            FANOUT_PUBLISHED.labels(result="error").inc()
            logger.exception(
                "Live update publish failed type=%s user=%s", event_type, user_id
            )
            return
        FANOUT_PUBLISHED.labels(result="ok").inc()
        logger.debug("Published %s to %s", event_type, user_topic(user_id))


# ---------------------------------------------------------------------------
# Module-level singletons
# ---------------------------------------------------------------------------

if redis_pool is not None:
    live_broker: LiveUpdateBroker = RedisLiveBroker(redis_pool)
else:
    live_broker = InMemoryLiveBroker()

progress_fanout = ProgressFanout(live_broker)
