from __future__ import annotations

import asyncio
from datetime import UTC, datetime

from prometheus_client import REGISTRY

from quiz_progress.models.progress import ProgressStats
from quiz_progress.services.fanout import (
    InMemoryLiveBroker,
    ProgressFanout,
    build_envelope,
    user_topic,
)

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=UTC)


def _stats() -> ProgressStats:
    return ProgressStats(
        user_id="u1",
        question_set_id="s1",
        total_questions=4,
        completed_questions=1,
        correct_answers=1,
        total_answers=1,
        total_time_spent=5,
        average_time_spent=5.0,
        accuracy=100.0,
        progress_percentage=25.0,
        last_activity=NOW,
    )


def _published(result: str) -> float:
    value = REGISTRY.get_sample_value(
        "progress_fanout_published_total", {"result": result}
    )
    return value if value is not None else 0.0


def test_user_topic() -> None:
    assert user_topic("u1") == "user_u1"


def test_envelope_shape() -> None:
    envelope = build_envelope(
        "progress_updated",
        user_id="u1",
        question_set_id="s1",
        source="update",
        stats=_stats(),
        now=NOW,
        progress_id="p1",
        question_id=None,
    )
    assert envelope["type"] == "progress_updated"
    assert envelope["userId"] == "u1"
    assert envelope["questionSetId"] == "s1"
    assert envelope["timestamp"] == NOW.isoformat()
    assert envelope["source"] == "update"
    assert envelope["progressId"] == "p1"
    assert "questionId" not in envelope
    assert envelope["stats"]["progressPercentage"] == 25.0
    assert envelope["stats"]["lastActivity"] == NOW.isoformat()


def test_envelope_without_stats() -> None:
    envelope = build_envelope("progress_reset", user_id="u1", question_set_id="s1",
                              source="reset", deleted_count=3)
    assert "stats" not in envelope
    assert envelope["deletedCount"] == 3


def test_broker_delivers_only_to_topic_subscribers() -> None:
    broker = InMemoryLiveBroker()

    async def scenario():
        async with broker.subscribe("user_u1") as mine, broker.subscribe("user_u2") as theirs:
            await broker.publish("user_u1", {"n": 1})
            got = await asyncio.wait_for(mine.get(), timeout=1)
            assert theirs._queue.empty()
            return got

    assert asyncio.run(scenario()) == {"n": 1}
    assert broker.subscriber_count("user_u1") == 0


def test_broker_fans_out_to_every_tab() -> None:
    broker = InMemoryLiveBroker()

    async def scenario():
        async with broker.subscribe("user_u1") as a, broker.subscribe("user_u1") as b:
            assert broker.subscriber_count("user_u1") == 2
            await broker.publish("user_u1", {"n": 2})
            return [await asyncio.wait_for(s.get(), timeout=1) for s in (a, b)]

    assert asyncio.run(scenario()) == [{"n": 2}, {"n": 2}]


def test_publish_without_subscribers_is_a_no_op() -> None:
    asyncio.run(InMemoryLiveBroker().publish("user_nobody", {"n": 0}))


def test_fanout_publishes_envelope_on_user_topic() -> None:
    broker = InMemoryLiveBroker()
    publisher = ProgressFanout(broker)
    before = _published("ok")

    async def scenario():
        async with broker.subscribe(user_topic("u1")) as sub:
            await publisher.publish(
                "quiz_submitted", user_id="u1", question_set_id="s1",
                source="quiz", stats=_stats(),
            )
            return await asyncio.wait_for(sub.get(), timeout=1)

    envelope = asyncio.run(scenario())
    assert envelope["type"] == "quiz_submitted"
    assert _published("ok") - before == 1


def test_fanout_swallows_and_counts_broker_failures() -> None:
    class BrokenBroker:
        async def publish(self, topic, envelope):
            raise ConnectionError("redis unreachable")

        def subscribe(self, topic):
            raise NotImplementedError

    publisher = ProgressFanout(BrokenBroker())  # type: ignore[arg-type]
    before = _published("error")
    asyncio.run(
        publisher.publish("progress_updated", user_id="u1", question_set_id="s1",
                          source="update")
    )
    assert _published("error") - before == 1
