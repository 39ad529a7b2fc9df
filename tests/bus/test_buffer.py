"""Tests for the per-session event buffer and outbound channel."""

from agentgate.bus.buffer import EventBuffer
from agentgate.bus.events import AgentEvent
from agentgate.bus.queue import EventChannel
from agentgate.utils.helpers import MonotonicClock, parse_since


def frozen_clock(ms: int = 1_700_000_000_000) -> MonotonicClock:
    return MonotonicClock(now_ms=lambda: ms)


def chat(body: str, message_id: str | None = None) -> AgentEvent:
    return AgentEvent("chat", {"body": body}, dedupe_id=message_id)


def test_push_assigns_strictly_increasing_sequence():
    """Events pushed within the same millisecond still get distinct timestamps."""
    buffer = EventBuffer(clock=frozen_clock())
    first = buffer.push(chat("a"))
    second = buffer.push(chat("b"))

    assert first.sequence < second.sequence
    assert first.timestamp != second.timestamp


def test_drain_removes_returned_events():
    """A second drain with the same cutoff returns nothing."""
    buffer = EventBuffer()
    buffer.push(chat("a"))
    buffer.push(chat("b"))

    drained = buffer.drain_since(0)
    assert [e.payload["body"] for e in drained] == ["a", "b"]
    assert buffer.drain_since(0) == []
    assert len(buffer) == 0


def test_drain_since_keeps_older_events():
    """Events at or before the cutoff stay for a later drain."""
    buffer = EventBuffer()
    first = buffer.push(chat("a"))
    buffer.push(chat("b"))

    drained = buffer.drain_since(first.sequence)
    assert [e.payload["body"] for e in drained] == ["b"]
    assert [e.payload["body"] for e in buffer.drain_since(0)] == ["a"]


def test_event_timestamp_round_trips_as_cutoff():
    """The rendered timestamp of the last event can be passed back as `since`."""
    buffer = EventBuffer()
    first = buffer.push(chat("a"))
    buffer.push(chat("b"))

    cutoff = parse_since(first.to_dict()["timestamp"])
    assert cutoff == first.sequence
    assert [e.payload["body"] for e in buffer.drain_since(cutoff)] == ["b"]


def test_overflow_evicts_oldest():
    buffer = EventBuffer(max_size=3)
    for i in range(5):
        buffer.push(chat(str(i)))

    assert [e.payload["body"] for e in buffer.drain_since(0)] == ["2", "3", "4"]


def test_duplicate_message_ids_are_skipped():
    buffer = EventBuffer()
    assert buffer.push(chat("hi", "m1")) is not None
    assert buffer.push(chat("hi again", "m1")) is None
    assert len(buffer) == 1


def test_channel_without_subscribers_buffers():
    channel = EventChannel()
    channel.publish(AgentEvent("warning", {"message": "x"}))

    assert channel.pending == 1
    assert channel.drain_since(0)[0].kind == "warning"


def test_channel_pushes_to_subscribers_instead_of_buffering():
    channel = EventChannel()
    received: list[AgentEvent] = []
    channel.subscribe(received.append)

    channel.publish(chat("hello", "m1"))
    channel.publish(chat("hello", "m1"))

    assert [e.payload["body"] for e in received] == ["hello"]
    assert received[0].sequence > 0
    assert channel.pending == 0


def test_channel_subscriber_failure_does_not_block_others():
    channel = EventChannel()
    received: list[AgentEvent] = []

    def broken(event: AgentEvent) -> None:
        raise RuntimeError("boom")

    channel.subscribe(broken)
    channel.subscribe(received.append)
    channel.publish(chat("hi"))

    assert len(received) == 1


def test_closed_channel_keeps_buffer_but_drops_new_events():
    """Buffered events survive close so a last poll can still collect them."""
    channel = EventChannel()
    channel.publish(AgentEvent("disconnected", {"reason": "DESPAWNED"}))
    channel.close()
    assert channel.publish(chat("late")) is None

    events = channel.drain_since(0)
    assert [e.kind for e in events] == ["disconnected"]
    assert events[0].is_terminal


def test_unsubscribe_falls_back_to_buffering():
    channel = EventChannel()
    received: list[AgentEvent] = []
    channel.subscribe(received.append)
    channel.unsubscribe(received.append)

    channel.publish(chat("queued"))
    assert received == []
    assert channel.pending == 1
