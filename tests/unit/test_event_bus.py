"""Tests for the engine event bus."""

from __future__ import annotations

import json
from pathlib import Path

from agentdeck.events import STATUS_CHANGED, TODOS_CHANGED, DeckEvent, EventBus


class TestEventBus:
    def test_emit_and_history(self) -> None:
        bus = EventBus()
        bus.emit(DeckEvent(event_type=STATUS_CHANGED, agent_id=1, message="hello"))
        assert len(bus.history) == 1
        assert bus.history[0].event_type == STATUS_CHANGED
        assert bus.history[0].message == "hello"

    def test_subscribe_receives_events(self) -> None:
        bus = EventBus()
        received: list[DeckEvent] = []
        bus.subscribe(received.append)
        bus.emit(DeckEvent(event_type=STATUS_CHANGED, agent_id=3))
        assert len(received) == 1
        assert received[0].agent_id == 3

    def test_subscribe_filtered_by_type(self) -> None:
        bus = EventBus()
        received: list[DeckEvent] = []
        bus.subscribe(received.append, event_type=TODOS_CHANGED)
        bus.emit(DeckEvent(event_type=STATUS_CHANGED))
        bus.emit(DeckEvent(event_type=TODOS_CHANGED))
        assert [e.event_type for e in received] == [TODOS_CHANGED]

    def test_unsubscribe(self) -> None:
        bus = EventBus()
        received: list[DeckEvent] = []
        # Store a stable reference, bound methods create new objects each time
        cb = received.append
        bus.subscribe(cb)
        bus.unsubscribe(cb)
        bus.emit(DeckEvent(event_type="test"))
        assert len(received) == 0

    def test_returned_unsubscriber(self) -> None:
        bus = EventBus()
        received: list[DeckEvent] = []
        off = bus.subscribe(received.append)
        off()
        off()
        bus.emit(DeckEvent(event_type="test"))
        assert received == []

    def test_recent(self) -> None:
        bus = EventBus()
        for i in range(10):
            bus.emit(DeckEvent(event_type=f"e{i}"))
        recent = bus.recent(3)
        assert len(recent) == 3
        assert recent[0].event_type == "e7"
        assert bus.recent(0) == []

    def test_history_is_bounded(self) -> None:
        bus = EventBus(history_size=5)
        for i in range(8):
            bus.emit(DeckEvent(event_type=f"e{i}"))
        assert [e.event_type for e in bus.history] == ["e3", "e4", "e5", "e6", "e7"]

    def test_timestamp_auto_set(self) -> None:
        bus = EventBus()
        bus.emit(DeckEvent(event_type="test"))
        assert bus.history[0].timestamp > 0

    def test_subscriber_error_does_not_propagate(self) -> None:
        bus = EventBus()
        received: list[DeckEvent] = []

        def bad_callback(event: DeckEvent) -> None:
            raise RuntimeError("boom")

        bus.subscribe(bad_callback)
        bus.subscribe(received.append)
        # Should not raise
        bus.emit(DeckEvent(event_type="test"))
        assert len(bus.history) == 1
        assert len(received) == 1

    def test_persist_jsonl(self, tmp_path: Path) -> None:
        path = tmp_path / "logs" / "events.jsonl"
        bus = EventBus(persist_path=path)
        bus.emit(DeckEvent(event_type=STATUS_CHANGED, agent_id=2, data={"status": "working"}))
        bus.emit(DeckEvent(event_type=TODOS_CHANGED, agent_id=2))
        lines = path.read_text().splitlines()
        assert len(lines) == 2
        first = json.loads(lines[0])
        assert first["event_type"] == STATUS_CHANGED
        assert first["data"] == {"status": "working"}
