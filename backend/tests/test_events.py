"""Tests for event delivery and cancellation."""

from rlm_orchestration.core.cancellation import CancellationToken
from rlm_orchestration.core.events import EventBus
from rlm_orchestration.types import Execution, RLMEvent, RLMEventType


def make_event(event_type=RLMEventType.ITERATION_START):
    execution = Execution(query="q", context="c", max_iterations=1, max_depth=1)
    return RLMEvent(type=event_type, execution=execution)


class TestEventBus:
    """Test observer registration and delivery."""

    def test_delivery_in_registration_order(self):
        bus = EventBus()
        seen = []
        bus.on(lambda e: seen.append("first"))
        bus.on(lambda e: seen.append("second"))
        bus.emit(make_event())
        assert seen == ["first", "second"]

    def test_duplicate_registration_ignored(self):
        bus = EventBus()
        seen = []
        handler = seen.append
        bus.on(handler)
        bus.on(handler)
        bus.emit(make_event())
        assert len(bus) == 1
        assert len(seen) == 1

    def test_off(self):
        bus = EventBus()
        seen = []
        bus.on(seen.append)
        bus.off(seen.append)
        bus.emit(make_event())
        assert seen == []

    def test_failing_handler_is_isolated(self):
        bus = EventBus()
        seen = []

        def broken(event):
            raise RuntimeError("observer bug")

        bus.on(broken)
        bus.on(seen.append)
        bus.emit(make_event(RLMEventType.ERROR))
        assert [e.type for e in seen] == [RLMEventType.ERROR]


class TestCancellationToken:
    """Test cooperative cancellation."""

    def test_cancel(self):
        token = CancellationToken()
        assert token.cancelled is False
        token.cancel("user request")
        assert token.cancelled is True
        assert token.reason == "user request"

    def test_first_reason_kept(self):
        token = CancellationToken()
        token.cancel("first")
        token.cancel("second")
        assert token.reason == "first"
