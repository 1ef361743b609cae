"""Tests for event subscription, payloads and delivery."""

import asyncio
import logging
import weakref
from types import MappingProxyType

import pytest
from pydantic import ValidationError

from conftest import drain
from timed_map import EventType, TimedMap
from timed_map.events.bus import EventBus
from timed_map.events.constants import DELIMITER, EVENT_TYPES
from timed_map.exceptions import InvalidEventTypeError, StoreClosedError


@pytest.fixture
def tm(clock):
    timed_map = TimedMap(1000)
    yield timed_map
    if timed_map._driver is not None:
        timed_map.close()


def _fill(tm):
    tm.put("test0", "first test value")
    tm.put("test2", "create a test2 entry")


# =========================================================================
# Administration
# =========================================================================


class TestSubscription:
    """Tests for on/once/off/off_by_id."""

    @pytest.mark.asyncio
    async def test_on_returns_typed_sequential_ids(self, tm):
        first = tm.on(EventType.PUT, print)
        second = tm.on("REMOVED", print)
        assert first == f"PUT{DELIMITER}1"
        assert second == f"REMOVED{DELIMITER}2"

    @pytest.mark.asyncio
    async def test_invalid_event_type_raises(self, tm):
        with pytest.raises(InvalidEventTypeError) as exc_info:
            tm.on("EXPIRED", print)
        err = exc_info.value
        assert isinstance(err, TypeError)
        assert err.error_type == "invalid_event_type"
        for name in EVENT_TYPES:
            assert name in str(err)

    @pytest.mark.asyncio
    async def test_once_invalid_event_type_raises(self, tm):
        with pytest.raises(InvalidEventTypeError):
            tm.once("NOPE", print)

    @pytest.mark.asyncio
    async def test_once_fires_a_single_time(self, tm, recorder):
        _fill(tm)
        tm.once(EventType.CLEARED, recorder)
        tm.clear()
        await drain()
        assert recorder.count == 1

        _fill(tm)
        tm.clear()
        await drain()
        assert recorder.count == 1

    @pytest.mark.asyncio
    async def test_once_cannot_double_fire_before_dispatch(self, tm, recorder):
        _fill(tm)
        tm.once(EventType.CLEARED, recorder)
        tm.clear()
        _fill(tm)
        tm.clear()
        await drain()
        assert recorder.count == 1

    @pytest.mark.asyncio
    async def test_once_is_cancelable_before_first_use(self, tm, recorder):
        _fill(tm)
        tm.once(EventType.CLEARED, recorder)
        tm.off(EventType.CLEARED, recorder)
        tm.clear()
        await drain()
        assert recorder.count == 0

    @pytest.mark.asyncio
    async def test_on_persists_across_emissions(self, tm, recorder):
        tm.on(EventType.CLEARED, recorder)
        for _ in range(2):
            _fill(tm)
            tm.clear()
        await drain()
        assert recorder.count == 2

    @pytest.mark.asyncio
    async def test_off_by_listener_reference(self, tm, recorder):
        tm.on(EventType.PUT, recorder)
        tm.off(EventType.PUT, recorder)
        tm.put("a", 1)
        await drain()
        assert recorder.count == 0

    @pytest.mark.asyncio
    async def test_off_removes_only_first_match(self, tm, recorder):
        tm.on(EventType.PUT, recorder)
        tm.on(EventType.PUT, recorder)
        tm.off(EventType.PUT, recorder)
        tm.put("a", 1)
        await drain()
        assert recorder.count == 1

    @pytest.mark.asyncio
    async def test_off_by_id(self, tm, recorder):
        event_id = tm.on(EventType.PUT, recorder)
        tm.off_by_id(event_id)
        tm.put("a", 1)
        await drain()
        assert recorder.count == 0

    @pytest.mark.asyncio
    async def test_off_unknown_is_a_no_op(self, tm):
        tm.off("NOT_A_TYPE", print)
        tm.off(EventType.PUT, print)
        tm.off_by_id("garbage")
        tm.off_by_id(f"PUT{DELIMITER}999")

    @pytest.mark.asyncio
    async def test_attributes_are_echoed(self, tm, recorder):
        attributes = {"message": "Mic check 1-2-1-2"}
        _fill(tm)
        tm.once(EventType.CLEARED, recorder, attributes)
        tm.clear()
        await drain()
        assert recorder.events[0].attributes == attributes

    @pytest.mark.asyncio
    async def test_attributes_are_copied_per_listener(self, tm):
        attributes = {"tags": ["a"]}
        seen = []

        def mutating(info):
            info.attributes["tags"].append("mutated")
            seen.append(info.attributes)

        def observing(info):
            seen.append(info.attributes)

        tm.on(EventType.PUT, mutating, attributes)
        tm.on(EventType.PUT, observing, attributes)
        tm.put("a", 1)
        await drain()
        assert seen[0] == {"tags": ["a", "mutated"]}
        assert seen[1] == {"tags": ["a"]}
        assert attributes == {"tags": ["a"]}


# =========================================================================
# Delivery
# =========================================================================


class TestDeferredDelivery:
    """Tests for emit() scheduling."""

    @pytest.mark.asyncio
    async def test_listener_runs_after_current_work(self, tm, recorder):
        tm.on(EventType.PUT, recorder)
        tm.put("a", 1)
        assert recorder.count == 0
        await drain()
        assert recorder.count == 1

    @pytest.mark.asyncio
    async def test_listeners_run_in_registration_order(self, tm):
        order = []
        tm.on(EventType.PUT, lambda info: order.append("first"))
        tm.on(EventType.PUT, lambda info: order.append("second"))
        tm.on(EventType.PUT, lambda info: order.append("third"))
        tm.put("a", 1)
        await drain()
        assert order == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_emissions_dispatch_in_emit_order(self, tm):
        order = []
        tm.on(EventType.PUT, lambda info: order.append(info.data.current.key))
        tm.put("a", 1)
        tm.put("b", 2)
        await drain()
        assert order == ["a", "b"]

    def test_emit_without_listeners_needs_no_loop(self):
        bus = EventBus()
        bus.emit(EventType.PUT, None, None)

    @pytest.mark.asyncio
    async def test_stale_reference_is_logged_and_batch_continues(
        self, tm, recorder, caplog
    ):
        class Widget:
            label = "gone"

        widget = Widget()
        proxy = weakref.proxy(widget)
        del widget

        def stale(info):
            return proxy.label

        tm.on(EventType.PUT, stale)
        tm.on(EventType.PUT, recorder)
        with caplog.at_level(logging.WARNING, logger="timed_map.events.bus"):
            tm.put("a", 1)
            await drain()
        assert recorder.count == 1
        assert any("Issues communicating event ID PUT@@@1" in r.getMessage() for r in caplog.records)

    @pytest.mark.asyncio
    async def test_other_failures_reach_loop_exception_handler(self, tm, recorder):
        loop = asyncio.get_running_loop()
        contexts = []
        loop.set_exception_handler(lambda _loop, context: contexts.append(context))

        def explode(info):
            raise ValueError("listener failure")

        try:
            tm.on(EventType.PUT, explode)
            tm.on(EventType.PUT, recorder)
            tm.put("a", 1)
            await drain()
        finally:
            loop.set_exception_handler(None)

        assert recorder.count == 1
        assert len(contexts) == 1
        assert isinstance(contexts[0]["exception"], ValueError)
        assert contexts[0]["listener_id"] == "PUT@@@1"


class TestImmediateDelivery:
    """Tests for emit_now()."""

    def test_runs_inline_in_order(self, recorder):
        bus = EventBus()
        order = []
        bus.on(EventType.CLOSING, lambda info: order.append(1))
        bus.on(EventType.CLOSING, lambda info: order.append(2))
        bus.emit_now(EventType.CLOSING)
        assert order == [1, 2]

    def test_once_is_retired(self, recorder):
        bus = EventBus()
        bus.once(EventType.CLOSING, recorder)
        bus.emit_now(EventType.CLOSING)
        bus.emit_now(EventType.CLOSING)
        assert recorder.count == 1
        assert bus.listener_count(EventType.CLOSING) == 0

    def test_failures_propagate(self):
        bus = EventBus()

        def explode(info):
            raise ReferenceError("weakly-referenced object no longer exists")

        bus.on(EventType.CLOSING, explode)
        with pytest.raises(ReferenceError):
            bus.emit_now(EventType.CLOSING)

    def test_closed_bus_rejects_calls(self):
        bus = EventBus()
        bus.close()
        with pytest.raises(StoreClosedError):
            bus.on(EventType.PUT, print)
        with pytest.raises(StoreClosedError):
            bus.emit(EventType.PUT, None, None)


# =========================================================================
# Payloads
# =========================================================================


class TestPayloads:
    """Tests for the per-type event data."""

    @pytest.mark.asyncio
    async def test_common_fields(self, tm, recorder, clock):
        event_id = tm.on(EventType.PUT, recorder)
        tm.put("a", 1)
        await drain()
        info = recorder.events[0]
        assert info.id == event_id
        assert info.type == EventType.PUT
        assert info.timestamp == clock.now_ms
        assert int(info.date.timestamp() * 1000) == clock.now_ms
        assert info.attributes == {}

    @pytest.mark.asyncio
    async def test_auto_renewed(self, tm, recorder, clock):
        tm.put("a", 1)
        created_at = clock.now_ms
        tm.on(EventType.AUTO_RENEWED, recorder)
        clock.advance(250)
        tm.get("a")
        clock.advance(250)
        tm.get_entry("a")
        await drain()
        first, second = recorder.events
        assert first.data.key == "a"
        assert first.data.previously_created_at == created_at
        assert first.data.created_at == created_at + 250
        assert second.data.previously_created_at == created_at + 250
        assert second.data.created_at == created_at + 500

    @pytest.mark.asyncio
    async def test_peak_emits_nothing(self, tm, recorder):
        tm.put("a", 1)
        tm.on(EventType.AUTO_RENEWED, recorder)
        tm.peak("a")
        await drain()
        assert recorder.count == 0

    @pytest.mark.asyncio
    async def test_put_new_key(self, tm, recorder):
        tm.on(EventType.PUT, recorder)
        tm.put("a", "x", 300)
        await drain()
        data = recorder.events[0].data
        assert data.current.key == "a"
        assert data.current.value == "x"
        assert data.current.ttl == 300
        assert data.previous is None

    @pytest.mark.asyncio
    async def test_put_existing_key(self, tm, recorder, clock):
        tm.put("a", "old")
        clock.advance(5)
        tm.on(EventType.PUT, recorder)
        returned = tm.put("a", "new")
        await drain()
        data = recorder.events[0].data
        assert data.previous.value == "old"
        assert data.previous.created_at == returned.created_at
        assert data.current.value == "new"
        assert data.current.created_at == clock.now_ms

    @pytest.mark.asyncio
    async def test_removed(self, tm, recorder):
        tm.put("a", 1)
        tm.on(EventType.REMOVED, recorder)
        tm.remove("a")
        await drain()
        assert recorder.events[0].data.removed.key == "a"

    @pytest.mark.asyncio
    async def test_removed_expired_entry(self, tm, recorder, clock):
        tm.put("a", 1)
        tm.on(EventType.REMOVED, recorder)
        clock.advance(1000)
        assert tm.has("a") is False
        await drain()
        assert recorder.count == 1
        assert recorder.events[0].data.removed is None

    @pytest.mark.asyncio
    async def test_cleared(self, tm, recorder):
        _fill(tm)
        tm.on(EventType.CLEARED, recorder)
        tm.clear()
        await drain()
        removed = recorder.events[0].data.removed
        assert [e.key for e in removed] == ["test0", "test2"]

    @pytest.mark.asyncio
    async def test_lazy_prune(self, tm, recorder, clock):
        tm.put("a", 1)
        tm.put("b", 2, 5000)
        tm.on(EventType.PRUNED, recorder)
        clock.advance(1000)
        assert tm.keys == ["b"]
        await drain()
        assert [e.key for e in recorder.events[0].data.removed] == ["a"]

    @pytest.mark.asyncio
    async def test_prune_with_nothing_removed_emits_nothing(self, tm, recorder):
        tm.put("a", 1)
        tm.on(EventType.PRUNED, recorder)
        assert tm.size == 1
        await drain()
        assert recorder.count == 0

    @pytest.mark.asyncio
    async def test_data_is_deeply_frozen(self, tm, recorder):
        tm.put("a", {"nested": {"items": [1, 2]}})
        tm.on(EventType.CLEARED, recorder)
        tm.clear()
        await drain()
        info = recorder.events[0]
        entry = info.data.removed[0]
        assert isinstance(entry.value, MappingProxyType)
        assert entry.value["nested"]["items"] == (1, 2)
        with pytest.raises(TypeError):
            entry.value["nested"]["extra"] = 1
        with pytest.raises(ValidationError):
            entry.created_at = 0
        with pytest.raises(ValidationError):
            info.data.removed = ()
        with pytest.raises(ValidationError):
            info.id = "other"

    @pytest.mark.asyncio
    async def test_listeners_share_one_data_object(self, tm):
        seen = []
        tm.on(EventType.PUT, lambda info: seen.append(info))
        tm.on(EventType.PUT, lambda info: seen.append(info))
        tm.put("a", 1)
        await drain()
        assert seen[0].data is seen[1].data
        assert seen[0].id != seen[1].id

    @pytest.mark.asyncio
    async def test_custom_objects_are_detached_from_the_store(self, tm):
        class Session:
            def __init__(self):
                self.user = "ada"

        seen = []
        tm.on(EventType.PUT, seen.append)
        tm.on(EventType.PUT, seen.append)
        tm.put("a", Session())
        await drain()
        first, second = (info.data.current.value for info in seen)
        # Not freezable: listeners in the batch share one instance,
        # but it is a copy of the stored value.
        assert first is second
        first.user = "mallory"
        assert tm.peak("a").user == "ada"


class TestScheduledPrune:
    """PRUNED emitted by the background sweep."""

    @pytest.mark.asyncio
    async def test_sweep_emits_pruned(self, recorder):
        prunable = TimedMap(50)
        prunable.put("test0", "first test value", 10_000)
        prunable.put("test2", "create a test2 entry")
        prunable.on(EventType.PRUNED, recorder)
        await asyncio.sleep(0.2)
        prunable.close()
        assert recorder.count == 1
        removed = recorder.events[0].data.removed
        assert len(removed) == 1
        assert removed[0].key == "test2"
        assert removed[0].value == "create a test2 entry"
        assert removed[0].ttl is None
