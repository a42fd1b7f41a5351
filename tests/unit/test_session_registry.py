"""
Unit tests for SessionRegistry and SessionMonitor.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from termrelay.config import MonitorConfig
from termrelay.errors import TargetNotFound
from termrelay.session.models import SessionRegistry, SessionState
from termrelay.session.monitor import SessionMonitor


@pytest.fixture
def registry(clock) -> SessionRegistry:
    return SessionRegistry(clock=clock)


class TestSessionRegistry:
    def test_create(self, registry, clock):
        session = registry.create(1, "web-1")
        assert session.state is SessionState.PENDING
        assert session.user_id == 1
        assert session.target_id == "web-1"
        assert session.start_time == clock.now
        assert session.end_time is None
        assert len(registry) == 1

    def test_ids_unique(self, registry):
        assert registry.create(1, "a").id != registry.create(1, "a").id

    def test_get_returns_copy(self, registry):
        session = registry.create(1, "web-1")
        snapshot = registry.get(session.id)
        snapshot.state = SessionState.CLOSED
        assert registry.get(session.id).state is SessionState.PENDING

    def test_get_unknown(self, registry):
        assert registry.get("missing") is None

    def test_lifecycle(self, registry, clock):
        session = registry.create(1, "web-1")
        assert registry.activate(session.id).state is SessionState.ACTIVE
        clock.advance(42)
        closed = registry.close(session.id)
        assert closed.state is SessionState.CLOSED
        assert closed.end_time == clock.now
        assert closed.duration == 42

    def test_closed_is_immutable(self, registry, clock):
        session = registry.create(1, "web-1")
        registry.close(session.id, error=True)
        end_time = registry.get(session.id).end_time

        clock.advance(10)
        registry.close(session.id)
        registry.activate(session.id)
        registry.touch(session.id)

        again = registry.get(session.id)
        assert again.state is SessionState.ERROR
        assert again.end_time == end_time
        assert again.is_final

    def test_touch_updates_heartbeat(self, registry, clock):
        session = registry.create(1, "web-1")
        clock.advance(5)
        assert registry.touch(session.id).last_heartbeat == clock.now

    def test_unknown_session_raises(self, registry):
        with pytest.raises(TargetNotFound):
            registry.close("missing")
        with pytest.raises(TargetNotFound):
            registry.touch("missing")

    def test_list_by_user(self, registry):
        registry.create(1, "a")
        registry.create(2, "a")
        registry.create(1, "b")
        assert len(registry.list()) == 3
        assert {s.target_id for s in registry.list(user_id=1)} == {"a", "b"}

    def test_stale_only_active(self, registry, clock):
        pending = registry.create(1, "a")
        active = registry.activate(registry.create(1, "b").id)
        fresh = registry.activate(registry.create(1, "c").id)
        clock.advance(100)
        registry.touch(fresh.id)

        stale = registry.stale(timeout=60)
        assert [s.id for s in stale] == [active.id]
        assert pending.id not in [s.id for s in stale]

    def test_list_by_state(self, registry, clock):
        registry.create(1, "a")
        clock.advance(1)
        active = registry.activate(registry.create(1, "b").id)
        assert [s.id for s in registry.list(state=SessionState.ACTIVE)] == [active.id]
        assert [s.target_id for s in registry.list()] == ["a", "b"]

    def test_evict_forgets_long_ended_sessions(self, registry, clock):
        old = registry.create(1, "a")
        registry.close(old.id)
        clock.advance(100)
        recent = registry.create(1, "b")
        registry.close(recent.id, error=True)
        live = registry.activate(registry.create(1, "c").id)
        clock.advance(50)

        assert registry.evict(older_than=60) == [old.id]
        assert registry.get(old.id) is None
        assert registry.get(recent.id).state is SessionState.ERROR
        assert registry.get(live.id).state is SessionState.ACTIVE
        assert len(registry) == 2


class TestSessionMonitor:
    @pytest.mark.asyncio
    async def test_closes_stale_sessions(self, registry, clock):
        on_terminate = AsyncMock()
        monitor = SessionMonitor(registry, MonitorConfig(session_timeout=1800), on_terminate)
        stale = registry.activate(registry.create(1, "a").id)
        clock.advance(1801)
        live = registry.activate(registry.create(2, "b").id)

        closed = await monitor.check_now()

        assert closed == [stale.id]
        assert registry.get(stale.id).state is SessionState.CLOSED
        assert registry.get(live.id).state is SessionState.ACTIVE
        on_terminate.assert_awaited_once_with(stale.id)
        assert monitor.status()["terminated_total"] == 1

    @pytest.mark.asyncio
    async def test_nothing_stale(self, registry):
        monitor = SessionMonitor(registry, MonitorConfig())
        registry.activate(registry.create(1, "a").id)
        assert await monitor.check_now() == []

    @pytest.mark.asyncio
    async def test_terminate_failure_does_not_stop_check(self, registry, clock):
        on_terminate = AsyncMock(side_effect=[RuntimeError("boom"), None])
        monitor = SessionMonitor(registry, MonitorConfig(session_timeout=10), on_terminate)
        registry.activate(registry.create(1, "a").id)
        registry.activate(registry.create(1, "b").id)
        clock.advance(11)

        closed = await monitor.check_now()
        assert len(closed) == 2
        assert on_terminate.await_count == 2

    @pytest.mark.asyncio
    async def test_periodic_check(self, registry, clock):
        monitor = SessionMonitor(registry, MonitorConfig(check_interval=0.01, session_timeout=5))
        session = registry.activate(registry.create(1, "a").id)
        clock.advance(6)

        monitor.start()
        assert monitor.running
        await asyncio.sleep(0.05)
        await monitor.stop()

        assert registry.get(session.id).state is SessionState.CLOSED
        assert monitor.running is False

    @pytest.mark.asyncio
    async def test_check_evicts_ended_sessions(self, registry, clock):
        monitor = SessionMonitor(registry, MonitorConfig(session_timeout=60))
        ended = registry.create(1, "a")
        registry.close(ended.id)
        clock.advance(61)
        stale = registry.activate(registry.create(1, "b").id)
        clock.advance(61)

        assert await monitor.check_now() == [stale.id]
        assert registry.get(ended.id) is None
        # Closed just now, so kept for replay lookups until the next timeout.
        assert registry.get(stale.id).state is SessionState.CLOSED
        assert monitor.status()["evicted_total"] == 1
