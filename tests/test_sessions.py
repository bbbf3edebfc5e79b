"""Tests for the session scheduler - single active session, rotation and ticks."""
import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select

from octorank.core.errors import NoActiveSessionError
from octorank.models import LeaderboardSession
from octorank.services.period_clock import SESSION_TYPES, as_utc, session_bounds, session_key
from octorank.services.sessions import SESSION_CONFIGS, SessionScheduler, pick_survivor


async def _insert_session(session_factory, session_type, now, *, active=True, created_at=None):
    bounds = session_bounds(session_type, now)
    async with session_factory() as db, db.begin():
        row = LeaderboardSession(
            session_type=session_type,
            session_key=session_key(session_type, now),
            start_date=bounds.start,
            end_date=bounds.end,
            is_active=active,
            update_interval_minutes=SESSION_CONFIGS[session_type],
            created_at=created_at or now,
            updated_at=created_at or now,
        )
        db.add(row)
    return row


async def _active(session_factory, session_type):
    async with session_factory() as db:
        result = await db.execute(
            select(LeaderboardSession).where(
                LeaderboardSession.session_type == session_type,
                LeaderboardSession.is_active.is_(True),
            )
        )
        return list(result.scalars().all())


class TestPickSurvivor:
    def test_prefers_expected_key(self):
        now = datetime(2024, 10, 10, tzinfo=timezone.utc)
        expected = SimpleNamespace(id=1, session_key="daily-2024-10-10", created_at=now - timedelta(hours=1))
        newer = SimpleNamespace(id=2, session_key="daily-2024-10-09", created_at=now)
        assert pick_survivor([newer, expected], "daily-2024-10-10") is expected

    def test_falls_back_to_newest(self):
        now = datetime(2024, 10, 10, tzinfo=timezone.utc)
        old = SimpleNamespace(id=1, session_key="daily-2024-10-08", created_at=now - timedelta(days=2))
        new = SimpleNamespace(id=2, session_key="daily-2024-10-09", created_at=now - timedelta(days=1))
        assert pick_survivor([old, new], "daily-2024-10-10") is new


class TestEnsureActiveSession:
    async def test_creates_current_session(self, scheduler, clock):
        session = await scheduler.ensure_active_session("daily")
        assert session.session_key == "daily-2024-10-10"
        assert session.is_active
        assert session.update_interval_minutes == 5
        assert as_utc(session.next_update_at) == clock() + timedelta(minutes=5)

    async def test_idempotent(self, scheduler, session_factory):
        first = await scheduler.ensure_active_session("weekly")
        second = await scheduler.ensure_active_session("weekly")
        assert first.id == second.id
        assert len(await _active(session_factory, "weekly")) == 1

    async def test_replaces_outdated_session(self, scheduler, session_factory, clock):
        await _insert_session(session_factory, "daily", clock() - timedelta(days=1))

        session = await scheduler.ensure_active_session("daily")

        active = await _active(session_factory, "daily")
        assert [s.session_key for s in active] == ["daily-2024-10-10"]
        assert session.session_key == "daily-2024-10-10"

    async def test_repairs_duplicate_active_sessions(self, scheduler, session_factory, clock):
        """A stale active row left behind by a racing writer is deactivated."""
        await _insert_session(session_factory, "monthly", clock())
        await _insert_session(session_factory, "monthly", clock() - timedelta(days=40))

        session = await scheduler.ensure_active_session("monthly")

        active = await _active(session_factory, "monthly")
        assert len(active) == 1
        assert active[0].id == session.id
        assert session.session_key == "monthly-2024-10"

    async def test_reactivates_existing_row_for_key(self, scheduler, session_factory, clock):
        row = await _insert_session(session_factory, "yearly", clock(), active=False)

        session = await scheduler.ensure_active_session("yearly")

        assert session.id == row.id
        assert session.is_active

    async def test_single_active_per_type_after_many_calls(self, scheduler, session_factory, clock):
        for _ in range(3):
            for session_type in SESSION_TYPES:
                await scheduler.ensure_active_session(session_type)
            clock.advance(hours=13)
        for session_type in SESSION_TYPES:
            active = await _active(session_factory, session_type)
            assert len(active) == 1
            assert active[0].session_key == session_key(session_type, clock())


    async def test_replacing_outdated_session_drops_its_entries(self, scheduler, ranker, store, make_user, clock):
        await make_user("u1", "alice")
        old = await scheduler.ensure_active_session("daily")
        await ranker.upsert_entry("u1", old, commits=4, score=40)

        clock.advance(days=1)
        await scheduler.ensure_active_session("daily")

        assert await store.get_entries(old.id) == []


class TestConcurrentEnsure:
    """Concurrent callers on separate connections still leave one active session."""

    async def test_single_active_after_concurrent_calls(self, file_runtime):
        scheduler = file_runtime.scheduler
        sessions = await asyncio.gather(*(scheduler.ensure_active_session("daily") for _ in range(5)))

        active = await file_runtime.store.get_active_sessions("daily")
        assert [s.session_key for s in active] == ["daily-2024-10-10"]
        assert {s.id for s in sessions} == {active[0].id}

    async def test_all_types_concurrently(self, file_runtime):
        scheduler = file_runtime.scheduler
        await asyncio.gather(*(
            scheduler.ensure_active_session(session_type)
            for session_type in SESSION_TYPES
            for _ in range(3)
        ))
        for session_type in SESSION_TYPES:
            assert len(await file_runtime.store.get_active_sessions(session_type)) == 1


class TestRequireActiveSession:
    async def test_returns_active(self, scheduler):
        created = await scheduler.ensure_active_session("monthly")
        assert (await scheduler.require_active_session("monthly")).id == created.id

    async def test_missing_raises(self, scheduler):
        with pytest.raises(NoActiveSessionError):
            await scheduler.require_active_session("overall")


class TestRepairSessionInvariants:
    async def test_noop_with_single_session(self, scheduler, store):
        await scheduler.ensure_active_session("daily")
        store_spy = AsyncMock(wraps=store.deactivate_sessions)
        scheduler.store.deactivate_sessions = store_spy
        await scheduler.repair_session_invariants("daily")
        store_spy.assert_not_called()

    async def test_keeps_newest_when_no_key_matches(self, scheduler, session_factory, clock):
        await _insert_session(session_factory, "daily", clock() - timedelta(days=3), created_at=clock() - timedelta(days=3))
        newest = await _insert_session(
            session_factory, "daily", clock() - timedelta(days=1), created_at=clock() - timedelta(days=1)
        )

        survivor = await scheduler.repair_session_invariants("daily")

        assert survivor.id == newest.id
        assert [s.id for s in await _active(session_factory, "daily")] == [newest.id]


class TestRefreshSession:
    async def test_syncs_fresh_snapshots(self, scheduler, store, make_user, make_snapshot, clock):
        await make_user("u1", "alice")
        await make_user("u2", "bob")
        await store.upsert_github_stats("u1", make_snapshot(points=100, daily_contributions=3))
        await store.upsert_github_stats("u2", make_snapshot(points=50, daily_contributions=7))
        session = await scheduler.ensure_active_session("daily")

        assert await scheduler.refresh_session("daily") is True

        entries = await store.get_entries(session.id)
        assert [(e.user_id, e.rank) for e in entries] == [("u2", 1), ("u1", 2)]
        refreshed = await store.get_session(session.id)
        assert refreshed.last_update_at is not None
        assert refreshed.next_update_at is not None

    async def test_skips_snapshots_fetched_before_window(self, scheduler, store, make_user, make_snapshot, clock):
        await make_user("u1", "alice")
        await make_user("u2", "bob")
        await store.upsert_github_stats("u1", make_snapshot(daily_contributions=3))
        await store.upsert_github_stats(
            "u2", make_snapshot(daily_contributions=9, last_fetched_at=clock() - timedelta(days=2))
        )
        session = await scheduler.ensure_active_session("daily")

        await scheduler.refresh_session("daily")

        assert [e.user_id for e in await store.get_entries(session.id)] == ["u1"]

    async def test_rotates_expired_session(self, scheduler, store, ranker, make_user, clock):
        await make_user("u1", "alice")
        old = await scheduler.ensure_active_session("daily")
        await ranker.upsert_entry("u1", old, commits=4, score=40)

        clock.advance(days=1)
        assert await scheduler.refresh_session("daily") is True

        current = await store.get_active_session("daily")
        assert current.session_key == "daily-2024-10-11"
        assert not (await store.get_session(old.id)).is_active
        assert await store.get_entries(old.id) == []
        assert await store.get_entries(current.id) == []

    async def test_rotation_does_not_import_stale_snapshots(
        self, scheduler, store, make_user, make_snapshot, clock
    ):
        await make_user("u1", "alice")
        await store.upsert_github_stats("u1", make_snapshot(daily_contributions=5))
        await scheduler.ensure_active_session("daily")

        clock.advance(days=1)
        await scheduler.refresh_session("daily")
        await scheduler.refresh_session("daily")

        current = await store.get_active_session("daily")
        assert await store.get_entries(current.id) == []

    async def test_errors_are_swallowed(self, store, ranker, clock):
        failing = AsyncMock(side_effect=RuntimeError("db down"))
        store.get_active_session = failing
        scheduler = SessionScheduler(store, ranker, clock=clock)
        assert await scheduler.refresh_session("daily") is False

    async def test_trigger_all(self, scheduler):
        results = await scheduler.trigger_all_sessions_update()
        assert results == {session_type: True for session_type in SESSION_TYPES}


class TestLifecycle:
    async def test_start_and_stop(self, scheduler, session_factory):
        await scheduler.start()
        try:
            assert scheduler.is_running
            assert set(scheduler.state.tasks) == set(SESSION_TYPES)
            for session_type in SESSION_TYPES:
                assert len(await _active(session_factory, session_type)) == 1
        finally:
            await scheduler.stop()
        assert not scheduler.is_running
        assert scheduler.state.tasks == {}

    async def test_start_twice_is_harmless(self, scheduler):
        await scheduler.start()
        tasks = dict(scheduler.state.tasks)
        await scheduler.start()
        assert scheduler.state.tasks == tasks
        await scheduler.stop()

    async def test_status(self, scheduler):
        await scheduler.ensure_active_session("weekly")
        status = await scheduler.get_status()
        assert status["is_running"] is False
        assert status["sessions"]["weekly"]["session_key"] == "weekly-2024-W41"
        assert status["sessions"]["daily"] is None

    async def test_next_delay_shrinks_near_period_end(self, scheduler, clock):
        await scheduler.ensure_active_session("weekly")
        assert scheduler._next_delay("weekly") == SESSION_CONFIGS["weekly"] * 60

        clock.set(datetime(2024, 10, 12, 23, 0, tzinfo=timezone.utc))
        delay = scheduler._next_delay("weekly")
        assert 3600 <= delay <= 3602

    async def test_timer_tick_refreshes(self, scheduler, monkeypatch):
        scheduler.state.is_running = True
        calls = []

        async def fake_refresh(session_type):
            calls.append(session_type)
            scheduler.state.is_running = False
            return True

        monkeypatch.setattr(scheduler, "_next_delay", lambda session_type: 0)
        monkeypatch.setattr(scheduler, "refresh_session", fake_refresh)
        await asyncio.wait_for(scheduler._timer_loop("daily"), timeout=1)
        assert calls == ["daily"]

    async def test_failed_ticks_back_off(self, scheduler, clock):
        await scheduler.ensure_active_session("daily")
        # Period end already passed: without backoff this would be the one second grace
        clock.advance(days=2)
        assert scheduler._next_delay("daily") == 1.0

        scheduler.state.failures["daily"] = 1
        assert scheduler._next_delay("daily") == 30.0
        scheduler.state.failures["daily"] = 3
        assert scheduler._next_delay("daily") == 120.0
        scheduler.state.failures["daily"] = 10
        assert scheduler._next_delay("daily") == SESSION_CONFIGS["daily"] * 60

    async def test_timer_counts_failures_and_resets(self, scheduler, monkeypatch):
        scheduler.state.is_running = True
        outcomes = iter([False, False, True])
        seen = []

        async def flaky_refresh(session_type):
            result = next(outcomes)
            seen.append(scheduler.state.failures.get(session_type, 0))
            if len(seen) == 3:
                scheduler.state.is_running = False
            return result

        monkeypatch.setattr(scheduler, "refresh_session", flaky_refresh)
        with patch("octorank.services.sessions.asyncio.sleep", new=AsyncMock()):
            await scheduler._timer_loop("daily")

        assert seen == [0, 1, 2]
        assert "daily" not in scheduler.state.failures
