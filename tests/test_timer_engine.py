"""Unit tests for the timer engine (state machine, recovery, loop)."""

import pytest

from conftest import FakeClock, local_ms
from studywatch.clock import MS_PER_MINUTE
from studywatch.data.repository import Repository
from studywatch.errors import InvalidTransition, StorageUnavailable
from studywatch.services.ledger import all_time
from studywatch.services.timer_engine import TimerEngine, TimerState


class FailingRepository(Repository):
    """Repository whose chosen write methods fail like an unavailable store."""

    def __init__(self, conn, fail_on=()):
        super().__init__(conn)
        self.fail_on = set(fail_on)

    def _maybe_fail(self, name):
        if name in self.fail_on:
            raise StorageUnavailable(f"injected failure in {name}")

    def create_session(self, *args, **kwargs):
        self._maybe_fail("create_session")
        return super().create_session(*args, **kwargs)

    def open_segment(self, *args, **kwargs):
        self._maybe_fail("open_segment")
        return super().open_segment(*args, **kwargs)

    def close_segment(self, *args, **kwargs):
        self._maybe_fail("close_segment")
        return super().close_segment(*args, **kwargs)

    def end_session(self, *args, **kwargs):
        self._maybe_fail("end_session")
        return super().end_session(*args, **kwargs)


@pytest.fixture
def engine(repo, clock):
    eng = TimerEngine(repo, clock=clock)
    eng.recover()
    yield eng
    eng.shutdown()


def ledger_all_time(repo: Repository, clock: FakeClock) -> int:
    """All-time total as recomputed from what the store holds."""
    return all_time(repo.list_segments(), clock.now)


def open_segment_counts(repo: Repository):
    return {s.id: len(repo.get_open_segments(s.id)) for s in repo.list_sessions()}


class TestTransitions:
    def test_start_end_counts_elapsed(self, engine, clock):
        engine.start_session()
        clock.advance(5000)
        engine.end_current_session()
        assert engine.state == TimerState.IDLE
        assert engine.all_time_total == 5000

    def test_topic_pause_resume_flow(self, engine, repo, clock):
        math = repo.create_topic("math")
        engine.start_session()
        engine.set_topic(math.id)            # same instant: zero-length untagged segment
        clock.advance(3000)
        engine.pause_session()
        clock.advance(2000)
        engine.resume_session()
        clock.advance(4000)
        engine.tick()
        assert engine.topic_time == 7000
        assert engine.all_time_total == 7000

        engine.end_current_session()
        assert engine.all_time_total == 7000
        assert engine.topic_time == 0

    def test_pause_excludes_paused_time(self, engine, clock):
        engine.start_session()
        clock.advance(1000)
        engine.pause_session()
        clock.advance(60_000)
        engine.tick()
        assert engine.all_time_total == 1000

    def test_resume_keeps_tags(self, engine, repo, clock):
        topic = repo.create_topic("Physics")
        sub = repo.create_subtopic(topic.id, "Optics")
        engine.start_session()
        engine.set_topic(topic.id)
        engine.set_subtopic(sub.id)
        clock.advance(1000)
        engine.pause_session()
        engine.resume_session()

        open_seg = repo.get_segment(engine.open_segment_id)
        assert open_seg.topic_id == topic.id
        assert open_seg.subtopic_id == sub.id

    def test_set_topic_clears_subtopic(self, engine, repo):
        topic = repo.create_topic("Physics")
        engine.start_session()
        engine.set_subtopic("some-sub")
        engine.set_topic(topic.id)
        assert engine.current_subtopic_id is None
        assert repo.get_segment(engine.open_segment_id).subtopic_id is None

    def test_set_topic_while_paused_only_changes_tags(self, engine, repo, clock):
        engine.start_session()
        clock.advance(1000)
        engine.pause_session()
        segments_before = len(repo.list_segments())
        engine.set_topic("math")
        assert len(repo.list_segments()) == segments_before
        engine.resume_session()
        assert repo.get_segment(engine.open_segment_id).topic_id == "math"

    def test_start_is_untagged(self, engine, repo):
        engine.set_topic("math")
        engine.start_session()
        assert engine.current_topic_id is None
        assert repo.get_segment(engine.open_segment_id).topic_id is None

    def test_subtopic_time(self, engine, clock):
        engine.start_session()
        engine.set_topic("math")
        clock.advance(1000)
        engine.set_subtopic("algebra")
        clock.advance(2000)
        engine.set_subtopic("geometry")
        clock.advance(500)
        engine.set_subtopic("algebra")
        clock.advance(1500)
        engine.tick()
        assert engine.topic_time == 5000
        assert engine.subtopic_time == 3500

    def test_end_from_paused(self, engine, repo, clock):
        engine.start_session()
        sid = engine.session_id
        clock.advance(2000)
        engine.pause_session()
        clock.advance(2000)
        engine.end_current_session()
        assert engine.state == TimerState.IDLE
        assert repo.get_session(sid).end_ts == clock.now

    def test_history_version_increments(self, engine, clock):
        versions = [engine.history_version]
        engine.start_session()
        versions.append(engine.history_version)
        engine.pause_session()
        versions.append(engine.history_version)
        engine.resume_session()
        versions.append(engine.history_version)
        engine.end_current_session()
        versions.append(engine.history_version)
        assert versions == sorted(set(versions))


class TestResumeWithContext:
    def test_from_idle_starts_tagged_session(self, engine, repo):
        engine.resume_with_context("math", "algebra")
        assert engine.state == TimerState.RUNNING
        seg = repo.get_segment(engine.open_segment_id)
        assert (seg.topic_id, seg.subtopic_id) == ("math", "algebra")

    def test_from_paused_opens_with_new_tags(self, engine, repo, clock):
        engine.start_session()
        clock.advance(1000)
        engine.pause_session()
        engine.resume_with_context("art", None)
        assert engine.state == TimerState.RUNNING
        assert repo.get_segment(engine.open_segment_id).topic_id == "art"
        assert len(repo.get_open_segments(engine.session_id)) == 1

    def test_from_running_retags(self, engine, repo, clock):
        engine.start_session()
        clock.advance(1000)
        engine.resume_with_context("art", "drawing")
        assert len(repo.get_open_segments(engine.session_id)) == 1
        assert engine.current_subtopic_id == "drawing"


class TestInvalidTransitions:
    def test_cannot_start_twice(self, engine):
        engine.start_session()
        with pytest.raises(InvalidTransition, match="already active"):
            engine.start_session()

    def test_cannot_pause_when_idle(self, engine):
        with pytest.raises(InvalidTransition, match="expected 'running'"):
            engine.pause_session()

    def test_cannot_resume_when_running(self, engine):
        engine.start_session()
        with pytest.raises(InvalidTransition):
            engine.resume_session()

    def test_cannot_end_when_idle(self, engine):
        with pytest.raises(InvalidTransition):
            engine.end_current_session()


class TestOpenSegmentInvariant:
    def test_at_most_one_open_segment_after_any_sequence(self, engine, repo, clock):
        actions = [
            engine.start_session,
            lambda: engine.set_topic("a"),
            engine.pause_session,
            lambda: engine.set_topic("b"),
            engine.resume_session,
            lambda: engine.set_subtopic("x"),
            lambda: engine.resume_with_context("c", None),
            engine.pause_session,
            lambda: engine.resume_with_context("a", "y"),
            engine.end_current_session,
            lambda: engine.resume_with_context(None, None),
            engine.pause_session,
            engine.end_current_session,
        ]
        for action in actions:
            clock.advance(700)
            action()
            counts = open_segment_counts(repo)
            assert all(c <= 1 for c in counts.values())
            expected_open = 1 if engine.state == TimerState.RUNNING else 0
            current = counts.get(engine.session_id, 0) if engine.session_id else 0
            assert current == expected_open
            assert sum(counts.values()) == expected_open


class TestRecovery:
    def test_running_session_resumes_with_background_time(self, repo):
        t0 = local_ms(2026, 1, 14, 9, 0)
        session = repo.create_session(t0)
        repo.open_segment(session.id, "math", "alg", t0)

        clock = FakeClock(t0 + 45 * MS_PER_MINUTE)
        engine = TimerEngine(repo, clock=clock)
        assert engine.recover() == TimerState.RUNNING
        assert engine.session_id == session.id
        assert engine.current_topic_id == "math"
        assert engine.current_subtopic_id == "alg"
        assert engine.all_time_total == 45 * MS_PER_MINUTE
        assert engine.topic_time == 45 * MS_PER_MINUTE
        assert engine.ticker.is_active
        engine.shutdown()

    def test_paused_session_restores_last_tags(self, repo, clock):
        session = repo.create_session(0)
        first = repo.open_segment(session.id, "math", None, 0)
        repo.close_segment(first.id, 1000)
        second = repo.open_segment(session.id, "art", "paint", 1000)
        repo.close_segment(second.id, 3000)

        engine = TimerEngine(repo, clock=clock)
        assert engine.recover() == TimerState.PAUSED
        assert engine.current_topic_id == "art"
        assert engine.current_subtopic_id == "paint"
        assert not engine.ticker.is_active

        engine.resume_session()
        assert repo.get_segment(engine.open_segment_id).topic_id == "art"

    def test_no_unclosed_session_is_idle(self, repo, clock):
        engine = TimerEngine(repo, clock=clock)
        assert engine.recover() == TimerState.IDLE

    def test_recovery_is_idempotent(self, repo, conn, clock):
        session = repo.create_session(clock.now - 1000)
        repo.open_segment(session.id, "math", None, clock.now - 1000)

        engine = TimerEngine(repo, clock=clock)
        engine.recover()
        first = engine.snapshot
        changes = conn.total_changes

        engine.recover()
        assert engine.snapshot == first
        assert conn.total_changes == changes
        engine.shutdown()

    def test_duplicate_unclosed_sessions_repaired(self, repo, clock):
        old = repo.create_session(1000)
        old_seg = repo.open_segment(old.id, "a", None, 1000)
        repo.close_segment(old_seg.id, 4000)
        repo.open_segment(old.id, "a", None, 5000)
        new = repo.create_session(8000)
        repo.open_segment(new.id, "b", None, 8000)

        engine = TimerEngine(repo, clock=clock)
        assert engine.recover() == TimerState.RUNNING
        assert engine.session_id == new.id
        assert repo.get_session(old.id).end_ts == 5000
        assert repo.get_open_segments(old.id) == []
        assert [s.id for s in repo.list_unclosed_sessions()] == [new.id]
        engine.shutdown()

    def test_duplicate_open_segments_keep_latest(self, repo, clock):
        session = repo.create_session(1000)
        stale = repo.open_segment(session.id, "a", None, 1000)
        latest = repo.open_segment(session.id, "b", None, 3000)

        engine = TimerEngine(repo, clock=clock)
        engine.recover()
        assert engine.open_segment_id == latest.id
        assert engine.current_topic_id == "b"
        assert repo.get_segment(stale.id).end_ts == 1000
        assert [s.id for s in repo.get_open_segments(session.id)] == [latest.id]
        engine.shutdown()

    def test_unclosed_session_without_segments_is_paused(self, repo, clock):
        repo.create_session(1000)
        engine = TimerEngine(repo, clock=clock)
        assert engine.recover() == TimerState.PAUSED
        assert engine.current_topic_id is None


class TestLoop:
    def test_ticker_follows_state(self, engine):
        assert not engine.ticker.is_active
        engine.start_session()
        assert engine.ticker.is_active
        engine.pause_session()
        assert not engine.ticker.is_active
        engine.resume_session()
        assert engine.ticker.is_active
        engine.end_current_session()
        assert not engine.ticker.is_active

    def test_hidden_time_is_not_lost(self, engine, clock):
        engine.start_session()
        clock.advance(1000)
        engine.set_visible(False)
        assert not engine.ticker.is_active
        clock.advance(10 * MS_PER_MINUTE)
        engine.set_visible(True)
        assert engine.ticker.is_active
        assert engine.all_time_total == 1000 + 10 * MS_PER_MINUTE

    def test_start_while_hidden_does_not_start_ticker(self, engine):
        engine.set_visible(False)
        engine.start_session()
        assert not engine.ticker.is_active
        engine.set_visible(True)
        assert engine.ticker.is_active

    def test_tick_now_pushes_to_listeners(self, engine, clock):
        seen = []
        engine.add_listener(seen.append)
        engine.start_session()
        clock.advance(250)
        engine.ticker.tick_now()
        assert seen[-1].all_time_total == 250
        assert seen[-1].state == TimerState.RUNNING
        engine.remove_listener(seen.append)

    def test_tick_performs_no_io(self, engine, conn, clock):
        engine.start_session()
        conn.close()  # any storage access would now raise
        clock.advance(1000)
        engine.tick()
        assert engine.all_time_total == 1000


class TestStorageFailures:
    @pytest.fixture
    def make_engine(self, conn, clock):
        def factory(fail_on=()):
            repo = FailingRepository(conn)
            eng = TimerEngine(repo, clock=clock)
            eng.recover()
            repo.fail_on = set(fail_on)
            return eng, repo
        return factory

    def test_failed_pause_leaves_engine_running(self, make_engine, clock):
        engine, repo = make_engine()
        engine.start_session()
        clock.advance(1000)
        repo.fail_on = {"close_segment"}
        before = engine.snapshot
        open_id = engine.open_segment_id

        with pytest.raises(StorageUnavailable):
            engine.pause_session()
        assert engine.state == TimerState.RUNNING
        assert engine.open_segment_id == open_id
        assert engine.ticker.is_active
        assert engine.snapshot.history_version == before.history_version
        assert repo.get_segment(open_id).end_ts is None
        engine.shutdown()

    def test_failed_start_stays_idle(self, make_engine):
        engine, repo = make_engine(fail_on={"open_segment"})
        with pytest.raises(StorageUnavailable):
            engine.start_session()
        assert engine.state == TimerState.IDLE
        assert engine.session_id is None
        assert repo.list_unclosed_sessions() == []

    def test_failed_end_after_close_leaves_session_paused(self, make_engine, repo, clock):
        engine, failing = make_engine()
        engine.start_session()
        sid = engine.session_id
        clock.advance(1000)
        failing.fail_on = {"end_session"}
        with pytest.raises(StorageUnavailable):
            engine.end_current_session()
        assert engine.state == TimerState.PAUSED
        assert engine.session_id == sid
        assert engine.open_segment_id is None
        assert not engine.ticker.is_active
        assert repo.get_open_segments(sid) == []

        clock.advance(9000)
        engine.tick()
        assert engine.all_time_total == 1000
        assert engine.all_time_total == ledger_all_time(repo, clock)

        failing.fail_on = set()
        engine.end_current_session()
        assert engine.state == TimerState.IDLE
        assert repo.get_session(sid).end_ts == clock.now
        assert engine.all_time_total == 1000

    def test_failed_retag_after_close_leaves_session_paused(self, make_engine, repo, clock):
        engine, failing = make_engine()
        engine.start_session()
        sid = engine.session_id
        clock.advance(1000)
        failing.fail_on = {"open_segment"}
        version = engine.history_version

        with pytest.raises(StorageUnavailable):
            engine.set_topic("math")
        assert engine.state == TimerState.PAUSED
        assert engine.open_segment_id is None
        assert engine.current_topic_id == "math"
        assert not engine.ticker.is_active
        assert engine.history_version > version
        assert repo.get_open_segments(sid) == []

        clock.advance(9000)
        engine.tick()
        assert engine.all_time_total == 1000
        assert engine.all_time_total == ledger_all_time(repo, clock)

        failing.fail_on = set()
        engine.resume_session()
        assert repo.get_segment(engine.open_segment_id).topic_id == "math"
        clock.advance(500)
        engine.end_current_session()
        assert engine.all_time_total == 1500
        assert engine.all_time_total == ledger_all_time(repo, clock)

    def test_failed_close_on_retag_keeps_running(self, make_engine, repo, clock):
        engine, failing = make_engine()
        engine.start_session()
        open_id = engine.open_segment_id
        failing.fail_on = {"close_segment"}
        with pytest.raises(StorageUnavailable):
            engine.set_topic("math")
        assert engine.state == TimerState.RUNNING
        assert engine.open_segment_id == open_id
        assert engine.current_topic_id is None
        assert repo.get_segment(open_id).end_ts is None

    def test_failed_resume_stays_paused(self, make_engine, clock):
        engine, repo = make_engine()
        engine.start_session()
        clock.advance(1000)
        engine.pause_session()
        repo.fail_on = {"open_segment"}
        with pytest.raises(StorageUnavailable):
            engine.resume_session()
        assert engine.state == TimerState.PAUSED
        assert engine.open_segment_id is None
        assert not engine.ticker.is_active

    def test_recovery_surfaces_storage_errors(self, repo, conn, clock):
        conn.close()
        engine = TimerEngine(repo, clock=clock)
        with pytest.raises(StorageUnavailable):
            engine.recover()
        assert engine.state == TimerState.IDLE
