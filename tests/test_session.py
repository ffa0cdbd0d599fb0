import asyncio
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from conftest import make_exercise, make_speaking_exercise
from korean_tutor.db import Base
from korean_tutor.errors import InvalidLevelError, SessionBusyError
from korean_tutor.progress import ProgressRepository
from korean_tutor.session import (
    ComprehensionState,
    PracticeType,
    SessionStore,
    SpeakingState,
    validate_level,
)


class _Clock:
    def __init__(self):
        self.now = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


@pytest.fixture
def repository():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return ProgressRepository(sessionmaker(bind=engine))


def test_get_creates_default_session_once(store):
    session = store.get(42)
    assert session.level is None
    assert session.active_practice_type is PracticeType.NONE
    assert session.stats.total_score == 0
    assert session.reading.state is ComprehensionState.IDLE
    assert session.speaking.state is SpeakingState.IDLE
    assert store.get("42") is session
    assert len(store) == 1


def test_reset_replaces_session(store):
    old = store.get("u1")
    old.level = 4
    old.stats.total_score = 30
    fresh = store.reset("u1")
    assert fresh is not old
    assert fresh.level is None
    assert fresh.stats.total_score == 0
    assert store.get("u1") is fresh


def test_begin_requires_exercise(store):
    session = store.get("u1")
    with pytest.raises(ValueError):
        session.reading.begin(None)
    assert session.reading.state is ComprehensionState.IDLE


def test_switch_to_parks_other_modes_but_keeps_exercises(store):
    session = store.get("u1")
    exercise = make_exercise()
    session.switch_to(PracticeType.READING)
    session.reading.begin(exercise)
    session.switch_to(PracticeType.SPEAKING)
    session.speaking.begin(make_speaking_exercise())

    session.switch_to(PracticeType.FREE)

    assert session.active_practice_type is PracticeType.FREE
    assert not session.reading.waiting
    assert not session.speaking.waiting
    assert session.reading.exercise is exercise
    assert session.speaking.exercise is not None


def test_speaking_begin_clears_last_transcript(store):
    session = store.get("u1")
    session.speaking.last_transcript = "old"
    session.speaking.begin(make_speaking_exercise())
    assert session.speaking.last_transcript is None
    assert session.speaking.waiting


@pytest.mark.parametrize("value,expected", [(1, 1), ("6", 6), (" 3 ", 3)])
def test_validate_level_accepts_one_to_six(value, expected):
    assert validate_level(value) == expected


@pytest.mark.parametrize("value", [0, 7, "abc", None, "2.5"])
def test_validate_level_rejects_everything_else(value):
    with pytest.raises(InvalidLevelError):
        validate_level(value)


def test_acquire_rejects_second_event_for_same_user(store):
    async def scenario():
        async with store.acquire("u1"):
            with pytest.raises(SessionBusyError):
                async with store.acquire("u1"):
                    pass
            # Different users never contend
            async with store.acquire("u2") as other:
                assert other.user_id == "u2"
        async with store.acquire("u1") as again:
            return again

    session = asyncio.run(scenario())
    assert session is store.get("u1")


def test_idle_sessions_expire_after_ttl():
    clock = _Clock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    first = store.get("u1")
    first.stats.total_score = 10
    clock.advance(seconds=30)
    assert store.get("u1") is first
    clock.advance(seconds=61)
    assert store.get("u1") is not first


def test_store_evicts_least_recently_active_over_limit():
    clock = _Clock()
    store = SessionStore(max_sessions=2, clock=clock)
    store.get("a")
    clock.advance(seconds=1)
    store.get("b")
    clock.advance(seconds=1)
    store.get("a")
    clock.advance(seconds=1)
    store.get("c")
    assert len(store) == 2
    assert "a" in store
    assert "c" in store
    assert "b" not in store


def test_progress_survives_eviction(repository):
    clock = _Clock()
    store = SessionStore(ttl_seconds=60, progress=repository, clock=clock)
    session = store.get("u1")
    session.level = 3
    session.stats.total_score = 27
    store.save_progress(session)

    clock.advance(seconds=120)
    revived = store.get("u1")

    assert revived is not session
    assert revived.level == 3
    assert revived.stats.total_score == 27
    assert revived.active_practice_type is PracticeType.NONE


def test_reset_clears_persisted_progress(repository):
    store = SessionStore(progress=repository)
    session = store.get("u1")
    session.stats.total_score = 50
    store.save_progress(session)

    store.reset("u1")

    assert repository.load("u1") is None
    assert store.get("u1").stats.total_score == 0


def test_save_progress_ignores_replaced_session(repository):
    store = SessionStore(progress=repository)
    old = store.get("u1")
    store.reset("u1")
    old.stats.total_score = 99
    store.save_progress(old)
    assert repository.load("u1") is None


def test_snapshot_is_plain_data(store):
    session = store.get("u1")
    session.switch_to(PracticeType.LISTENING)
    session.listening.begin(make_exercise())
    snap = session.snapshot()
    assert snap["active_practice_type"] == "listening"
    assert snap["listening"] == {"state": "waiting_for_answers", "has_exercise": True}


def test_expired_session_drops_its_lock():
    clock = _Clock()
    store = SessionStore(ttl_seconds=60, clock=clock)

    async def touch():
        async with store.acquire("u1"):
            pass

    asyncio.run(touch())
    assert "u1" in store._locks

    clock.advance(seconds=120)
    store.get("u1")

    assert "u1" not in store._locks


def test_acquire_after_expiry_still_serialises_events():
    clock = _Clock()
    store = SessionStore(ttl_seconds=60, clock=clock)
    store.get("u1")
    clock.advance(seconds=120)

    async def scenario():
        async with store.acquire("u1") as session:
            with pytest.raises(SessionBusyError):
                async with store.acquire("u1"):
                    pass
            return session

    assert asyncio.run(scenario()) is store.get("u1")
