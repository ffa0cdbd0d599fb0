from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Callable, Dict, Generic, Optional, TypeVar
import asyncio
import logging

from sqlalchemy.exc import SQLAlchemyError

from .errors import InvalidLevelError, SessionBusyError
from .schemas import Exercise, SpeakingExercise

if TYPE_CHECKING:
    from .progress import ProgressRepository

logger = logging.getLogger(__name__)

LEVELS = (1, 2, 3, 4, 5, 6)
DEFAULT_LEVEL = 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def validate_level(value: object) -> int:
    """Accept 1..6 as int or numeric string (callback payloads arrive as text)."""
    try:
        level = int(str(value).strip())
    except (TypeError, ValueError) as exc:
        raise InvalidLevelError(f"level must be one of {list(LEVELS)}") from exc
    if level not in LEVELS:
        raise InvalidLevelError(f"level must be one of {list(LEVELS)}")
    return level


class PracticeType(str, Enum):
    NONE = "none"
    READING = "reading"
    LISTENING = "listening"
    SPEAKING = "speaking"
    FREE = "free"


class ComprehensionState(str, Enum):
    IDLE = "idle"
    WAITING_FOR_ANSWERS = "waiting_for_answers"


class SpeakingState(str, Enum):
    IDLE = "idle"
    WAITING_FOR_VOICE = "waiting_for_voice"


StateT = TypeVar("StateT", ComprehensionState, SpeakingState)
ExerciseT = TypeVar("ExerciseT", Exercise, SpeakingExercise)


class _Slot(Generic[StateT, ExerciseT]):
    """Sub-state of one practice mode.

    The waiting state and the exercise move together: ``begin`` is the only
    way in and it requires a freshly generated exercise. ``finish`` and
    ``park`` return to idle but keep the last exercise for reference.
    """

    _idle: StateT
    _waiting: StateT

    def __init__(self) -> None:
        self._state: StateT = self._idle
        self._exercise: Optional[ExerciseT] = None

    @property
    def state(self) -> StateT:
        return self._state

    @property
    def exercise(self) -> Optional[ExerciseT]:
        return self._exercise

    @property
    def waiting(self) -> bool:
        return self._state is self._waiting

    def begin(self, exercise: ExerciseT) -> None:
        if exercise is None:
            raise ValueError("cannot wait for a submission without an exercise")
        self._exercise = exercise
        self._state = self._waiting

    def finish(self) -> None:
        self._state = self._idle

    def park(self) -> None:
        """Leave the mode without discarding its exercise."""
        self._state = self._idle


class ComprehensionSlot(_Slot[ComprehensionState, Exercise]):
    _idle = ComprehensionState.IDLE
    _waiting = ComprehensionState.WAITING_FOR_ANSWERS


class SpeakingSlot(_Slot[SpeakingState, SpeakingExercise]):
    _idle = SpeakingState.IDLE
    _waiting = SpeakingState.WAITING_FOR_VOICE

    def __init__(self) -> None:
        super().__init__()
        self.last_transcript: Optional[str] = None

    def begin(self, exercise: SpeakingExercise) -> None:
        super().begin(exercise)
        self.last_transcript = None


@dataclass
class SessionStats:
    total_score: int = 0


@dataclass
class Session:
    user_id: str
    level: Optional[int] = None
    active_practice_type: PracticeType = PracticeType.NONE
    stats: SessionStats = field(default_factory=SessionStats)
    reading: ComprehensionSlot = field(default_factory=ComprehensionSlot)
    listening: ComprehensionSlot = field(default_factory=ComprehensionSlot)
    speaking: SpeakingSlot = field(default_factory=SpeakingSlot)
    created_at: datetime = field(default_factory=_utcnow)
    last_active_at: datetime = field(default_factory=_utcnow)

    @property
    def effective_level(self) -> int:
        return self.level if self.level is not None else DEFAULT_LEVEL

    def comprehension_slot(self, practice_type: PracticeType) -> ComprehensionSlot:
        if practice_type is PracticeType.READING:
            return self.reading
        if practice_type is PracticeType.LISTENING:
            return self.listening
        raise ValueError(f"{practice_type.value} has no comprehension slot")

    def switch_to(self, practice_type: PracticeType) -> None:
        """Activate one mode; every other mode drops back to idle."""
        self.active_practice_type = practice_type
        if practice_type is not PracticeType.READING:
            self.reading.park()
        if practice_type is not PracticeType.LISTENING:
            self.listening.park()
        if practice_type is not PracticeType.SPEAKING:
            self.speaking.park()

    def snapshot(self) -> Dict[str, object]:
        return {
            "user_id": self.user_id,
            "level": self.level,
            "active_practice_type": self.active_practice_type.value,
            "total_score": self.stats.total_score,
            "reading": {"state": self.reading.state.value, "has_exercise": self.reading.exercise is not None},
            "listening": {"state": self.listening.state.value, "has_exercise": self.listening.exercise is not None},
            "speaking": {
                "state": self.speaking.state.value,
                "has_exercise": self.speaking.exercise is not None,
                "last_transcript": self.speaking.last_transcript,
            },
        }


class SessionStore:
    """Process-wide keyed store of learner sessions.

    Each user id maps to exactly one ``Session``. ``acquire`` hands out
    exclusive access for one inbound event; a second event for the same user
    while the first is still running is refused with ``SessionBusyError``.
    Idle sessions expire after ``ttl_seconds`` and the store never holds more
    than ``max_sessions`` entries (0 disables either limit).
    """

    def __init__(
        self,
        *,
        ttl_seconds: int = 0,
        max_sessions: int = 0,
        progress: Optional["ProgressRepository"] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._ttl = timedelta(seconds=ttl_seconds) if ttl_seconds > 0 else None
        self._max_sessions = max_sessions
        self._progress = progress
        self._clock = clock
        self._sessions: Dict[str, Session] = {}
        self._locks: Dict[str, asyncio.Lock] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, user_id: object) -> bool:
        return str(user_id) in self._sessions

    def get(self, user_id: str | int) -> Session:
        key = str(user_id)
        session = self._sessions.get(key)
        if session is not None and self._is_expired(session) and not self._is_busy(key):
            logger.info("session_expired")
            self._sessions.pop(key, None)
            self._locks.pop(key, None)
            session = None
        if session is None:
            session = self._new_session(key, seeded=True)
            self._sessions[key] = session
            self._evict_overflow(keep=key)
        session.last_active_at = self._clock()
        return session

    def reset(self, user_id: str | int) -> Session:
        key = str(user_id)
        session = self._new_session(key, seeded=False)
        self._sessions[key] = session
        if self._progress is not None:
            try:
                self._progress.delete(key)
            except SQLAlchemyError:
                logger.exception("progress_delete_failed")
        self._evict_overflow(keep=key)
        return session

    @asynccontextmanager
    async def acquire(self, user_id: str | int) -> AsyncIterator[Session]:
        key = str(user_id)
        if self._is_busy(key):
            raise SessionBusyError("previous message is still being processed")
        # get() may drop the lock of an expired session, so take the lock afterwards
        session = self.get(key)
        lock = self._locks.setdefault(key, asyncio.Lock())
        async with lock:
            yield session

    def save_progress(self, session: Session) -> None:
        if self._progress is None:
            return
        # A reset during an in-flight event orphans the old object
        if self._sessions.get(session.user_id) is not session:
            return
        try:
            self._progress.save(session.user_id, level=session.level, total_score=session.stats.total_score)
        except SQLAlchemyError:
            logger.exception("progress_save_failed")

    def _new_session(self, key: str, *, seeded: bool) -> Session:
        now = self._clock()
        session = Session(user_id=key, created_at=now, last_active_at=now)
        if seeded and self._progress is not None:
            try:
                record = self._progress.load(key)
            except SQLAlchemyError:
                logger.exception("progress_load_failed")
                record = None
            if record is not None:
                session.level = record.level
                session.stats.total_score = max(0, record.total_score)
        return session

    def _is_busy(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def _is_expired(self, session: Session) -> bool:
        if self._ttl is None:
            return False
        return self._clock() - session.last_active_at > self._ttl

    def _evict_overflow(self, *, keep: str) -> None:
        if self._max_sessions <= 0 or len(self._sessions) <= self._max_sessions:
            return
        ordered = sorted(
            (s for s in self._sessions.values() if s.user_id != keep and not self._is_busy(s.user_id)),
            key=lambda s: s.last_active_at,
        )
        while len(self._sessions) > self._max_sessions and ordered:
            victim = ordered.pop(0)
            self._sessions.pop(victim.user_id, None)
            self._locks.pop(victim.user_id, None)
