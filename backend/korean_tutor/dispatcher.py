from __future__ import annotations

import base64
import dataclasses
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional

from pydantic import BaseModel

from .audio import AudioIngestPipeline
from .errors import EmptyTranscriptError, SessionBusyError, TutorError
from .logging_utils import clear_log_context, set_log_context
from .modes import ModeController
from .scoring import progress_report
from .session import PracticeType, Session, SessionStore, validate_level

logger = logging.getLogger(__name__)

EXERCISE_MODES = (PracticeType.READING, PracticeType.LISTENING, PracticeType.SPEAKING)


class OutcomeStatus(str, Enum):
    OK = "ok"
    FAILED = "failed"
    NOT_CONSUMED = "not_consumed"
    BUSY = "busy"
    REMINDER = "reminder"
    NEEDS_LEVEL = "needs_level"


def _jsonable(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump()
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        if hasattr(value, "to_dict"):
            return value.to_dict()
        return {f.name: _jsonable(getattr(value, f.name)) for f in dataclasses.fields(value)}
    if isinstance(value, Mapping):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


@dataclass
class Outcome:
    """What happened to one inbound event, in plain data for the transport layer."""

    status: OutcomeStatus
    event: str
    practice_type: Optional[PracticeType] = None
    result: Any = None
    error: Optional[str] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.OK

    @property
    def consumed(self) -> bool:
        return self.status is not OutcomeStatus.NOT_CONSUMED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "event": self.event,
            "practice_type": self.practice_type.value if self.practice_type else None,
            "result": _jsonable(self.result),
            "error": self.error,
            "message": self.message,
        }


Handler = Callable[[Session], Awaitable[Outcome]]


class Dispatcher:
    """Routes inbound chat events to the active practice mode.

    Every event runs with exclusive access to the user's session. Domain
    failures come back as ``failed`` outcomes; nothing raised by a controller
    or the audio pipeline escapes this class.
    """

    def __init__(
        self,
        store: SessionStore,
        controllers: Mapping[PracticeType, ModeController],
        pipeline: AudioIngestPipeline,
    ) -> None:
        self._store = store
        self._controllers = dict(controllers)
        self._pipeline = pipeline

    @property
    def store(self) -> SessionStore:
        return self._store

    async def _run(self, user_id: str, event: str, handler: Handler) -> Outcome:
        set_log_context(user_id=user_id)
        try:
            async with self._store.acquire(user_id) as session:
                try:
                    return await handler(session)
                except TutorError as e:
                    practice_type = session.active_practice_type
                    logger.warning("event_failed event=%s mode=%s kind=%s error=%s", event, practice_type.value, e.kind, e)
                    return Outcome(OutcomeStatus.FAILED, event, practice_type, error=e.kind, message=str(e))
                except Exception:
                    practice_type = session.active_practice_type
                    logger.exception("event_crashed event=%s mode=%s", event, practice_type.value)
                    return Outcome(OutcomeStatus.FAILED, event, practice_type, error="internal", message="Unexpected error")
                finally:
                    self._store.save_progress(session)
        except SessionBusyError as e:
            logger.info("event_rejected_busy event=%s", event)
            return Outcome(OutcomeStatus.BUSY, event, error=e.kind, message=str(e))
        finally:
            clear_log_context()

    # ------------------------------------------------------------------
    # mode selection
    # ------------------------------------------------------------------

    async def on_mode_selected(self, user_id: str, mode: PracticeType | str) -> Outcome:
        practice_type = PracticeType(mode)
        if practice_type is PracticeType.NONE:
            raise ValueError("mode must be one of reading, listening, speaking, free")
        controller = self._controllers[practice_type]

        async def handler(session: Session) -> Outcome:
            session.switch_to(practice_type)
            started = await controller.start(session)
            return Outcome(OutcomeStatus.OK, "mode_selected", practice_type, result=started)

        return await self._run(user_id, "mode_selected", handler)

    async def on_next(self, user_id: str, mode: PracticeType | str) -> Outcome:
        """Start another exercise in the same mode after a result."""
        practice_type = PracticeType(mode)
        if practice_type not in EXERCISE_MODES:
            raise ValueError("next is only available for reading, listening and speaking")
        return await self.on_mode_selected(user_id, practice_type)

    # ------------------------------------------------------------------
    # learner input
    # ------------------------------------------------------------------

    async def on_text(self, user_id: str, text: str) -> Outcome:
        async def handler(session: Session) -> Outcome:
            practice_type = session.active_practice_type
            if practice_type is PracticeType.FREE:
                turn = await self._controllers[practice_type].submit(session, text)
                return Outcome(OutcomeStatus.OK, "text", practice_type, result=turn)
            if practice_type in (PracticeType.READING, PracticeType.LISTENING):
                if session.comprehension_slot(practice_type).waiting:
                    evaluated = await self._controllers[practice_type].submit(session, text)
                    return Outcome(OutcomeStatus.OK, "text", practice_type, result=evaluated)
            if practice_type is PracticeType.SPEAKING and session.speaking.waiting:
                return Outcome(
                    OutcomeStatus.REMINDER,
                    "text",
                    practice_type,
                    message="You currently have a speaking task. Please send a voice message.",
                )
            return Outcome(OutcomeStatus.NOT_CONSUMED, "text", practice_type)

        return await self._run(user_id, "text", handler)

    async def on_voice(self, user_id: str, audio_url: str) -> Outcome:
        async def handler(session: Session) -> Outcome:
            practice_type = session.active_practice_type
            if practice_type is PracticeType.FREE or (
                practice_type is PracticeType.SPEAKING and session.speaking.waiting
            ):
                transcript = await self._pipeline.transcribe(audio_url)
                if practice_type is PracticeType.FREE and not transcript:
                    # An empty message would read as a request to open the conversation
                    raise EmptyTranscriptError("could not recognise any speech in the voice message")
                result = await self._controllers[practice_type].submit(session, transcript)
                return Outcome(OutcomeStatus.OK, "voice", practice_type, result=result)
            return Outcome(OutcomeStatus.NOT_CONSUMED, "voice", practice_type)

        return await self._run(user_id, "voice", handler)

    # ------------------------------------------------------------------
    # menu commands
    # ------------------------------------------------------------------

    async def on_level_selected(self, user_id: str, level: int | str) -> Outcome:
        async def handler(session: Session) -> Outcome:
            session.level = validate_level(level)
            logger.info("level_set level=%s", session.level)
            return Outcome(OutcomeStatus.OK, "level_selected", session.active_practice_type, result={"level": session.level})

        return await self._run(user_id, "level_selected", handler)

    async def on_change_level(self, user_id: str) -> Outcome:
        async def handler(session: Session) -> Outcome:
            session.level = None
            return Outcome(OutcomeStatus.NEEDS_LEVEL, "change_level", session.active_practice_type)

        return await self._run(user_id, "change_level", handler)

    async def on_change_mode(self, user_id: str) -> Outcome:
        async def handler(session: Session) -> Outcome:
            if session.level is None:
                return Outcome(OutcomeStatus.NEEDS_LEVEL, "change_mode", session.active_practice_type)
            session.switch_to(PracticeType.NONE)
            return Outcome(OutcomeStatus.OK, "change_mode", PracticeType.NONE)

        return await self._run(user_id, "change_mode", handler)

    async def on_reset(self, user_id: str) -> Outcome:
        # Not serialised: a reset must get through even while a call is hanging
        session = self._store.reset(user_id)
        logger.info("session_reset")
        return Outcome(OutcomeStatus.OK, "reset", session.active_practice_type, result=session.snapshot())

    def progress(self, user_id: str) -> Outcome:
        session = self._store.get(user_id)
        report = progress_report(session.stats.total_score)
        return Outcome(OutcomeStatus.OK, "progress", session.active_practice_type, result=report)

    async def aclose(self) -> None:
        await self._pipeline.aclose()
