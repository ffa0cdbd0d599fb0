"""
Practice mode controllers.

Reading and listening share one comprehension controller (listening adds a
speech synthesis step); speaking and free chat have their own. All four expose
``start(session)`` and ``submit(session, content)`` so the dispatcher can pick
one by practice type. Controllers raise ``TutorError`` subclasses on failure
and only touch the session after the external calls they depend on succeeded.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union

from .errors import NoActiveExerciseError
from .gateway import ExerciseGateway
from .schemas import Exercise, FreeChatReply, ReadingEvaluation, SpeakingEvaluation, SpeakingExercise
from .scoring import apply_delta
from .session import PracticeType, Session

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExerciseStarted:
	practice_type: PracticeType
	exercise: Union[Exercise, SpeakingExercise]
	level: int
	audio: Optional[bytes] = None


@dataclass(frozen=True)
class AnswersEvaluated:
	practice_type: PracticeType
	evaluation: ReadingEvaluation
	total_score: int


@dataclass(frozen=True)
class VoiceEvaluated:
	transcript: str
	evaluation: SpeakingEvaluation
	total_score: int


@dataclass(frozen=True)
class ChatTurn:
	reply: FreeChatReply
	user_message: str


class ModeController(Protocol):
	practice_type: PracticeType

	async def start(self, session: Session) -> Any: ...

	async def submit(self, session: Session, content: str) -> Any: ...


def _apply_score(session: Session, score: Any) -> int:
	before = session.stats.total_score
	session.stats.total_score = apply_delta(before, score)
	logger.info("score_applied delta=%s total=%s", score, session.stats.total_score)
	return session.stats.total_score


class ComprehensionController:
	def __init__(self, practice_type: PracticeType, gateway: ExerciseGateway, *, synthesize_audio: bool = False) -> None:
		if practice_type not in (PracticeType.READING, PracticeType.LISTENING):
			raise ValueError(f"{practice_type.value} is not a comprehension mode")
		self.practice_type = practice_type
		self._gateway = gateway
		self._synthesize_audio = synthesize_audio

	async def start(self, session: Session) -> ExerciseStarted:
		level = session.effective_level
		exercise = await self._gateway.generate_reading(level)
		audio: Optional[bytes] = None
		if self._synthesize_audio:
			audio = await self._gateway.synthesize_speech(exercise.text)
		session.comprehension_slot(self.practice_type).begin(exercise)
		logger.info("exercise_started mode=%s level=%s", self.practice_type.value, level)
		return ExerciseStarted(self.practice_type, exercise, level, audio)

	async def submit(self, session: Session, content: str) -> AnswersEvaluated:
		slot = session.comprehension_slot(self.practice_type)
		exercise = slot.exercise
		if not slot.waiting or exercise is None:
			raise NoActiveExerciseError(f"no active {self.practice_type.value} exercise")
		evaluation = await self._gateway.evaluate_reading(
			session.effective_level,
			exercise.text,
			exercise.questions,
			content,
		)
		total = _apply_score(session, evaluation.score)
		slot.finish()
		return AnswersEvaluated(self.practice_type, evaluation, total)

	start_exercise = start
	submit_answers = submit


class SpeakingController:
	practice_type = PracticeType.SPEAKING

	def __init__(self, gateway: ExerciseGateway) -> None:
		self._gateway = gateway

	async def start(self, session: Session) -> ExerciseStarted:
		level = session.effective_level
		exercise = await self._gateway.generate_speaking(level)
		session.speaking.begin(exercise)
		logger.info("exercise_started mode=speaking level=%s", level)
		return ExerciseStarted(self.practice_type, exercise, level)

	async def submit(self, session: Session, content: str) -> VoiceEvaluated:
		slot = session.speaking
		exercise = slot.exercise
		if not slot.waiting or exercise is None:
			raise NoActiveExerciseError("no active speaking exercise")
		# Kept even if the evaluation below fails
		slot.last_transcript = content
		evaluation = await self._gateway.evaluate_speaking(session.effective_level, exercise, content)
		total = _apply_score(session, evaluation.score)
		slot.finish()
		return VoiceEvaluated(content, evaluation, total)

	start_exercise = start
	submit_voice = submit


class FreeChatController:
	practice_type = PracticeType.FREE

	def __init__(self, gateway: ExerciseGateway) -> None:
		self._gateway = gateway

	async def start(self, session: Session) -> ChatTurn:
		reply = await self._gateway.free_chat(session.effective_level, "")
		return ChatTurn(reply, "")

	async def submit(self, session: Session, content: str) -> ChatTurn:
		reply = await self._gateway.free_chat(session.effective_level, content)
		return ChatTurn(reply, content)

	handle_message = submit


def build_controllers(gateway: ExerciseGateway) -> Dict[PracticeType, ModeController]:
	return {
		PracticeType.READING: ComprehensionController(PracticeType.READING, gateway),
		PracticeType.LISTENING: ComprehensionController(PracticeType.LISTENING, gateway, synthesize_audio=True),
		PracticeType.SPEAKING: SpeakingController(gateway),
		PracticeType.FREE: FreeChatController(gateway),
	}
