from __future__ import annotations

from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

QUESTIONS_PER_EXERCISE = 5
MAX_CORRECTIONS = 3


class Exercise(BaseModel):
	"""Reading/listening unit: a short text plus exactly five questions."""

	model_config = ConfigDict(frozen=True)

	text: str = Field(min_length=1)
	questions: tuple[str, ...] = Field(min_length=QUESTIONS_PER_EXERCISE, max_length=QUESTIONS_PER_EXERCISE)

	@field_validator("text")
	@classmethod
	def _strip_text(cls, value: str) -> str:
		value = value.strip()
		if not value:
			raise ValueError("text must not be blank")
		return value

	@field_validator("questions")
	@classmethod
	def _strip_questions(cls, value: tuple[str, ...]) -> tuple[str, ...]:
		cleaned = tuple(str(q).strip() for q in value)
		if any(not q for q in cleaned):
			raise ValueError("questions must not be blank")
		return cleaned


class SpeakingExercise(BaseModel):
	model_config = ConfigDict(frozen=True)

	topic: str = Field(min_length=1)
	prompt_target: str = Field(min_length=1)
	prompt_explain: str = Field(min_length=1)


class QuestionFeedback(BaseModel):
	number: int
	correct: bool
	comment: str = ""


class ReadingEvaluation(BaseModel):
	# Scored only when numeric, see scoring.apply_delta
	score: Any = None
	per_question: List[QuestionFeedback] = Field(default_factory=list)
	overall_feedback: str = ""


class SpeakingEvaluation(BaseModel):
	score: Any = None
	feedback: str = ""
	sample_answer: Optional[str] = None


class Correction(BaseModel):
	original: str
	corrected: str
	explanation: str = ""


class FreeChatReply(BaseModel):
	reply: str = Field(min_length=1)
	translation: str = ""
	corrections: List[Correction] = Field(default_factory=list)

	@field_validator("corrections")
	@classmethod
	def _first_corrections_only(cls, value: List[Correction]) -> List[Correction]:
		return value[:MAX_CORRECTIONS]
