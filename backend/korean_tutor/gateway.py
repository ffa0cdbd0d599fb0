"""
Generative exercise gateway
===========================

Typed façade over the text-generation service. Every operation builds a
prompt, asks the model for strict JSON, and validates the answer against a
pydantic shape. Anything that does not parse is reported as
``GatewayMalformedResponseError``; transport problems surface from the client
as ``GatewayUnavailableError``.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Protocol, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError

from .errors import GatewayMalformedResponseError
from .gemini_client import GeminiClient
from .logging_utils import summarize_text
from .schemas import (
	Exercise,
	FreeChatReply,
	ReadingEvaluation,
	SpeakingEvaluation,
	SpeakingExercise,
)
from .settings import settings

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


class ExerciseGateway(Protocol):
	async def generate_reading(self, level: int) -> Exercise: ...

	async def evaluate_reading(
		self, level: int, text: str, questions: Sequence[str], answers: str
	) -> ReadingEvaluation: ...

	async def generate_speaking(self, level: int) -> SpeakingExercise: ...

	async def evaluate_speaking(
		self, level: int, exercise: SpeakingExercise, transcript: str
	) -> SpeakingEvaluation: ...

	async def free_chat(self, level: int, user_message: str) -> FreeChatReply: ...

	async def synthesize_speech(self, text: str) -> bytes: ...


def _extract_json_object(text: str) -> Dict[str, Any]:
	try:
		data = json.loads(text)
		if isinstance(data, dict):
			return data
	except (TypeError, ValueError):
		pass
	code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text or "")
	if code_block:
		try:
			data = json.loads(code_block.group(1))
			if isinstance(data, dict):
				return data
		except ValueError:
			pass
	first = (text or "").find("{")
	last = (text or "").rfind("}")
	if first != -1 and last > first:
		try:
			data = json.loads(text[first : last + 1])
			if isinstance(data, dict):
				return data
		except ValueError:
			pass
	raise GatewayMalformedResponseError("Model did not return a JSON object")


def parse_structured(raw: str, shape: Type[ModelT], operation: str) -> ModelT:
	"""Parse model output into ``shape`` or raise ``GatewayMalformedResponseError``."""
	try:
		data = _extract_json_object(raw)
		return shape.model_validate(data)
	except GatewayMalformedResponseError:
		logger.error("gateway_unparseable operation=%s raw=%s", operation, summarize_text(raw))
		raise
	except ValidationError as exc:
		logger.error("gateway_invalid_shape operation=%s errors=%s raw=%s", operation, exc.error_count(), summarize_text(raw))
		raise GatewayMalformedResponseError(f"{operation}: response does not match {shape.__name__}") from exc


# ============================================================================
# PROMPTS
# ============================================================================

def _reading_prompt(level: int, language: str, feedback_language: str) -> str:
	return f"""
You are a {language} language teacher. Create a short reading exercise for a student at level {level} (TOPIK scale 1-6).

Requirements:
- A text in {language.upper()}, 3-6 sentences.
- Everyday / daily-life topic appropriate for this level.
- 5 questions IN {feedback_language.upper()} about the content of the text.

Return ONLY valid JSON with no explanations, exactly in this format:
{{
  "text": "short text in {language}",
  "questions": ["Question 1", "Question 2", "Question 3", "Question 4", "Question 5"]
}}
""".strip()


def _reading_evaluation_prompt(level: int, text: str, questions: Sequence[str], answers: str, feedback_language: str) -> str:
	numbered = "\n".join(f"{idx + 1}. {q}" for idx, q in enumerate(questions))
	return f"""
You are a strict but friendly language teacher.

A student at level {level} has read the text and answered the questions.

TEXT:
\"\"\"{text}\"\"\"

QUESTIONS:
{numbered}

STUDENT'S ANSWERS (free format, in order 1-5):
\"\"\"{answers}\"\"\"

Do the following:
1. Decide which answers are correct, partially correct or incorrect.
2. Score the WHOLE exercise from 1 to 10 (integer).
3. Give a short comment in {feedback_language} for each question.
4. Give overall advice in {feedback_language}.

Return ONLY valid JSON, strictly in the format:
{{
  "score": 8,
  "per_question": [{{"number": 1, "correct": true, "comment": "Short comment"}}],
  "overall_feedback": "Short overall advice"
}}
""".strip()


def _speaking_prompt(level: int, language: str, feedback_language: str) -> str:
	return f"""
You are a {language} language teacher. Prepare one speaking exercise for a student at level {level} (TOPIK scale 1-6).

Requirements:
- The task should make the student speak for 30-60 seconds.
- Everyday / daily-life topic appropriate for this level.
- Instructions in {language} and a short explanation in {feedback_language}.

Return ONLY valid JSON, strictly in the format:
{{
  "topic": "short topic name in {feedback_language}",
  "prompt_target": "Task description in {language}",
  "prompt_explain": "Short explanation of the task in {feedback_language}"
}}
""".strip()


def _speaking_evaluation_prompt(level: int, exercise: SpeakingExercise, transcript: str, language: str, feedback_language: str) -> str:
	return f"""
You are a {language} language teacher.

A student at level {level} has completed a speaking task.

TOPIC:
{exercise.topic}

TASK IN {language.upper()}:
{exercise.prompt_target}

TASK EXPLANATION:
{exercise.prompt_explain}

Below is the student's speech transcript, produced automatically from a voice message (it may contain small recognition errors):

\"\"\"{transcript}\"\"\"

Do the following:
1. Score the answer from 1 to 10 (integer), considering vocabulary, grammar, coherence and relevance.
2. Give a short comment in {feedback_language} (what is good, what to improve).
3. Provide an improved sample answer in {language} (2-4 sentences) appropriate for the level.

Return ONLY valid JSON, exactly in the format:
{{
  "score": 8,
  "feedback": "Comment",
  "sample_answer": "Example of a good answer"
}}
""".strip()


def _free_chat_prompt(level: int, user_message: str, language: str, feedback_language: str) -> str:
	if user_message.strip():
		opening = f'The student wrote:\n"""{user_message}"""\nReply to them naturally and keep the conversation going.'
	else:
		opening = "Open the conversation yourself with a friendly question."
	return f"""
You are a friendly {language} university student chatting with a learner at level {level} (TOPIK scale 1-6).
Use vocabulary and grammar appropriate for that level.

{opening}

If the student's message contains mistakes, list up to 3 corrections with a short explanation in {feedback_language}.

Return ONLY valid JSON, exactly in the format:
{{
  "reply": "your reply in {language}",
  "translation": "translation of your reply into {feedback_language}",
  "corrections": [{{"original": "...", "corrected": "...", "explanation": "..."}}]
}}
""".strip()


# ============================================================================
# GATEWAY
# ============================================================================

class GeminiExerciseGateway:
	def __init__(self, client: GeminiClient, *, language: str | None = None, feedback_language: str | None = None) -> None:
		self._client = client
		self._language = language or settings.target_language
		self._feedback_language = feedback_language or settings.feedback_language

	async def _ask(self, prompt: str, shape: Type[ModelT], operation: str) -> ModelT:
		raw = await self._client.generate(prompt)
		result = parse_structured(raw, shape, operation)
		logger.debug("gateway_ok operation=%s", operation)
		return result

	async def generate_reading(self, level: int) -> Exercise:
		prompt = _reading_prompt(level, self._language, self._feedback_language)
		return await self._ask(prompt, Exercise, "generate_reading")

	async def evaluate_reading(self, level: int, text: str, questions: Sequence[str], answers: str) -> ReadingEvaluation:
		prompt = _reading_evaluation_prompt(level, text, questions, answers, self._feedback_language)
		return await self._ask(prompt, ReadingEvaluation, "evaluate_reading")

	async def generate_speaking(self, level: int) -> SpeakingExercise:
		prompt = _speaking_prompt(level, self._language, self._feedback_language)
		return await self._ask(prompt, SpeakingExercise, "generate_speaking")

	async def evaluate_speaking(self, level: int, exercise: SpeakingExercise, transcript: str) -> SpeakingEvaluation:
		prompt = _speaking_evaluation_prompt(level, exercise, transcript, self._language, self._feedback_language)
		return await self._ask(prompt, SpeakingEvaluation, "evaluate_speaking")

	async def free_chat(self, level: int, user_message: str) -> FreeChatReply:
		prompt = _free_chat_prompt(level, user_message, self._language, self._feedback_language)
		return await self._ask(prompt, FreeChatReply, "free_chat")

	async def synthesize_speech(self, text: str) -> bytes:
		return await self._client.synthesize_speech(text)

	async def aclose(self) -> None:
		await self._client.aclose()
