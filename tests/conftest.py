from __future__ import annotations

from typing import Any, Dict, List, Sequence

import pytest

from korean_tutor.modes import build_controllers
from korean_tutor.schemas import (
    Exercise,
    FreeChatReply,
    ReadingEvaluation,
    SpeakingEvaluation,
    SpeakingExercise,
)
from korean_tutor.session import SessionStore


def make_exercise(text: str = "저는 아침에 커피를 마셔요.") -> Exercise:
    return Exercise(text=text, questions=[f"Question {i}" for i in range(1, 6)])


def make_speaking_exercise() -> SpeakingExercise:
    return SpeakingExercise(
        topic="Weekend",
        prompt_target="주말에 무엇을 했어요?",
        prompt_explain="Tell what you did last weekend.",
    )


class FakeGateway:
    """Scripted stand-in for the generative service.

    Each operation returns the configured value, or raises it when it is an
    exception. Calls are recorded as ``(operation, args)`` tuples.
    """

    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.responses: Dict[str, Any] = {
            "generate_reading": make_exercise(),
            "evaluate_reading": ReadingEvaluation(score=7, overall_feedback="Good"),
            "generate_speaking": make_speaking_exercise(),
            "evaluate_speaking": SpeakingEvaluation(score=6, feedback="Nice", sample_answer="좋아요."),
            "free_chat": FreeChatReply(reply="안녕하세요!", translation="Hello!"),
            "synthesize_speech": b"RIFF-fake-wav",
        }

    def _answer(self, operation: str, *args: Any) -> Any:
        self.calls.append((operation, args))
        value = self.responses[operation]
        if isinstance(value, BaseException):
            raise value
        return value

    def operations(self) -> List[str]:
        return [name for name, _ in self.calls]

    async def generate_reading(self, level: int) -> Exercise:
        return self._answer("generate_reading", level)

    async def evaluate_reading(self, level: int, text: str, questions: Sequence[str], answers: str) -> ReadingEvaluation:
        return self._answer("evaluate_reading", level, text, tuple(questions), answers)

    async def generate_speaking(self, level: int) -> SpeakingExercise:
        return self._answer("generate_speaking", level)

    async def evaluate_speaking(self, level: int, exercise: SpeakingExercise, transcript: str) -> SpeakingEvaluation:
        return self._answer("evaluate_speaking", level, exercise, transcript)

    async def free_chat(self, level: int, user_message: str) -> FreeChatReply:
        return self._answer("free_chat", level, user_message)

    async def synthesize_speech(self, text: str) -> bytes:
        return self._answer("synthesize_speech", text)


class FakePipeline:
    def __init__(self, transcript: str = "주말에 친구를 만났어요.") -> None:
        self.transcript = transcript
        self.urls: List[str] = []
        self.closed = False

    async def transcribe(self, remote_url: str) -> str:
        self.urls.append(remote_url)
        if isinstance(self.transcript, BaseException):
            raise self.transcript
        return self.transcript

    async def aclose(self) -> None:
        self.closed = True


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def pipeline() -> FakePipeline:
    return FakePipeline()


@pytest.fixture
def store() -> SessionStore:
    return SessionStore()


@pytest.fixture
def controllers(gateway):
    return build_controllers(gateway)
