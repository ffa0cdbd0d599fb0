import asyncio
import base64
import io
import json
import wave

import httpx
import pytest

from conftest import make_speaking_exercise
from korean_tutor.errors import GatewayMalformedResponseError, GatewayUnavailableError
from korean_tutor.gateway import GeminiExerciseGateway, _extract_json_object, parse_structured
from korean_tutor.gemini_client import GeminiClient, pcm_to_wav
from korean_tutor.schemas import Exercise, ReadingEvaluation, SpeakingEvaluation
from korean_tutor.settings import Settings

READING_JSON = {
    "text": "오늘은 날씨가 좋아요.",
    "questions": ["Q1", "Q2", "Q3", "Q4", "Q5"],
}


def _settings(**overrides) -> Settings:
    values = {"GEMINI_API_KEY": "test-key", "OPENROUTER_API_KEY": None, "GEMINI_PROVIDER": "ai_studio"}
    values.update(overrides)
    return Settings(**values)


def _gemini_text(text: str) -> dict:
    return {"candidates": [{"content": {"parts": [{"text": text}]}}]}


class _Recorder:
    def __init__(self, responder):
        self.responder = responder
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responder(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


def test_extract_json_accepts_bare_fenced_and_embedded_objects():
    raw = json.dumps(READING_JSON, ensure_ascii=False)
    assert _extract_json_object(raw) == READING_JSON
    assert _extract_json_object(f"```json\n{raw}\n```") == READING_JSON
    assert _extract_json_object(f"Sure! Here it is: {raw} Enjoy.") == READING_JSON


@pytest.mark.parametrize("raw", ["", "no json here", "[1, 2, 3]", "{broken"])
def test_extract_json_rejects_non_objects(raw):
    with pytest.raises(GatewayMalformedResponseError):
        _extract_json_object(raw)


def test_parse_structured_rejects_wrong_question_count():
    raw = json.dumps({"text": "짧은 글", "questions": ["Q1", "Q2"]})
    with pytest.raises(GatewayMalformedResponseError):
        parse_structured(raw, Exercise, "generate_reading")


def test_parse_structured_keeps_evaluation_with_odd_score():
    missing = parse_structured('{"feedback": "wow"}', SpeakingEvaluation, "evaluate_speaking")
    nulled = parse_structured('{"score": null, "per_question": []}', ReadingEvaluation, "evaluate_reading")
    fractional = parse_structured('{"score": 7.5}', ReadingEvaluation, "evaluate_reading")

    assert missing.score is None
    assert missing.feedback == "wow"
    assert nulled.score is None
    assert fractional.score == 7.5


def test_parse_structured_still_rejects_broken_evaluation_shape():
    with pytest.raises(GatewayMalformedResponseError):
        parse_structured('{"score": 8, "per_question": "all good"}', ReadingEvaluation, "evaluate_reading")


def test_gateway_generates_reading_exercise():
    recorder = _Recorder(lambda request: httpx.Response(200, json=_gemini_text(json.dumps(READING_JSON))))
    client = GeminiClient(config=_settings(), http_client=recorder.client())
    gateway = GeminiExerciseGateway(client, language="Korean", feedback_language="English")

    exercise = asyncio.run(gateway.generate_reading(2))

    assert exercise.text == READING_JSON["text"]
    assert len(exercise.questions) == 5
    request = recorder.requests[0]
    assert request.url.params["key"] == "test-key"
    assert "gemini-2.5-flash:generateContent" in request.url.path
    body = json.loads(request.content)
    assert body["generationConfig"]["responseMimeType"] == "application/json"
    assert "level 2" in body["contents"][0]["parts"][0]["text"]


def test_gateway_evaluates_speaking_with_fenced_answer():
    answer = '```json\n{"score": 8, "feedback": "좋아요", "sample_answer": "주말에 등산했어요."}\n```'
    recorder = _Recorder(lambda request: httpx.Response(200, json=_gemini_text(answer)))
    gateway = GeminiExerciseGateway(GeminiClient(config=_settings(), http_client=recorder.client()))

    evaluation = asyncio.run(gateway.evaluate_speaking(3, make_speaking_exercise(), "주말에 쉬었어요"))

    assert evaluation.score == 8
    prompt = json.loads(recorder.requests[0].content)["contents"][0]["parts"][0]["text"]
    assert "주말에 쉬었어요" in prompt


def test_http_error_is_unavailable():
    recorder = _Recorder(lambda request: httpx.Response(503, text="overloaded"))
    gateway = GeminiExerciseGateway(GeminiClient(config=_settings(), http_client=recorder.client()))

    with pytest.raises(GatewayUnavailableError):
        asyncio.run(gateway.free_chat(1, "안녕"))


def test_unexpected_envelope_is_malformed():
    recorder = _Recorder(lambda request: httpx.Response(200, json={"candidates": []}))
    gateway = GeminiExerciseGateway(GeminiClient(config=_settings(), http_client=recorder.client()))

    with pytest.raises(GatewayMalformedResponseError):
        asyncio.run(gateway.generate_speaking(1))


def test_openrouter_fallback_when_gemini_is_down():
    def responder(request):
        if "openrouter" in request.url.host:
            content = json.dumps({"reply": "안녕!", "translation": "Hi!", "corrections": []})
            return httpx.Response(200, json={"choices": [{"message": {"content": content}}]})
        return httpx.Response(500, text="internal")

    recorder = _Recorder(responder)
    client = GeminiClient(config=_settings(OPENROUTER_API_KEY="or-key"), http_client=recorder.client())

    reply = asyncio.run(GeminiExerciseGateway(client).free_chat(1, "안녕"))

    assert reply.reply == "안녕!"
    assert len(recorder.requests) == 2
    assert recorder.requests[1].headers["Authorization"] == "Bearer or-key"


def test_vertex_provider_sends_key_in_header():
    recorder = _Recorder(lambda request: httpx.Response(200, json=_gemini_text(json.dumps(READING_JSON))))
    config = _settings(GEMINI_PROVIDER="vertex", GEMINI_VERTEX_PROJECT="demo", GEMINI_VERTEX_REGION="us-central1")
    client = GeminiClient(config=config, http_client=recorder.client())

    asyncio.run(client.generate("prompt"))

    request = recorder.requests[0]
    assert request.url.host == "us-central1-aiplatform.googleapis.com"
    assert request.headers["x-goog-api-key"] == "test-key"
    assert "key" not in request.url.params


def test_speech_synthesis_returns_wav():
    pcm = b"\x00\x01" * 2400
    payload = {
        "candidates": [
            {"content": {"parts": [{"inlineData": {"mimeType": "audio/L16;rate=24000", "data": base64.b64encode(pcm).decode()}}]}}
        ]
    }
    recorder = _Recorder(lambda request: httpx.Response(200, json=payload))
    client = GeminiClient(config=_settings(), http_client=recorder.client())

    audio = asyncio.run(GeminiExerciseGateway(client).synthesize_speech("안녕하세요"))

    with wave.open(io.BytesIO(audio), "rb") as wf:
        assert wf.getframerate() == 24000
        assert wf.getnchannels() == 1
        assert wf.readframes(wf.getnframes()) == pcm
    body = json.loads(recorder.requests[0].content)
    assert body["generationConfig"]["responseModalities"] == ["AUDIO"]
    assert "preview-tts" in recorder.requests[0].url.path


def test_speech_synthesis_without_audio_is_malformed():
    recorder = _Recorder(lambda request: httpx.Response(200, json=_gemini_text("no audio")))
    client = GeminiClient(config=_settings(), http_client=recorder.client())

    with pytest.raises(GatewayMalformedResponseError):
        asyncio.run(client.synthesize_speech("안녕하세요"))


def test_client_requires_api_key():
    with pytest.raises(ValueError):
        GeminiClient(config=_settings(GEMINI_API_KEY=None))


def test_pcm_to_wav_header():
    assert pcm_to_wav(b"\x00\x00").startswith(b"RIFF")
