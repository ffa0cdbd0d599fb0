from __future__ import annotations
import base64
import io
import logging
import wave
import httpx
from typing import Any, Dict, Optional
from .errors import GatewayMalformedResponseError, GatewayUnavailableError
from .logging_utils import summarize_text
from .settings import Settings, settings as default_settings

logger = logging.getLogger(__name__)

# Gemini TTS returns raw 16-bit mono PCM at 24 kHz
TTS_SAMPLE_RATE = 24000
TTS_SAMPLE_WIDTH = 2


def pcm_to_wav(pcm: bytes, *, sample_rate: int = TTS_SAMPLE_RATE) -> bytes:
	buffer = io.BytesIO()
	with wave.open(buffer, "wb") as wf:
		wf.setnchannels(1)
		wf.setsampwidth(TTS_SAMPLE_WIDTH)
		wf.setframerate(sample_rate)
		wf.writeframes(pcm)
	return buffer.getvalue()


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		model: Optional[str] = None,
		config: Optional[Settings] = None,
		http_client: Optional[httpx.AsyncClient] = None,
	) -> None:
		self._settings = config or default_settings
		self.api_key = api_key or self._settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or self._settings.gemini_model
		self.tts_model = self._settings.gemini_tts_model
		self.provider = self._settings.gemini_provider
		# Google AI Studio keeps the key in the query string, Vertex wants a header
		self._auth_in_query = self.provider != "vertex"
		timeout = self._settings.gemini_timeout_seconds
		self._owns_client = http_client is None
		self._client = http_client or httpx.AsyncClient(timeout=timeout)
		self._fallback_enabled = bool(self._settings.openrouter_api_key)
		self._openrouter_api_key = self._settings.openrouter_api_key
		self._openrouter_model = self._settings.openrouter_model
		self._openrouter_base_url = self._settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": self._settings.openrouter_referer,
			"X-Title": self._settings.openrouter_title,
		}

	def endpoint(self, model: str) -> str:
		if self.provider == "vertex":
			region = self._settings.vertex_region
			project = self._settings.vertex_project or "placeholder-project"
			return (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{model}:generateContent"
			)
		return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

	async def generate(self, prompt: str) -> str:
		payload: Dict[str, Any] = {
			"contents": [{"parts": [{"text": prompt}]}],
			"generationConfig": {"responseMimeType": "application/json"},
		}
		try:
			data = await self._post(self.endpoint(self.model), payload)
			return self._first_text(data)
		except GatewayUnavailableError as primary_error:
			if not self._fallback_enabled:
				raise
			logger.warning("gemini_unavailable_falling_back model=%s error=%s", self.model, primary_error)
			return await self._fallback_generate(prompt, primary_error)

	async def synthesize_speech(self, text: str) -> bytes:
		"""Render ``text`` as speech and return a WAV file."""
		payload: Dict[str, Any] = {
			"contents": [{"parts": [{"text": text}]}],
			"generationConfig": {
				"responseModalities": ["AUDIO"],
				"speechConfig": {
					"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self._settings.gemini_tts_voice}},
				},
			},
		}
		data = await self._post(self.endpoint(self.tts_model), payload)
		try:
			inline = data["candidates"][0]["content"]["parts"][0]["inlineData"]
			pcm = base64.b64decode(inline["data"])
		except (KeyError, IndexError, TypeError, ValueError) as exc:
			raise GatewayMalformedResponseError(f"Unexpected Gemini TTS response: {summarize_text(str(data))}") from exc
		if not pcm:
			raise GatewayMalformedResponseError("Gemini TTS returned empty audio")
		return pcm_to_wav(pcm)

	async def _post(self, url: str, payload: Dict[str, Any]) -> Dict[str, Any]:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(url, params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			logger.warning("gemini_http_error status=%s body=%s", http_err.response.status_code, summarize_text(http_err.response.text))
			raise GatewayUnavailableError(f"Gemini HTTP error {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			logger.warning("gemini_request_error error=%r", net_err)
			raise GatewayUnavailableError(f"Gemini connection error: {net_err}") from net_err
		try:
			return r.json()
		except ValueError as exc:
			raise GatewayMalformedResponseError(f"Gemini returned non-JSON body: {summarize_text(r.text)}") from exc

	@staticmethod
	def _first_text(data: Dict[str, Any]) -> str:
		try:
			return data["candidates"][0]["content"]["parts"][0]["text"]
		except (KeyError, IndexError, TypeError) as exc:
			raise GatewayMalformedResponseError(f"Unexpected Gemini response: {summarize_text(str(data))}") from exc

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()

	async def _fallback_generate(self, prompt: str, primary_error: Exception) -> str:
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
		}
		try:
			r = await self._client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
		except httpx.HTTPError as fallback_err:
			raise GatewayUnavailableError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err
		try:
			return r.json()["choices"][0]["message"]["content"]
		except (ValueError, KeyError, IndexError, TypeError) as exc:
			raise GatewayMalformedResponseError(f"Unexpected OpenRouter response: {summarize_text(r.text)}") from exc
