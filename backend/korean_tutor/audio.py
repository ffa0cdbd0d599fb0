"""
Voice note ingestion
====================

Turns a remote voice note (Telegram serves OGG/Opus ``.oga`` files) into text:

1. download the file,
2. write it to a scratch file with a collision-free name,
3. transcode it with ffmpeg to 16 kHz mono FLAC,
4. run speech recognition on the FLAC file,
5. delete both scratch files whatever happened.

Each step fails with its own error type so the caller can tell the learner
what went wrong.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from pathlib import Path
from typing import Optional, Protocol, Tuple

import httpx

from .errors import DownloadError, TranscodeError, TranscriptionError
from .settings import settings

logger = logging.getLogger(__name__)

SAMPLE_RATE_HERTZ = 16000


class Transcriber(Protocol):
	async def transcribe(self, audio_path: Path) -> str: ...


class GoogleSpeechTranscriber:
	"""Google Cloud Speech-to-Text over the async gRPC client.

	The client is created on first use so that importing the module does not
	require application default credentials.
	"""

	def __init__(self, language_code: Optional[str] = None) -> None:
		self.language_code = language_code or settings.speech_language_code
		self._client = None

	def _get_client(self):
		from google.cloud import speech_v1p1beta1 as speech

		if self._client is None:
			self._client = speech.SpeechAsyncClient()
		return self._client

	async def transcribe(self, audio_path: Path) -> str:
		from google.cloud import speech_v1p1beta1 as speech

		try:
			client = self._get_client()
			audio = speech.RecognitionAudio(content=audio_path.read_bytes())
			config = speech.RecognitionConfig(
				encoding=speech.RecognitionConfig.AudioEncoding.FLAC,
				sample_rate_hertz=SAMPLE_RATE_HERTZ,
				audio_channel_count=1,
				language_code=self.language_code,
				enable_automatic_punctuation=True,
			)
			response = await client.recognize(config=config, audio=audio)
		except Exception as e:
			raise TranscriptionError(f"Speech recognition failed: {e}") from e
		pieces = [result.alternatives[0].transcript for result in response.results if result.alternatives]
		return " ".join(p.strip() for p in pieces if p and p.strip())


class AudioIngestPipeline:
	def __init__(
		self,
		transcriber: Transcriber,
		*,
		scratch_dir: Optional[Path] = None,
		ffmpeg_binary: Optional[str] = None,
		http_client: Optional[httpx.AsyncClient] = None,
		download_timeout: Optional[float] = None,
	) -> None:
		self._transcriber = transcriber
		self.scratch_dir = Path(scratch_dir or settings.scratch_dir)
		self.ffmpeg_binary = ffmpeg_binary or settings.ffmpeg_binary
		self._owns_client = http_client is None
		timeout = download_timeout if download_timeout is not None else settings.download_timeout_seconds
		self._http = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

	async def transcribe(self, remote_url: str) -> str:
		"""Download, normalise and transcribe one voice note.

		Args:
			remote_url: Direct download link of the voice note

		Returns:
			Trimmed transcript; empty string when nothing was recognised

		Raises:
			DownloadError: Non-2xx status or transport failure
			TranscodeError: ffmpeg missing or exited non-zero
			TranscriptionError: Speech recognition failed
		"""
		payload = await self._download(remote_url)
		source, target = self._scratch_paths()
		try:
			source.write_bytes(payload)
			await self._transcode(source, target)
			text = await self._transcriber.transcribe(target)
		finally:
			self._discard(source)
			self._discard(target)
		transcript = (text or "").strip()
		logger.info("voice_transcribed bytes=%s chars=%s", len(payload), len(transcript))
		return transcript

	async def _download(self, url: str) -> bytes:
		try:
			r = await self._http.get(url)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			status = http_err.response.status_code
			raise DownloadError(f"Failed to download audio: {status} {http_err.response.reason_phrase}") from http_err
		except httpx.RequestError as net_err:
			raise DownloadError(f"Failed to download audio: {net_err}") from net_err
		return r.content

	def _scratch_paths(self) -> Tuple[Path, Path]:
		self.scratch_dir.mkdir(parents=True, exist_ok=True)
		stem = f"{time.monotonic_ns()}-{uuid.uuid4().hex[:8]}"
		return self.scratch_dir / f"input-{stem}.oga", self.scratch_dir / f"output-{stem}.flac"

	async def _transcode(self, source: Path, target: Path) -> None:
		try:
			proc = await asyncio.create_subprocess_exec(
				self.ffmpeg_binary,
				"-y",
				"-loglevel", "error",
				"-i", str(source),
				"-ac", "1",
				"-ar", str(SAMPLE_RATE_HERTZ),
				"-c:a", "flac",
				str(target),
				stdout=asyncio.subprocess.DEVNULL,
				stderr=asyncio.subprocess.PIPE,
			)
		except OSError as e:
			raise TranscodeError(f"Cannot run {self.ffmpeg_binary}: {e}") from e
		_, stderr = await proc.communicate()
		if proc.returncode != 0:
			detail = (stderr or b"").decode("utf-8", errors="ignore").strip()[-300:]
			raise TranscodeError(f"ffmpeg exited with {proc.returncode}: {detail}")

	@staticmethod
	def _discard(path: Path) -> None:
		try:
			path.unlink(missing_ok=True)
		except OSError as e:
			logger.warning("scratch_cleanup_failed path=%s error=%s", path, e)

	async def aclose(self) -> None:
		if self._owns_client:
			await self._http.aclose()
