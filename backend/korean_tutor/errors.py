from __future__ import annotations


class TutorError(Exception):
	"""Base class for failures reported back to the learner as a failed outcome."""

	kind = "tutor_error"


class AudioIngestError(TutorError):
	kind = "audio_ingest_error"


class DownloadError(AudioIngestError):
	kind = "download_error"


class TranscodeError(AudioIngestError):
	kind = "transcode_error"


class TranscriptionError(AudioIngestError):
	kind = "transcription_error"


class GatewayError(TutorError):
	kind = "gateway_error"


class GatewayUnavailableError(GatewayError):
	"""Network failure, timeout or non-2xx status from the generative service."""

	kind = "gateway_unavailable"


class GatewayMalformedResponseError(GatewayError):
	"""The model answered, but the answer did not parse into the expected shape."""

	kind = "gateway_malformed_response"


class NoActiveExerciseError(TutorError):
	kind = "no_active_exercise"


class SessionBusyError(TutorError):
	"""Another event for the same user is still being processed."""

	kind = "session_busy"


class InvalidLevelError(TutorError):
	kind = "invalid_level"


class EmptyTranscriptError(AudioIngestError):
	"""The voice note was processed but no speech was recognised."""

	kind = "empty_transcript"
