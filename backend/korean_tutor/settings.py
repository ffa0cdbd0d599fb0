from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Speech synthesis for the listening mode
	gemini_tts_model: str = Field(default="gemini-2.5-flash-preview-tts", validation_alias="GEMINI_TTS_MODEL")
	gemini_tts_voice: str = Field(default="Kore", validation_alias="GEMINI_TTS_VOICE")
	gemini_timeout_seconds: float = Field(default=30.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional, text generation only)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Korean Practice Tutor", validation_alias="OPENROUTER_TITLE")

	# Language pair
	target_language: str = Field(default="Korean", validation_alias="TARGET_LANGUAGE")
	feedback_language: str = Field(default="English", validation_alias="FEEDBACK_LANGUAGE")
	speech_language_code: str = Field(default="ko-KR", validation_alias="SPEECH_LANGUAGE_CODE")

	# Voice note ingestion
	ffmpeg_binary: str = Field(default="ffmpeg", validation_alias="FFMPEG_BINARY")
	scratch_dir: Path = Field(default=Path("tmp"), validation_alias="SCRATCH_DIR")
	download_timeout_seconds: float = Field(default=30.0, validation_alias="DOWNLOAD_TIMEOUT_SECONDS")

	# In-memory sessions; 0 disables the limit
	session_ttl_seconds: int = Field(default=7 * 24 * 60 * 60, validation_alias="SESSION_TTL_SECONDS")
	max_sessions: int = Field(default=10000, validation_alias="MAX_SESSIONS")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")
	progress_retention_days: int = Field(default=90, validation_alias="PROGRESS_RETENTION_DAYS")

	# Shared secret expected from the chat transport adapter (disabled when unset)
	transport_token: str | None = Field(default=None, validation_alias="TRANSPORT_TOKEN")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")
	log_json: bool = Field(default=False, validation_alias="LOG_JSON")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
