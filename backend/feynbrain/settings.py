from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	# "prod" talks to the real AI services, "mock" uses the built-in stand-ins
	service_mode: str = Field(default="prod", validation_alias="SERVICE_MODE")

	# Chat completion provider: "groq" (OpenAI-compatible) or "gemini"
	llm_provider: str = Field(default="groq", validation_alias="LLM_PROVIDER")
	groq_api_key: str | None = Field(default=None, validation_alias="GROQ_API_KEY")
	groq_model: str = Field(default="openai/gpt-oss-120b", validation_alias="GROQ_MODEL")
	groq_base_url: str = Field(default="https://api.groq.com/openai/v1", validation_alias="GROQ_BASE_URL")
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	llm_timeout_seconds: float = Field(default=30.0, validation_alias="LLM_TIMEOUT_SECONDS")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="FeynBrain", validation_alias="OPENROUTER_TITLE")

	# Speech-to-text: "groq" (Whisper over HTTP) or "google" (Cloud Speech)
	transcribe_provider: str = Field(default="groq", validation_alias="TRANSCRIBE_PROVIDER")
	transcribe_model: str = Field(default="whisper-large-v3", validation_alias="TRANSCRIBE_MODEL")
	transcribe_language: str = Field(default="en-US", validation_alias="TRANSCRIBE_LANGUAGE")

	# Text-to-speech (ElevenLabs)
	elevenlabs_api_key: str | None = Field(default=None, validation_alias="ELEVENLABS_API_KEY")
	elevenlabs_voice_id: str = Field(default="pNInz6obpgDQGcFmaJgB", validation_alias="ELEVENLABS_VOICE_ID")
	elevenlabs_model: str = Field(default="eleven_monolingual_v1", validation_alias="ELEVENLABS_MODEL")
	elevenlabs_base_url: str = Field(default="https://api.elevenlabs.io/v1", validation_alias="ELEVENLABS_BASE_URL")

	# Session behaviour
	silence_timeout_seconds: float = Field(default=10.0, validation_alias="SILENCE_TIMEOUT_SECONDS")
	max_passes: int = Field(default=3, ge=1, validation_alias="MAX_PASSES")
	max_questions: int = Field(default=3, ge=1, le=5, validation_alias="MAX_QUESTIONS")
	playback_timeout_seconds: float = Field(default=60.0, validation_alias="PLAYBACK_TIMEOUT_SECONDS")
	auto_rearm_capture: bool = Field(default=True, validation_alias="AUTO_REARM_CAPTURE")

	# Uploads
	max_upload_bytes: int = Field(default=10 * 1024 * 1024, validation_alias="MAX_UPLOAD_BYTES")

	# Old sessions are purged at startup and then daily
	session_max_age_days: int = Field(default=30, validation_alias="SESSION_MAX_AGE_DAYS")

	cors_origins: list[str] = Field(default=["http://localhost:5173"], validation_alias="CORS_ORIGINS")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	@property
	def mock_mode(self) -> bool:
		return self.service_mode.lower() == "mock"

settings = Settings()
