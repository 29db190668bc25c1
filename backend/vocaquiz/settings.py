from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	gemini_temperature: float = Field(default=0.7, validation_alias="GEMINI_TEMPERATURE")
	gemini_timeout_seconds: float = Field(default=130.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="x-ai/grok-4-fast:free", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Vocabulary Quiz Builder", validation_alias="OPENROUTER_TITLE")

	# Speech synthesis (ElevenLabs)
	elevenlabs_api_key: str | None = Field(default=None, validation_alias="ELEVENLABS_API_KEY")
	elevenlabs_voice_id: str = Field(default="21m00Tcm4TlvDq8ikWAM", validation_alias="ELEVENLABS_VOICE_ID")
	elevenlabs_model_id: str = Field(default="eleven_multilingual_v2", validation_alias="ELEVENLABS_MODEL_ID")
	elevenlabs_base_url: str = Field(default="https://api.elevenlabs.io/v1", validation_alias="ELEVENLABS_BASE_URL")
	elevenlabs_timeout_seconds: float = Field(default=30.0, validation_alias="ELEVENLABS_TIMEOUT_SECONDS")

	# Sequential pipelines
	generation_chunk_size: int = Field(default=10, ge=1, validation_alias="GENERATION_CHUNK_SIZE")
	# Extra tries for a chunk whose output does not parse (quota/network errors are not retried)
	generation_chunk_attempts: int = Field(default=2, ge=1, validation_alias="GENERATION_CHUNK_ATTEMPTS")
	synthesis_min_interval_seconds: float = Field(default=0.0, ge=0.0, validation_alias="SYNTHESIS_MIN_INTERVAL_SECONDS")

	# Durable audio storage (served under /media)
	storage_dir: str = Field(default="./storage", validation_alias="STORAGE_DIR")
	storage_bucket: str = Field(default="quiz-audio", validation_alias="STORAGE_BUCKET")
	public_base_url: str = Field(default="http://localhost:8000", validation_alias="PUBLIC_BASE_URL")

	# Share links
	share_default_max_attempts: int = Field(default=3, ge=1, validation_alias="SHARE_DEFAULT_MAX_ATTEMPTS")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Logging
	log_dir: str = Field(default="log", validation_alias="LOG_DIR")
	log_file: str = Field(default="vocaquiz.log", validation_alias="LOG_FILE")
	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
