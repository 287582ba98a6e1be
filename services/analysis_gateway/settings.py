from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    SERVICE_NAME: str = Field(default="analysis-gateway", alias="SERVICE_NAME")
    SERVICE_VERSION: str = Field(default="0.1.0", alias="SERVICE_VERSION")
    LOG_LEVEL: str = Field(default="INFO", alias="LOG_LEVEL")
    PORT: int = Field(default=8000, alias="PORT")

    # Job store: "memory://" or a SQLAlchemy URL
    JOB_STORE_URL: str = Field(
        default="sqlite:///./guardian_jobs.db", alias="JOB_STORE_URL"
    )

    # Queue
    QUEUE_CONCURRENCY: int = Field(default=2, ge=1, alias="QUEUE_CONCURRENCY")
    QUEUE_MAX_ATTEMPTS: int = Field(default=3, ge=1, alias="QUEUE_MAX_ATTEMPTS")
    QUEUE_POLL_INTERVAL_SEC: float = Field(
        default=0.5, gt=0.0, alias="QUEUE_POLL_INTERVAL_SEC"
    )

    # Local inference
    OLLAMA_HOST: str = Field(default="http://localhost:11434", alias="OLLAMA_HOST")
    OLLAMA_TRIAGE_MODEL: str = Field(default="moondream", alias="OLLAMA_TRIAGE_MODEL")
    OLLAMA_ANALYSIS_MODEL: str = Field(
        default="llava:7b", alias="OLLAMA_ANALYSIS_MODEL"
    )
    TRIAGE_TIMEOUT_SEC: float = Field(default=30.0, gt=0.0, alias="TRIAGE_TIMEOUT_SEC")
    DETAILED_TIMEOUT_SEC: float = Field(
        default=120.0, gt=0.0, alias="DETAILED_TIMEOUT_SEC"
    )
    FRAMES_DIR: str = Field(default="", alias="FRAMES_DIR")

    # Cloud fallback
    OPENROUTER_API_KEY: str = Field(default="", alias="OPENROUTER_API_KEY")
    OPENAI_API_KEY: str = Field(default="", alias="OPENAI_API_KEY")
    ANTHROPIC_API_KEY: str = Field(default="", alias="ANTHROPIC_API_KEY")
    CLOUD_PREFERRED_PROVIDER: str = Field(
        default="openrouter", alias="CLOUD_PREFERRED_PROVIDER"
    )
    FALLBACK_TIMEOUT_SEC: float = Field(
        default=30.0, gt=0.0, alias="FALLBACK_TIMEOUT_SEC"
    )

    # Audio
    AUDIO_SILENCE_THRESHOLD_DB: float = Field(
        default=-50.0, alias="AUDIO_SILENCE_THRESHOLD_DB"
    )
    AUDIO_LOUD_THRESHOLD_DB: float = Field(default=-10.0, alias="AUDIO_LOUD_THRESHOLD_DB")
    AUDIO_FALL_DETECTION_ENABLED: bool = Field(
        default=True, alias="AUDIO_FALL_DETECTION_ENABLED"
    )

    # Alerts
    ALERT_MIN_CONCERN: str = Field(default="low", alias="ALERT_MIN_CONCERN")
    ALERT_WEBHOOK_URL: str = Field(default="", alias="ALERT_WEBHOOK_URL")

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
