"""
Configuration management for the assessment engine.
Loads from config/engine.yaml and environment variables.
"""

from pathlib import Path
from typing import Optional, Dict, Any
import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class TelemetryConfig(BaseSettings):
    """Behavior event batching configuration."""
    batch_size: int = Field(default=10)
    flush_interval_ms: int = Field(default=5000)

    model_config = SettingsConfigDict(env_prefix="TELEMETRY_", extra="ignore")


class HeatmapConfig(BaseSettings):
    """Engagement heatmap configuration."""
    throttle_ms: int = Field(default=5000)
    dropout_points_kept: int = Field(default=10)

    model_config = SettingsConfigDict(env_prefix="HEATMAP_", extra="ignore")


class AdaptiveConfig(BaseSettings):
    """Adaptive quiz defaults. Rule values can be overridden per session."""
    correct_streak_to_advance: int = Field(default=3)
    incorrect_streak_to_regress: int = Field(default=2)
    min_questions_per_level: int = Field(default=5)
    max_retries: int = Field(default=3)
    struggling_threshold: float = Field(default=0.6)
    mastery_threshold: float = Field(default=0.85)
    candidate_limit: int = Field(default=10)
    fallback_limit: int = Field(default=5)
    struggle_time_seconds: float = Field(default=30.0)
    mastery_time_seconds: float = Field(default=15.0)

    model_config = SettingsConfigDict(env_prefix="ADAPTIVE_", extra="ignore")


class StruggleConfig(BaseSettings):
    """Struggle signal thresholds."""
    quiz_failure_threshold: int = Field(default=2)
    quiz_failure_high_threshold: int = Field(default=3)
    pause_window_seconds: float = Field(default=30.0)
    pause_threshold: int = Field(default=3)
    coach_activation_threshold: int = Field(default=2)
    skip_distance_seconds: float = Field(default=30.0)
    skip_high_distance_seconds: float = Field(default=120.0)
    help_request_threshold: int = Field(default=3)

    model_config = SettingsConfigDict(env_prefix="STRUGGLE_", extra="ignore")


class SessionConfig(BaseSettings):
    """Session registry configuration."""
    idle_timeout_minutes: int = Field(default=120, alias="SESSION_IDLE_TIMEOUT_MINUTES")
    eviction_interval_seconds: float = Field(default=60.0, alias="SESSION_EVICTION_INTERVAL_SECONDS")

    model_config = SettingsConfigDict(env_prefix="SESSION_", extra="ignore", populate_by_name=True)


class ApiConfig(BaseSettings):
    """API server configuration."""
    host: str = Field(default="0.0.0.0", alias="API_HOST")
    port: int = Field(default=8000, alias="API_PORT")
    cors_origins: list[str] = Field(default_factory=lambda: ["http://localhost:3000"])
    rate_limit_requests_per_minute: int = Field(default=120, alias="API_RATE_LIMIT_RPM")

    model_config = SettingsConfigDict(env_prefix="API_", extra="ignore", populate_by_name=True)


class EngineSettings(BaseSettings):
    """Main engine configuration."""
    env: str = Field(default="dev", alias="ENGINE_ENV")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_file: Optional[Path] = Field(default=Path("logs/engine.log"), alias="LOG_FILE")

    # Sub-configurations
    api: ApiConfig = Field(default_factory=ApiConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    heatmap: HeatmapConfig = Field(default_factory=HeatmapConfig)
    adaptive: AdaptiveConfig = Field(default_factory=AdaptiveConfig)
    struggle: StruggleConfig = Field(default_factory=StruggleConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)

    # Persistence
    database_path: Path = Field(default=Path("data/engine.sqlite"), alias="DATABASE_PATH")
    question_bank_path: Optional[Path] = Field(default=None, alias="QUESTION_BANK_PATH")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        populate_by_name=True,
        extra="allow"
    )

    @classmethod
    def load_from_yaml(cls, config_path: Optional[Path] = None) -> "EngineSettings":
        """Load settings from YAML file and merge with environment variables."""
        if config_path is None:
            config_path = Path("config/engine.yaml")

        config_dict: Dict[str, Any] = {}

        if config_path.exists():
            with open(config_path, "r", encoding="utf-8") as f:
                yaml_data = yaml.safe_load(f) or {}
                config_dict = yaml_data.get("engine", {})

        # Flatten api.rate_limit.requests_per_minute if present
        if "api" in config_dict and isinstance(config_dict["api"], dict):
            api_cfg = dict(config_dict["api"])
            rate_limit = api_cfg.pop("rate_limit", None)
            if isinstance(rate_limit, dict) and "requests_per_minute" in rate_limit:
                api_cfg["rate_limit_requests_per_minute"] = rate_limit["requests_per_minute"]
            config_dict["api"] = api_cfg

        return cls(**config_dict)


# Global settings instance
_settings: Optional[EngineSettings] = None


def get_settings() -> EngineSettings:
    """Get or create global settings instance."""
    global _settings
    if _settings is None:
        _settings = EngineSettings.load_from_yaml()
    return _settings


# Alias for convenience
settings = get_settings()
