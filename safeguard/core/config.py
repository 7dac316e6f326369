"""
Configuration management for the Safeguard moderation service.

Two layers:
- Settings: process/environment settings (service URLs, database, logging)
- ModerationConfig: detection thresholds and pipeline behaviour, passed
  explicitly into the orchestrator, decision engine and incident handler
"""
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings with environment variable support."""

    # API Settings
    app_name: str = "Safeguard - Content Moderation Pipeline"
    version: str = "1.0.0"
    api_prefix: str = "/v1"
    log_level: str = os.getenv("LOG_LEVEL", "INFO")

    # Database Settings (audit log, evidence store, report outbox)
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./safeguard.db")

    # Detector model service
    model_service_url: str = os.getenv("MODEL_SERVICE_URL", "http://localhost:8001")

    # Collaborator services
    account_service_url: str = os.getenv("ACCOUNT_SERVICE_URL", "http://localhost:8002")
    authority_gateway_url: str = os.getenv("AUTHORITY_GATEWAY_URL", "http://localhost:8003")
    safety_alert_url: str = os.getenv("SAFETY_ALERT_URL", "http://localhost:8004")
    service_token: str = os.getenv("SERVICE_TOKEN", "")
    http_timeout_seconds: float = float(os.getenv("HTTP_TIMEOUT_SECONDS", "10.0"))

    # Task queue (authority report redelivery)
    redis_url: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    report_redelivery_interval_seconds: float = float(
        os.getenv("REPORT_REDELIVERY_INTERVAL_SECONDS", "300")
    )

    # Optional YAML file with ModerationConfig overrides
    moderation_config_file: Optional[str] = os.getenv("MODERATION_CONFIG_FILE")

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()


# ===== MODERATION THRESHOLDS =====

class NudityThresholds(BaseModel):
    """Explicit-nudity gates per content type. Public photos are stricter."""
    profile_photo: float = Field(default=0.6, ge=0.0, le=1.0)
    private_photo: float = Field(default=0.95, ge=0.0, le=1.0)
    other: float = Field(default=0.6, ge=0.0, le=1.0)


class TextThresholds(BaseModel):
    """Score gates for the text classifiers."""
    hate_speech: float = Field(default=0.4, ge=0.0, le=1.0)
    harassment: float = Field(default=0.5, ge=0.0, le=1.0)
    spam: float = Field(default=0.7, ge=0.0, le=1.0)


class ReviewTriggers(BaseModel):
    """Signals consumed by the user-context risk check."""
    report_threshold: int = Field(default=3, ge=1)
    ai_uncertainty: float = Field(default=0.5, ge=0.0, le=1.0)
    new_account_hours: float = Field(default=24.0, ge=0.0)
    new_user_content: bool = True


class ModerationConfig(BaseModel):
    """
    Thresholds and behaviour switches for one moderation pipeline.

    The CSAM floor and the age cutoffs are placeholders: production values
    must come from the detection provider's validated operating point.
    """
    nudity: NudityThresholds = Field(default_factory=NudityThresholds)
    text: TextThresholds = Field(default_factory=TextThresholds)
    review_triggers: ReviewTriggers = Field(default_factory=ReviewTriggers)

    # Child safety gates
    csam_confidence_floor: float = Field(default=0.1, ge=0.0, le=1.0)
    underage_age_threshold: float = Field(default=18.0, gt=0.0)
    underage_confidence_floor: float = Field(default=0.7, ge=0.0, le=1.0)
    mandatory_report_age: float = Field(default=16.0, gt=0.0)

    # User context
    low_trust_score: float = Field(default=30.0, ge=0.0, le=100.0)

    # Local text pattern scan
    pattern_scan_enabled: bool = True
    scam_min_pattern_groups: int = Field(default=2, ge=1, le=4)

    # Orchestration
    detector_timeout_seconds: float = Field(default=5.0, gt=0.0)
    detector_timeouts: Dict[str, float] = Field(default_factory=dict)
    skip_non_essential_on_critical: bool = True

    # Critical path
    report_max_attempts: int = Field(default=3, ge=1)
    report_backoff_seconds: float = Field(default=0.5, ge=0.0)
    alert_max_attempts: int = Field(default=2, ge=1)
    authority_contacts: Dict[str, str] = Field(default_factory=lambda: {
        "police": "101",
        "emergency": "999",
        "ceop": "https://www.ceop.police.uk/safety-centre/",
        "iwf": "https://www.iwf.org.uk/",
    })

    # Intake
    max_text_length: int = Field(default=10000, ge=1)

    def timeout_for(self, detector: str) -> float:
        """Per-call timeout for a detector, falling back to the default."""
        return self.detector_timeouts.get(detector, self.detector_timeout_seconds)


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _deep_merge(base[key], value)
        else:
            base[key] = value
    return base


def load_config_file(path: str) -> Dict[str, Any]:
    """Read ModerationConfig overrides from a YAML file."""
    with open(Path(path), "r") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Moderation config file {path} must contain a mapping")
    return data


def get_moderation_config(overrides: Dict[str, Any] = None) -> ModerationConfig:
    """
    Get moderation configuration with optional overrides.

    Defaults, then the YAML file named by MODERATION_CONFIG_FILE (if any),
    then ``overrides``. Nested sections are deep-merged.
    """
    base_config = ModerationConfig().model_dump()

    if settings.moderation_config_file:
        _deep_merge(base_config, load_config_file(settings.moderation_config_file))

    if overrides:
        _deep_merge(base_config, overrides)

    return ModerationConfig.model_validate(base_config)
