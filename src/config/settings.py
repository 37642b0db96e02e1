# src/config/settings.py — v2
"""Typed configuration loaded from .env via pydantic-settings.

Single source of truth for deployment-specific settings: the generative
model, self-repair tuning, optional evaluation extensions and logging.
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ConfigurationError(Exception):
    """Raised when configuration is internally inconsistent."""


class Settings(BaseSettings):
    """Application settings loaded from .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # === Generative model ===
    llm_provider: Literal["none", "ollama", "openai"] = "none"
    llm_model: str = "phi3"
    llm_max_tokens: int = 512
    ollama_base_url: str = "http://localhost:11434"
    openai_api_key: str = ""
    openai_base_url: str = ""

    # === Self-repair ===
    repair_expansion_step: int = 2
    repair_expansion_cap: int = 30
    repair_minutes_factor: float = 0.9

    # === Evaluation ===
    evaluate_all_steps: bool = False
    alignment_check_enabled: bool = False
    alignment_min_coverage: float = 0.5
    alignment_min_model_score: int = 70

    # === Tools ===
    tool_timeout_seconds: float | None = None

    # === Logging ===
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["json", "text"] = "text"
    log_file: Path | None = None
    log_rotation: str = "10MB"
    log_retention: int = 5

    # --- Validators ---

    @field_validator("repair_minutes_factor")
    @classmethod
    def validate_minutes_factor(cls, v: float) -> float:
        if not 0.0 < v < 1.0:
            raise ValueError("repair_minutes_factor must be between 0 and 1 (exclusive)")
        return v

    @field_validator("alignment_min_coverage")
    @classmethod
    def validate_min_coverage(cls, v: float) -> float:
        if not 0.0 <= v <= 1.0:
            raise ValueError("alignment_min_coverage must be within [0, 1]")
        return v

    @field_validator("alignment_min_model_score")
    @classmethod
    def validate_min_model_score(cls, v: int) -> int:
        if not 0 <= v <= 100:
            raise ValueError("alignment_min_model_score must be within [0, 100]")
        return v

    @model_validator(mode="after")
    def validate_config_consistency(self) -> Settings:
        """Validate cross-field consistency rules."""
        errors: list[str] = []

        if self.llm_provider == "openai" and not (self.openai_api_key or self.openai_base_url):
            errors.append("LLM_PROVIDER=openai requires OPENAI_API_KEY or OPENAI_BASE_URL")

        if self.repair_expansion_step < 1:
            errors.append("REPAIR_EXPANSION_STEP must be >= 1")

        if self.repair_expansion_cap < 0:
            errors.append("REPAIR_EXPANSION_CAP must be >= 0")

        if self.tool_timeout_seconds is not None and self.tool_timeout_seconds <= 0:
            errors.append("TOOL_TIMEOUT_SECONDS must be positive")

        if errors:
            raise ConfigurationError("; ".join(errors))

        return self


def load_settings(**overrides: object) -> Settings:
    """Load settings from .env with optional overrides.

    Raises:
        ConfigurationError: If configuration is internally inconsistent.
    """
    return Settings(**overrides)  # type: ignore[arg-type]
