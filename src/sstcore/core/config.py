"""Configuration management for the compliance core.

Loads configuration from environment variables using Pydantic models.
Provides sensible defaults for all settings while allowing override via
environment.

Provides:
- Config: Pydantic model with all application settings
- load_config: Factory function to create Config instance
"""

import os

from pydantic import BaseModel, Field, field_validator


def _env_thresholds() -> list[int]:
    raw = os.getenv("SST_RISK_TIER_THRESHOLDS", "5,10,15,20")
    return [int(part) for part in raw.split(",") if part.strip()]


def _env_optional_float(name: str) -> float | None:
    raw = os.getenv(name, "").strip()
    return float(raw) if raw else None


class Config(BaseModel):
    """Application configuration loaded from environment.

    Attributes:
        database_url: SQLAlchemy database URL for the reference repository
        risk_tier_thresholds: Inclusive upper bounds of Trivial, Tolerable,
            Moderado and Importante; anything above the last is Intolerable
        training_passing_score: Minimum score (inclusive) that approves a participant
        training_max_score: Highest score a participant can receive
        training_max_reopens: How many times a completed session may be reopened
        training_sign_only_if_approved: Only approved participants may sign attendance
        signature_min_base64_length: Minimum payload size of a non-blank signature image
        signed_url_ttl_seconds: Lifetime of signed URLs for private blobs
        blob_signing_secret: HMAC secret for the in-memory blob store's signed URLs
        exam_expiry_warning_days: Days before expiry at which an exam is flagged
        repository_timeout_seconds: Default deadline for repository calls (None = no deadline)
    """

    # Persistence
    database_url: str = Field(
        default_factory=lambda: os.getenv("SST_DATABASE_URL", "sqlite+aiosqlite:///sstcore.db")
    )

    # Risk matrix
    risk_tier_thresholds: list[int] = Field(default_factory=_env_thresholds)

    # Training
    training_passing_score: int = Field(
        default_factory=lambda: int(os.getenv("SST_TRAINING_PASSING_SCORE", "11"))
    )
    training_max_score: int = Field(default=20)
    training_max_reopens: int = Field(
        default_factory=lambda: int(os.getenv("SST_TRAINING_MAX_REOPENS", "1"))
    )
    training_sign_only_if_approved: bool = Field(
        default_factory=lambda: os.getenv("SST_TRAINING_SIGN_ONLY_IF_APPROVED", "false").lower()
        in ("1", "true", "yes")
    )

    # Signatures and blobs
    signature_min_base64_length: int = Field(default=800)
    signed_url_ttl_seconds: int = Field(default=600)  # 10 minutes, private bucket
    blob_signing_secret: str = Field(
        default_factory=lambda: os.getenv("SST_BLOB_SIGNING_SECRET", "dev-secret")
    )

    # Medical exams
    exam_expiry_warning_days: int = Field(default=30)

    # Repository calls
    repository_timeout_seconds: float | None = Field(
        default_factory=lambda: _env_optional_float("SST_REPOSITORY_TIMEOUT")
    )

    @field_validator("risk_tier_thresholds")
    @classmethod
    def _thresholds_strictly_increasing(cls, value: list[int]) -> list[int]:
        if len(value) != 4:
            raise ValueError("risk_tier_thresholds needs exactly 4 upper bounds")
        if any(b <= a for a, b in zip(value, value[1:])):
            raise ValueError("risk_tier_thresholds must be strictly increasing")
        return value

    @field_validator("training_max_reopens")
    @classmethod
    def _non_negative(cls, value: int) -> int:
        if value < 0:
            raise ValueError("training_max_reopens cannot be negative")
        return value


def load_config() -> Config:
    """Load configuration from environment.

    Creates a Config instance with values from environment variables,
    falling back to defaults for any unset values.

    Returns:
        Populated Config instance
    """
    return Config()
