"""
ExamGuard Configuration — pydantic-settings based.

All settings are read from environment variables or .env file.
Scoring and trend policy tables live in app.models.policy_models and are
passed to components at construction; the values here cover runtime knobs.
"""

from pydantic_settings import BaseSettings
from pydantic import Field


class Settings(BaseSettings):
    """Application-wide settings sourced from environment variables."""

    # ── Scoring cache / adaptive state ──
    scoring_cache_ttl_seconds: int = Field(
        default=300, description="Time-to-live for memoized severity scores"
    )
    adaptive_threshold_ttl_seconds: int = Field(
        default=86_400,
        description="Time-to-live for per (user, event type) adaptive thresholds",
    )

    # ── History ──
    history_capacity: int = Field(
        default=50, description="Max scores kept per user risk history"
    )
    history_retention_days: int = Field(
        default=30, description="Scores older than this are pruned from history"
    )
    event_retention_days: int = Field(
        default=90, description="Accepted violation events kept for trend analysis"
    )
    event_log_capacity: int = Field(
        default=100_000, description="Upper bound on events held in the event log"
    )

    # ── Queue ──
    queue_batch_size: int = Field(default=10, description="Events drained per batch")
    queue_batch_interval_ms: int = Field(
        default=100, description="Pause between batches in milliseconds"
    )
    queue_max_depth: int = Field(
        default=10_000,
        description="Queue depth above which a capacity alert is raised (events are never dropped)",
    )
    processed_event_ttl_seconds: int = Field(
        default=86_400,
        description="How long processed event ids are remembered for duplicate suppression",
    )

    # ── Trend analysis ──
    trend_analysis_interval_minutes: int = Field(
        default=30, description="Interval between periodic trend analysis runs"
    )
    pattern_retention_days: int = Field(
        default=30, description="Detected patterns older than this are pruned"
    )
    maintenance_interval_hours: int = Field(
        default=24, description="Interval between retention cleanup passes"
    )

    # ── Reports ──
    report_store_capacity: int = Field(
        default=1_000, description="Generated reports kept in memory, oldest dropped first"
    )

    # ── Server ──
    port: int = Field(default=5001, description="Server port")
    host: str = Field(default="0.0.0.0", description="Server bind host")
    cors_origins: list[str] = Field(
        default=["*"], description="Allowed CORS origins"
    )

    # ── Audit ──
    audit_log_path: str = Field(
        default="audit.jsonl", description="Path to JSON-lines security audit log"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
    }


# Singleton instance — imported by other modules
settings = Settings()
