"""Configuration models for the pattern-learning store.

Pydantic models for loading and validating YAML configuration. A complete
configuration looks like::

    store:
      db_path: ~/.patternbank/learning.db
    confidence:
      success_rate: 0.1
      failure_rate: 0.15
    consolidation:
      prune_after_days: 90
      archive_after_days: 180
    namespaces:
      - name: projects
        parent: root
      - name: projects.ecommerce
        parent: projects
    logging:
      level: INFO
      format: json
"""

from __future__ import annotations

from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator, model_validator

# Default location following the ~/.<tool> convention
DEFAULT_STORE_PATH = Path.home() / ".patternbank" / "learning.db"


class StoreConfig(BaseModel):
    """Configuration for the SQLite store."""

    db_path: Path = Field(
        default=DEFAULT_STORE_PATH,
        description="Path to the SQLite database file",
    )
    busy_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=600.0,
        description="How long a writer waits for the database lock before failing",
    )
    require_registered_namespace: bool = Field(
        default=False,
        description="Reject pattern writes whose namespace has not been registered. "
        "When false, any well-formed namespace name is accepted.",
    )

    @field_validator("db_path")
    @classmethod
    def _expand_user(cls, v: Path) -> Path:
        return v.expanduser()


class ConfidenceConfig(BaseModel):
    """Learning rates for pattern confidence and causal-link blending.

    Pattern confidence moves by ``(1 - c) * success_rate`` on success and by
    ``c * failure_rate`` on failure. Causal links blend each observation in
    with weight ``causal_blend_weight``.
    """

    success_rate: float = Field(default=0.1, gt=0.0, le=1.0)
    failure_rate: float = Field(default=0.15, gt=0.0, le=1.0)
    initial_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Neutral prior for newly observed patterns and causal links",
    )
    causal_blend_weight: float = Field(default=0.1, gt=0.0, le=1.0)


class RetrievalConfig(BaseModel):
    """Defaults for pre-task pattern retrieval."""

    min_confidence: float = Field(default=0.3, ge=0.0, le=1.0)
    limit: int = Field(default=10, ge=1, le=1000)
    match_mode: Literal["substring", "exact", "tags", "similarity"] = Field(
        default="substring",
        description="How a task context is matched against stored pattern contexts",
    )
    similarity_threshold: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Minimum text similarity when match_mode is 'similarity'",
    )


class ConsolidationConfig(BaseModel):
    """Thresholds for the periodic merge / prune / archive pass."""

    prune_min_confidence: float = Field(
        default=0.3,
        ge=0.0,
        le=1.0,
        description="Patterns and causal links below this confidence are prune candidates",
    )
    prune_after_days: int = Field(
        default=90,
        ge=1,
        description="Prune candidates must be unused for at least this many days",
    )
    min_observations: int = Field(
        default=2,
        ge=0,
        description="Only prune records observed more than this many times, "
        "so a single unlucky failure never removes a pattern",
    )
    archive_after_days: int = Field(
        default=180,
        ge=1,
        description="Patterns unused for this many days move to the archive",
    )
    duplicate_threshold: float = Field(
        default=0.9,
        ge=0.0,
        le=1.0,
        description="Text similarity at or above which two patterns are merged",
    )

    @model_validator(mode="after")
    def _check_windows(self) -> ConsolidationConfig:
        if self.archive_after_days <= self.prune_after_days:
            raise ValueError(
                f"archive_after_days ({self.archive_after_days}) must exceed "
                f"prune_after_days ({self.prune_after_days})"
            )
        return self


class NamespaceConfig(BaseModel):
    """A namespace declared in configuration."""

    name: str = Field(min_length=1)
    parent: str | None = None
    description: str | None = None


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    format: Literal["json", "console"] = "console"
    file_path: Path | None = None
    max_file_size_mb: int = Field(default=10, gt=0, le=1000)
    backup_count: int = Field(default=3, ge=0, le=100)
    include_timestamps: bool = True
    include_context: bool = True


class PatternBankConfig(BaseModel):
    """Top-level configuration."""

    store: StoreConfig = Field(default_factory=StoreConfig)
    confidence: ConfidenceConfig = Field(default_factory=ConfidenceConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    consolidation: ConsolidationConfig = Field(default_factory=ConsolidationConfig)
    namespaces: list[NamespaceConfig] = Field(default_factory=list)
    logging: LogConfig = Field(default_factory=LogConfig)

    @model_validator(mode="after")
    def _check_unique_namespaces(self) -> PatternBankConfig:
        names = [ns.name for ns in self.namespaces]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate namespace names: {', '.join(duplicates)}")
        return self

    @classmethod
    def from_yaml(cls, path: Path) -> PatternBankConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data or {})

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> PatternBankConfig:
        """Load configuration from a YAML string."""
        data = yaml.safe_load(yaml_str)
        return cls.model_validate(data or {})


__all__ = [
    "DEFAULT_STORE_PATH",
    "ConfidenceConfig",
    "ConsolidationConfig",
    "LogConfig",
    "NamespaceConfig",
    "PatternBankConfig",
    "RetrievalConfig",
    "StoreConfig",
]
