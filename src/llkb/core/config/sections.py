"""Section models for config.yml.

Each section groups thresholds that were previously scattered as magic
numbers: extraction limits, retention windows, history retention, override
policy, analytics batching, and lock timing.
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class ConfigSection(BaseModel):
    """Base for config sections: camelCase on disk, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ExtractionConfig(ConfigSection):
    """Component extraction thresholds and predictive rate limits."""

    min_occurrences: int = Field(
        default=2,
        ge=1,
        description="Occurrences before a pattern is considered for reactive extraction.",
    )
    predictive_extraction: bool = Field(
        default=True,
        description="Enable speculative extraction of components before proven reuse.",
    )
    confidence_threshold: float = Field(
        default=0.7,
        ge=0.0,
        le=1.0,
        description="Minimum confidence for a lesson or component to be suggested.",
    )
    max_predictive_per_journey: int = Field(
        default=3,
        ge=0,
        description="Predictive extractions allowed per run.",
    )
    max_predictive_per_day: int = Field(
        default=10,
        ge=0,
        description="Predictive extractions allowed per UTC day, across all runs.",
    )
    max_total_components: int = Field(
        default=100,
        ge=1,
        description="Soft cap on active components. Exceeding it only warns.",
    )
    min_lines_for_extraction: int = Field(
        default=3,
        ge=1,
        description="Minimum non-blank lines a snippet needs to become a component.",
    )
    similarity_threshold: float = Field(
        default=0.8,
        ge=0.0,
        le=1.0,
        description="Similarity at or above which two snippets are near-duplicates.",
    )
    auto_extract_score: float = Field(
        default=15.0,
        ge=0.0,
        description="Extraction score at or above which a candidate is extracted now.",
    )
    consider_extract_score: float = Field(
        default=10.0,
        ge=0.0,
        description="Extraction score at or above which a candidate is worth considering.",
    )

    @model_validator(mode="after")
    def _validate_score_bounds(self) -> ExtractionConfig:
        if self.consider_extract_score > self.auto_extract_score:
            raise ValueError(
                f"consider_extract_score ({self.consider_extract_score}) must not "
                f"exceed auto_extract_score ({self.auto_extract_score})"
            )
        return self


class RetentionConfig(ConfigSection):
    """When lessons and components become stale."""

    max_lesson_age: int = Field(
        default=90,
        ge=1,
        description="Days without a success before a lesson is considered stale.",
    )
    min_success_rate: float = Field(
        default=0.6,
        ge=0.0,
        le=1.0,
        description="Success rate below which a lesson is a pruning candidate.",
    )
    archive_unused: int = Field(
        default=30,
        ge=1,
        description="Days a component may stay below min_component_uses before review.",
    )
    min_component_uses: int = Field(
        default=2,
        ge=0,
        description="Usage floor for components older than archive_unused days.",
    )


class HistoryConfig(ConfigSection):
    """Event log retention and write discipline."""

    retention_days: int = Field(
        default=365,
        ge=1,
        description="Days of history partitions kept by prune.",
    )
    locked_appends: bool = Field(
        default=False,
        description="Take the partition lock for every append. Enable on network "
        "filesystems without atomic small appends.",
    )


class InjectionConfig(ConfigSection):
    """How query results are ordered for callers."""

    prioritize_by_confidence: bool = Field(
        default=True,
        description="Break relevance ties by confidence.",
    )


class ScopesConfig(ConfigSection):
    """Which lesson scopes queries may return."""

    universal: bool = True
    framework_specific: bool = True
    app_specific: bool = True

    def allows(self, scope: str) -> bool:
        """Check whether a scope string is enabled."""
        if scope == "universal":
            return self.universal
        if scope.startswith("framework:"):
            return self.framework_specific
        return self.app_specific


class OverridesConfig(ConfigSection):
    """Handling of callers overriding a suggested pattern."""

    allow_user_override: bool = True
    log_overrides: bool = True
    flag_after_overrides: int = Field(
        default=3,
        ge=1,
        description="Overrides on one entity before it is flagged for human review.",
    )


class AnalyticsConfig(ConfigSection):
    """Analytics recompute batching."""

    recompute_every: int = Field(
        default=1,
        ge=1,
        description="Learning API mutations per analytics recompute.",
    )


class LockingConfig(ConfigSection):
    """Advisory lock timing for collection updates."""

    timeout_seconds: float = Field(default=5.0, gt=0.0)
    stale_after_seconds: float = Field(default=30.0, gt=0.0)
    poll_interval_seconds: float = Field(default=0.1, gt=0.0)
