"""Confidence scoring for lessons and components.

The confidence formula is:
    confidence = clamp(base × recency × success_factor × validation_boost, 0, 1)

Where:
    - base = min(occurrences / 10, 1.0)
    - recency = max(1 - days_since_last_success / 90 × 0.3, 0.7) once the
      entity has succeeded, else max(1 - days_since_creation / 30 × 0.5, 0.5)
    - success_factor = sqrt(success_rate)
    - validation_boost = 1.2 if human reviewed, else 1.0

The square root damps the effect of occasional failures on an otherwise
reliable pattern while still punishing systematic unreliability.

For components, total uses take the place of occurrences.
"""

from __future__ import annotations

import math
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from llkb.core.constants import (
    CONFIDENCE_HISTORY_RETENTION_DAYS,
    CONFIDENCE_OCCURRENCE_SATURATION,
    DECLINE_RATIO,
    DECLINE_WINDOW,
    HUMAN_REVIEW_BOOST,
    LOW_CONFIDENCE_THRESHOLD,
    MAX_CONFIDENCE_HISTORY_ENTRIES,
    RECENCY_MAX_PENALTY,
    RECENCY_WINDOW_DAYS,
    TREND_CHANGE_THRESHOLD,
    UNPROVEN_MAX_PENALTY,
    UNPROVEN_WINDOW_DAYS,
)
from llkb.learning.store.models import Component, ConfidenceHistoryEntry, Lesson
from llkb.utils.time import days_between, ensure_utc, utc_now

ConfidenceTrend = Literal["increasing", "decreasing", "stable", "unknown"]
Entity = Lesson | Component


@dataclass
class ConfidenceConfig:
    """Thresholds for review decisions.

    Attributes:
        review_threshold: Confidence below which an entity needs review.
        decline_ratio: Current confidence below mean × ratio is declining.
        decline_window: Trailing history entries used for the mean.
        min_component_uses: Usage floor for components past the age threshold.
        component_age_days: Age after which the usage floor applies.
    """

    review_threshold: float = LOW_CONFIDENCE_THRESHOLD
    decline_ratio: float = DECLINE_RATIO
    decline_window: int = DECLINE_WINDOW
    min_component_uses: int = 2
    component_age_days: float = 30.0


def calculate_success_rate(current_rate: float, occurrences: int, success: bool) -> float:
    """Fold one more outcome into a running success rate.

    Args:
        current_rate: Success rate over the previous occurrences.
        occurrences: Number of previous occurrences.
        success: Whether the new outcome succeeded.

    Returns:
        Updated rate, rounded to 2 decimals.
    """
    successes = current_rate * occurrences + (1 if success else 0)
    return round(successes / (occurrences + 1), 2)


def update_confidence_history(
    history: Sequence[ConfidenceHistoryEntry],
    value: float,
    now: datetime | None = None,
) -> list[ConfidenceHistoryEntry]:
    """Append a data point, dropping old entries and capping the length."""
    now = ensure_utc(now or utc_now())
    cutoff = now - timedelta(days=CONFIDENCE_HISTORY_RETENTION_DAYS)
    kept = [entry for entry in history if entry.date >= cutoff]
    kept.append(ConfidenceHistoryEntry(date=now, value=value))
    return kept[-MAX_CONFIDENCE_HISTORY_ENTRIES:]


def confidence_trend(history: Sequence[ConfidenceHistoryEntry]) -> ConfidenceTrend:
    """Compare the mean of the first third of the history with the last third."""
    if len(history) < 3:
        return "unknown"
    third = max(len(history) // 3, 1)
    first = [entry.value for entry in history[:third]]
    last = [entry.value for entry in history[-third:]]
    change = sum(last) / len(last) - sum(first) / len(first)
    if change > TREND_CHANGE_THRESHOLD:
        return "increasing"
    if change < -TREND_CHANGE_THRESHOLD:
        return "decreasing"
    return "stable"


class ConfidenceModel:
    """Calculates confidence scores and review flags for lessons and components."""

    def __init__(self, config: ConfidenceConfig | None = None) -> None:
        self.config = config or ConfidenceConfig()

    def calculate(
        self,
        occurrences: int,
        success_rate: float,
        created_at: datetime,
        last_success: datetime | None = None,
        human_reviewed: bool = False,
        now: datetime | None = None,
    ) -> float:
        """Calculate a confidence score from raw signals.

        Args:
            occurrences: Times the entity was seen or used.
            success_rate: Fraction of successful applications, 0.0 to 1.0.
            created_at: When the entity was first seen.
            last_success: When it last succeeded, None if never.
            human_reviewed: Whether a human validated it.
            now: Current time (defaults to now).

        Returns:
            Confidence from 0.0 to 1.0, rounded to 2 decimals.
        """
        now = now or utc_now()

        base = min(occurrences / CONFIDENCE_OCCURRENCE_SATURATION, 1.0)
        recency = self.calculate_recency_factor(created_at, last_success, now)
        success_factor = math.sqrt(min(max(success_rate, 0.0), 1.0))
        boost = HUMAN_REVIEW_BOOST if human_reviewed else 1.0

        raw = base * recency * success_factor * boost
        return round(min(max(raw, 0.0), 1.0), 2)

    def calculate_recency_factor(
        self,
        created_at: datetime,
        last_success: datetime | None,
        now: datetime,
    ) -> float:
        """Recency multiplier: gentle decay after success, steeper if never proven."""
        if last_success is not None:
            days = days_between(last_success, now)
            return max(1.0 - days / RECENCY_WINDOW_DAYS * RECENCY_MAX_PENALTY,
                       1.0 - RECENCY_MAX_PENALTY)
        days = days_between(created_at, now)
        return max(1.0 - days / UNPROVEN_WINDOW_DAYS * UNPROVEN_MAX_PENALTY,
                   1.0 - UNPROVEN_MAX_PENALTY)

    def calculate_for(self, entity: Entity, now: datetime | None = None) -> float:
        """Confidence for a stored lesson or component."""
        if isinstance(entity, Lesson):
            metrics = entity.metrics
            return self.calculate(
                occurrences=metrics.occurrences,
                success_rate=metrics.success_rate,
                created_at=metrics.first_seen,
                last_success=metrics.last_success,
                human_reviewed=entity.validation.human_reviewed,
                now=now,
            )
        component_metrics = entity.metrics
        return self.calculate(
            occurrences=component_metrics.total_uses,
            success_rate=component_metrics.success_rate,
            created_at=component_metrics.created_at,
            last_success=component_metrics.last_success,
            human_reviewed=entity.human_reviewed,
            now=now,
        )

    def refresh(self, entity: Entity, now: datetime | None = None) -> float:
        """Recalculate and store an entity's confidence, recording it in its history."""
        now = now or utc_now()
        value = self.calculate_for(entity, now)
        entity.metrics.confidence = value
        entity.metrics.confidence_history = update_confidence_history(
            entity.metrics.confidence_history, value, now
        )
        return value

    def detect_declining(self, entity: Entity) -> bool:
        """True when current confidence is well below its trailing mean.

        Needs at least two history entries to judge.
        """
        history = entity.metrics.confidence_history
        if len(history) < 2:
            return False
        window = history[-self.config.decline_window:]
        mean = sum(entry.value for entry in window) / len(window)
        return entity.metrics.confidence < mean * self.config.decline_ratio

    def is_low_usage(self, component: Component, now: datetime | None = None) -> bool:
        """True for components past the age threshold with too few uses."""
        now = now or utc_now()
        age = days_between(component.metrics.created_at, now)
        return (
            component.metrics.total_uses < self.config.min_component_uses
            and age > self.config.component_age_days
        )

    def needs_review(self, entity: Entity, now: datetime | None = None) -> bool:
        if entity.metrics.confidence < self.config.review_threshold:
            return True
        if self.detect_declining(entity):
            return True
        return isinstance(entity, Component) and self.is_low_usage(entity, now)


# Module-level convenience functions

def calculate_confidence(entity: Entity, now: datetime | None = None) -> float:
    """Calculate confidence with default settings."""
    return ConfidenceModel().calculate_for(entity, now)


def detect_declining_confidence(entity: Entity) -> bool:
    return ConfidenceModel().detect_declining(entity)


def needs_review(entity: Entity, now: datetime | None = None) -> bool:
    return ConfidenceModel().needs_review(entity, now)
