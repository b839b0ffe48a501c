"""Rate limiting for predictive component extraction.

Predictive extraction creates components before a pattern has proven reuse,
so it is bounded to keep the store from growing without limit. Checks run in
a fixed order and stop at the first one that blocks:

1. predictiveExtraction flag
2. per-run cap (RunContext.predictive_extractions)
3. per-day cap (today's predictive component_extracted history events)
4. total component soft cap (warning only)
5. near-duplicate of an existing component (suggests the existing id)
6. minimum snippet size

Reactive extraction skips checks 1-4. It is gated instead on how often the
snippet was seen (extraction.minOccurrences) and on its extraction score:

    score = occurrences * 3 + distinct_runs * 4 + min(lines, 10)

A score of at least extraction.autoExtractScore (15) extracts; at least
considerExtractScore (10) is reported as worth considering.

Run- and day-limited candidates are tagged in components.json rather than
discarded, so a later batch pass can extract them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum

from llkb.core.config import LLKBConfig
from llkb.core.errors import InvalidInputError
from llkb.core.logging import get_logger
from llkb.learning.history import ExtractionDeferredEvent, HistoryLog
from llkb.learning.similarity import count_code_lines, find_near_duplicates
from llkb.learning.store import (
    Category,
    Collection,
    ComponentsFile,
    DeferredCandidate,
    KnowledgeStore,
    invalid_scope_message,
    is_valid_scope,
    next_entity_id,
)
from llkb.utils.time import utc_now

_logger = get_logger("rate_limiter")


@dataclass
class RunContext:
    """Per-run state passed explicitly by the caller.

    Attributes:
        run_id: Identifier of the run (e.g., a journey id).
        tool: Name of the calling tool, recorded in history.
        predictive_extractions: Predictive extractions made in this run so far.
    """

    run_id: str
    tool: str = "llkb"
    predictive_extractions: int = 0

    def record_extraction(self) -> None:
        self.predictive_extractions += 1


class DecisionCode(str, Enum):
    """Why an extraction was allowed or held back."""

    OK = "ok"
    DISABLED = "disabled"
    RUN_LIMIT = "run_limit"
    DAILY_LIMIT = "daily_limit"
    DUPLICATE = "duplicate"
    TOO_SMALL = "too_small"
    TOO_FEW_OCCURRENCES = "too_few_occurrences"
    LOW_SCORE = "low_score"


DEFERRABLE_CODES = frozenset({DecisionCode.RUN_LIMIT, DecisionCode.DAILY_LIMIT})


class Recommendation(str, Enum):
    EXTRACT_NOW = "EXTRACT_NOW"
    CONSIDER = "CONSIDER"
    SKIP = "SKIP"


@dataclass
class ExtractionDecision:
    """Result of an extraction check, always carrying a readable reason.

    Attributes:
        extract: Whether extraction may proceed.
        reason: Human-readable explanation, e.g. "daily limit reached (10/10)".
        code: Machine-readable reason.
        duplicate_of: Id of the existing component to reuse instead.
        similarity: Similarity to duplicate_of.
        warnings: Non-blocking concerns (e.g., soft cap exceeded).
        score: Extraction score, for reactive candidates.
        recommendation: What the score suggests, for reactive candidates.
    """

    extract: bool
    reason: str
    code: DecisionCode
    duplicate_of: str | None = None
    similarity: float | None = None
    warnings: list[str] = field(default_factory=list)
    score: float | None = None
    recommendation: Recommendation | None = None

    @property
    def deferrable(self) -> bool:
        """Whether a later, less constrained pass could extract this candidate."""
        return self.code in DEFERRABLE_CODES


@dataclass
class ExtractionCandidate:
    """A snippet proposed for extraction as a component.

    Only code is required; the rest describes the component if it is created.
    occurrences and distinct_runs say how often, and in how many runs, the
    caller saw the snippet duplicated. Only reactive extraction uses them.
    """

    code: str
    name: str | None = None
    category: Category | None = None
    description: str = ""
    scope: str = "app-specific"
    module_path: str = ""
    import_path: str = ""
    signature: str = ""
    usage_examples: list[str] = field(default_factory=list)
    related_lessons: list[str] = field(default_factory=list)
    occurrences: int = 1
    distinct_runs: int = 1

    def __post_init__(self) -> None:
        if self.category is Category.QUIRK:
            raise ValueError("components cannot have category 'quirk'")

    def validate(self) -> None:
        """Check the candidate can become a component.

        Raises:
            InvalidInputError: If a field would make an invalid component.
        """
        if not self.code.strip():
            raise InvalidInputError("candidate code must not be empty")
        if not is_valid_scope(self.scope):
            raise InvalidInputError(invalid_scope_message(self.scope))
        if self.occurrences < 1 or self.distinct_runs < 1:
            raise InvalidInputError("occurrences and distinct_runs must be at least 1")


def extraction_score(occurrences: int, distinct_runs: int, lines: int) -> float:
    """Score a duplicated pattern: repetition, spread across runs, and size."""
    return occurrences * 3 + distinct_runs * 4 + min(lines, 10)


class RateLimiter:
    """Decides whether a candidate snippet may become a component now."""

    def __init__(
        self,
        store: KnowledgeStore,
        history: HistoryLog,
        config: LLKBConfig | None = None,
    ) -> None:
        self.store = store
        self.history = history
        self.config = config or LLKBConfig()

    def should_extract_predictively(
        self,
        code: str,
        run: RunContext,
        components: ComponentsFile | None = None,
        now: datetime | None = None,
    ) -> ExtractionDecision:
        """Run all six checks for a speculative extraction."""
        return self.check_candidate(code, run, predictive=True, components=components, now=now)

    def check_candidate(
        self,
        code: str,
        run: RunContext,
        predictive: bool = True,
        components: ComponentsFile | None = None,
        now: datetime | None = None,
        occurrences: int = 1,
        distinct_runs: int = 1,
    ) -> ExtractionDecision:
        """Check a candidate.

        Reactive extraction skips the rate checks (1-4) and must clear the
        occurrence floor and the auto-extract score instead.

        Args:
            code: Candidate source.
            run: The calling run's context.
            predictive: Whether this is a speculative extraction.
            components: Current components, if the caller already loaded them.
            now: Current time (defaults to now).
            occurrences: Times the snippet was seen (reactive only).
            distinct_runs: Runs the snippet was seen in (reactive only).
        """
        extraction = self.config.extraction
        warnings: list[str] = []

        if predictive:
            if not extraction.predictive_extraction:
                return ExtractionDecision(False, "disabled in config", DecisionCode.DISABLED)

            run_cap = extraction.max_predictive_per_journey
            if run.predictive_extractions >= run_cap:
                return ExtractionDecision(
                    False,
                    f"per-run limit reached ({run.predictive_extractions}/{run_cap})",
                    DecisionCode.RUN_LIMIT,
                )

            day_cap = extraction.max_predictive_per_day
            today = self.history.count_extractions_today(now=now)
            if today >= day_cap:
                return ExtractionDecision(
                    False,
                    f"daily limit reached ({today}/{day_cap})",
                    DecisionCode.DAILY_LIMIT,
                )

        if components is None:
            components = self.store.load_components()
        active = components.active()

        if predictive and len(active) >= extraction.max_total_components:
            message = (
                f"total component soft cap exceeded "
                f"({len(active)}/{extraction.max_total_components})"
            )
            warnings.append(message)
            _logger.warning(
                "component_soft_cap_exceeded",
                active=len(active),
                cap=extraction.max_total_components,
            )

        matches = find_near_duplicates(
            code,
            {component.id: component.code for component in active},
            extraction.similarity_threshold,
        )
        if matches:
            best = matches[0]
            return ExtractionDecision(
                False,
                f"near-duplicate of {best.id} (similarity {best.similarity:.2f})",
                DecisionCode.DUPLICATE,
                duplicate_of=best.id,
                similarity=best.similarity,
                warnings=warnings,
            )

        lines = count_code_lines(code)
        min_lines = extraction.min_lines_for_extraction
        if lines < min_lines:
            return ExtractionDecision(
                False,
                f"below minimum size ({lines} < {min_lines} lines)",
                DecisionCode.TOO_SMALL,
                warnings=warnings,
            )

        if not predictive:
            return self._score_reactive(occurrences, distinct_runs, lines, warnings)
        return ExtractionDecision(True, "ok", DecisionCode.OK, warnings=warnings)

    def _score_reactive(
        self,
        occurrences: int,
        distinct_runs: int,
        lines: int,
        warnings: list[str],
    ) -> ExtractionDecision:
        extraction = self.config.extraction
        score = extraction_score(occurrences, distinct_runs, lines)
        recommendation = self.recommend(score)
        if occurrences < extraction.min_occurrences:
            return ExtractionDecision(
                False,
                f"seen {occurrences} time(s), needs {extraction.min_occurrences}",
                DecisionCode.TOO_FEW_OCCURRENCES,
                warnings=warnings,
                score=score,
                recommendation=recommendation,
            )
        if recommendation is not Recommendation.EXTRACT_NOW:
            return ExtractionDecision(
                False,
                f"extraction score {score:g} below {extraction.auto_extract_score:g} "
                f"({recommendation.value.lower()})",
                DecisionCode.LOW_SCORE,
                warnings=warnings,
                score=score,
                recommendation=recommendation,
            )
        return ExtractionDecision(
            True,
            "ok",
            DecisionCode.OK,
            warnings=warnings,
            score=score,
            recommendation=recommendation,
        )

    def recommend(self, score: float) -> Recommendation:
        extraction = self.config.extraction
        if score >= extraction.auto_extract_score:
            return Recommendation.EXTRACT_NOW
        if score >= extraction.consider_extract_score:
            return Recommendation.CONSIDER
        return Recommendation.SKIP

    # ─── Deferral ────────────────────────────────────────────────────────

    def defer(
        self,
        candidate: ExtractionCandidate,
        decision: ExtractionDecision,
        run: RunContext,
    ) -> DeferredCandidate | None:
        """Tag a rate-limited candidate for a later pass.

        Candidates blocked for other reasons (disabled, duplicate, too small)
        are not tagged; a later pass would reach the same answer.

        Returns:
            The stored candidate (existing one if the same code was already
            deferred), or None if the decision is not deferrable.

        Raises:
            StoreError: If components.json cannot be updated.
        """
        if not decision.deferrable:
            return None

        def tag(data: ComponentsFile) -> DeferredCandidate:
            for existing in data.deferred:
                if existing.code == candidate.code:
                    return existing
            deferred = DeferredCandidate(
                id=next_entity_id("D", (d.id for d in data.deferred)),
                name=candidate.name,
                code=candidate.code,
                category=candidate.category,
                reason=decision.reason,
                reason_code=decision.code.value,
                run_id=run.run_id,
                deferred_at=utc_now(),
            )
            data.deferred.append(deferred)
            return deferred

        deferred: DeferredCandidate = self.store.update_with_lock(
            Collection.COMPONENTS, tag
        ).value

        _logger.info(
            "extraction_deferred",
            candidate_id=deferred.id,
            reason=decision.reason,
            run_id=run.run_id,
        )
        self.history.append(
            ExtractionDeferredEvent(
                entity_id=deferred.id,
                run_id=run.run_id,
                tool=run.tool,
                summary=f"Deferred extraction: {decision.reason}",
                reason_code=decision.code.value,
            )
        )
        return deferred

    def pending_deferred(self) -> list[DeferredCandidate]:
        return list(self.store.load_components().deferred)
