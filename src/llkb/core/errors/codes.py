"""Error codes for LLKB operations.

Error Code Taxonomy
===================

**L0xx - Store Errors**
    Failures reading or writing the JSON collections. Fatal to the
    requesting operation; surfaced to callers as explicit failures.

    | Code | Name | Caller action |
    |------|------|---------------|
    | L001 | LOCK_TIMEOUT | Retry later or abort |
    | L002 | CORRUPT_DATA | Repair or restore the file by hand |
    | L003 | STORE_WRITE_FAILED | Check disk space / permissions |

**L1xx - Configuration Errors**
    Problems with config.yml. Non-fatal: defaults are used.

    | Code | Name | Caller action |
    |------|------|---------------|
    | L101 | CONFIG_INVALID | Fix config.yml |

**L2xx - History Errors**
    Audit trail failures. Non-fatal: logged as warnings.

    | Code | Name | Caller action |
    |------|------|---------------|
    | L201 | HISTORY_WRITE_FAILED | None required |

**L3xx - Learning API Errors**
    Request-level failures returned in a LearningResult.

    | Code | Name | Caller action |
    |------|------|---------------|
    | L301 | ENTITY_NOT_FOUND | Check the id; archived entities are excluded |
    | L302 | OVERRIDES_DISABLED | Enable overrides.allowUserOverride |
    | L303 | LLKB_DISABLED | Set enabled: true in config.yml |
    | L304 | INVALID_INPUT | Fix the request fields |

**L4xx - Extraction Control**
    Not errors: normal control flow reported with a reason.

    | Code | Name | Caller action |
    |------|------|---------------|
    | L401 | RATE_LIMITED | Defer, or raise the limits in config |
"""

from __future__ import annotations

from enum import Enum


class ErrorCode(str, Enum):
    """Stable identifiers for LLKB failure kinds.

    Error codes are organized by category using numeric prefixes:
    - L0xx: Store errors
    - L1xx: Configuration errors
    - L2xx: History errors
    - L3xx: Learning API errors
    - L4xx: Extraction control outcomes
    """

    # L0xx: Store errors
    LOCK_TIMEOUT = "L001"
    """Advisory lock could not be acquired within the wait budget."""

    CORRUPT_DATA = "L002"
    """A collection file could not be parsed or failed schema validation."""

    STORE_WRITE_FAILED = "L003"
    """An atomic save could not be completed."""

    # L1xx: Configuration errors
    CONFIG_INVALID = "L101"
    """config.yml is malformed or contains invalid values."""

    # L2xx: History errors
    HISTORY_WRITE_FAILED = "L201"
    """An event could not be appended to the history log."""

    # L3xx: Learning API errors
    ENTITY_NOT_FOUND = "L301"
    """No active lesson or component has the requested id."""

    OVERRIDES_DISABLED = "L302"
    """User overrides are disabled in configuration."""

    LLKB_DISABLED = "L303"
    """The knowledge base is switched off in configuration."""

    INVALID_INPUT = "L304"
    """A request field (e.g. a scope) cannot be stored."""

    # L4xx: Extraction control
    RATE_LIMITED = "L401"
    """Predictive extraction was deferred by a rate limit."""

    @property
    def category(self) -> str:
        """High-level category derived from the numeric prefix."""
        prefix = self.value[1]
        return {
            "0": "store",
            "1": "config",
            "2": "history",
            "3": "api",
            "4": "extraction",
        }.get(prefix, "unknown")
