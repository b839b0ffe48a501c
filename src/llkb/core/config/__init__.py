"""Configuration models for LLKB.

Pydantic models for config.yml. Keys are accepted in camelCase (the on-disk
format) or snake_case. All models are re-exported from this ``__init__``.
"""

from llkb.core.config.loader import LLKBConfig, load_config
from llkb.core.config.sections import (
    AnalyticsConfig,
    ExtractionConfig,
    HistoryConfig,
    InjectionConfig,
    LockingConfig,
    OverridesConfig,
    RetentionConfig,
    ScopesConfig,
)

__all__ = [
    "AnalyticsConfig",
    "ExtractionConfig",
    "HistoryConfig",
    "InjectionConfig",
    "LLKBConfig",
    "LockingConfig",
    "OverridesConfig",
    "RetentionConfig",
    "ScopesConfig",
    "load_config",
]
