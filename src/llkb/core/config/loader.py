"""Top-level LLKB configuration and config.yml loading."""

from __future__ import annotations

from pathlib import Path

import yaml
from pydantic import Field, ValidationError

from llkb.core.config.sections import (
    AnalyticsConfig,
    ConfigSection,
    ExtractionConfig,
    HistoryConfig,
    InjectionConfig,
    LockingConfig,
    OverridesConfig,
    RetentionConfig,
    ScopesConfig,
)
from llkb.core.constants import CONFIG_FILENAME
from llkb.core.errors import ConfigInvalidError
from llkb.core.logging import get_logger

_logger = get_logger("config")


class LLKBConfig(ConfigSection):
    """Complete LLKB configuration, as read from config.yml."""

    version: str = "1.0.0"
    enabled: bool = Field(default=True, description="Master switch for the subsystem.")
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)
    retention: RetentionConfig = Field(default_factory=RetentionConfig)
    history: HistoryConfig = Field(default_factory=HistoryConfig)
    injection: InjectionConfig = Field(default_factory=InjectionConfig)
    scopes: ScopesConfig = Field(default_factory=ScopesConfig)
    overrides: OverridesConfig = Field(default_factory=OverridesConfig)
    analytics: AnalyticsConfig = Field(default_factory=AnalyticsConfig)
    locking: LockingConfig = Field(default_factory=LockingConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> LLKBConfig:
        """Load configuration from a YAML file.

        Raises:
            ConfigInvalidError: If the file is unreadable, not YAML, or fails
                validation.
        """
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            raise ConfigInvalidError(f"Cannot read {path}: {e}") from e
        return cls.from_data(data, source=str(path))

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> LLKBConfig:
        """Load configuration from a YAML string."""
        try:
            data = yaml.safe_load(yaml_str)
        except yaml.YAMLError as e:
            raise ConfigInvalidError(f"Invalid YAML: {e}") from e
        return cls.from_data(data, source="<string>")

    @classmethod
    def from_data(cls, data: object, source: str) -> LLKBConfig:
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ConfigInvalidError(f"{source}: expected a mapping at top level")
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise ConfigInvalidError(f"{source}: {e}") from e

    def to_yaml(self) -> str:
        """Serialize in the on-disk camelCase format."""
        return yaml.safe_dump(
            self.model_dump(mode="json", by_alias=True), sort_keys=False
        )


def load_config(root: Path) -> LLKBConfig:
    """Load <root>/config.yml, falling back to defaults.

    A missing file silently yields defaults. A malformed or invalid file logs
    a config_invalid warning and yields defaults; the subsystem stays enabled.
    """
    path = root / CONFIG_FILENAME
    if not path.exists():
        _logger.debug("config_missing", path=str(path))
        return LLKBConfig()
    try:
        return LLKBConfig.from_yaml(path)
    except ConfigInvalidError as e:
        _logger.warning(
            "config_invalid",
            path=str(path),
            error=str(e),
            code=e.code.value if e.code else None,
        )
        return LLKBConfig()
