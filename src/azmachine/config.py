"""Driver configuration.

Settings that are not part of a machine class: polling cadence, operation
deadline, marketplace policy and logging. Stored as TOML, read with tomli,
and overridable through AZMACHINE_* environment variables.

Lookup order (later wins):
    1. Built-in defaults
    2. ~/.azmachine/config.toml, or the file passed explicitly
    3. Environment variables
"""

import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

import tomli

logger = logging.getLogger(__name__)

ENV_PREFIX = "AZMACHINE_"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when configuration cannot be loaded or is invalid."""

    pass


@dataclass
class DriverConfig:
    """azmachine driver configuration."""

    poll_interval_seconds: float = 5.0
    operation_timeout_seconds: float = 1800.0
    accept_marketplace_terms: bool = False
    max_parallel_deletions: int = 8
    log_level: str = "INFO"

    def __post_init__(self):
        for name in ("poll_interval_seconds", "operation_timeout_seconds"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConfigError(f"{name} must be a number, got {value!r}")
        if isinstance(self.max_parallel_deletions, bool) or not isinstance(
            self.max_parallel_deletions, int
        ):
            raise ConfigError(
                f"max_parallel_deletions must be an integer, got {self.max_parallel_deletions!r}"
            )
        if not isinstance(self.accept_marketplace_terms, bool):
            raise ConfigError(
                "accept_marketplace_terms must be a boolean, "
                f"got {self.accept_marketplace_terms!r}"
            )
        if not isinstance(self.log_level, str):
            raise ConfigError(f"log_level must be a string, got {self.log_level!r}")

        if self.poll_interval_seconds <= 0:
            raise ConfigError("poll_interval_seconds must be greater than 0")
        if self.operation_timeout_seconds < 0:
            raise ConfigError("operation_timeout_seconds must not be negative")
        if self.max_parallel_deletions < 1:
            raise ConfigError("max_parallel_deletions must be at least 1")
        self.log_level = self.log_level.upper()
        if self.log_level not in VALID_LOG_LEVELS:
            raise ConfigError(
                f"log_level must be one of {', '.join(VALID_LOG_LEVELS)}, got {self.log_level}"
            )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "DriverConfig":
        """Create from dictionary, rejecting unknown keys."""
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigError(f"Unknown configuration key(s): {', '.join(unknown)}")
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigError(f"Invalid configuration: {e}") from e


def _coerce(raw: str, target: type, name: str) -> Any:
    if target is bool:
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ConfigError(f"{name} must be a boolean, got {raw!r}")
    try:
        return target(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a {target.__name__}, got {raw!r}") from e


class ConfigManager:
    """Load DriverConfig from TOML and the environment."""

    DEFAULT_CONFIG_DIR = Path.home() / ".azmachine"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    _FIELD_TYPES = {
        "poll_interval_seconds": float,
        "operation_timeout_seconds": float,
        "accept_marketplace_terms": bool,
        "max_parallel_deletions": int,
        "log_level": str,
    }

    @classmethod
    def read_file(cls, path: Path) -> dict[str, Any]:
        """Read a TOML config file.

        Args:
            path: Config file path

        Returns:
            Parsed settings (the ``[driver]`` table if present, else the top level)

        Raises:
            ConfigError: If the file cannot be read or parsed
        """
        try:
            with open(path, "rb") as f:
                data = tomli.load(f)
        except OSError as e:
            raise ConfigError(f"Failed to read config file {path}: {e}") from e
        except tomli.TOMLDecodeError as e:
            raise ConfigError(f"Invalid TOML in {path}: {e}") from e
        section = data.get("driver", data)
        if not isinstance(section, dict):
            raise ConfigError(f"[driver] in {path} must be a table")
        return dict(section)

    @classmethod
    def env_overrides(cls, environ: dict[str, str] | None = None) -> dict[str, Any]:
        """Settings given as AZMACHINE_<FIELD> environment variables."""
        environ = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name, target in cls._FIELD_TYPES.items():
            env_name = f"{ENV_PREFIX}{name.upper()}"
            if env_name in environ:
                overrides[name] = _coerce(environ[env_name], target, env_name)
        return overrides

    @classmethod
    def load_config(
        cls, path: str | Path | None = None, environ: dict[str, str] | None = None
    ) -> DriverConfig:
        """Load configuration.

        Args:
            path: Explicit config file; must exist if given
            environ: Environment to read overrides from (default: os.environ)

        Returns:
            DriverConfig

        Raises:
            ConfigError: If an explicit file is missing or any value is invalid
        """
        data: dict[str, Any] = {}
        if path is not None:
            config_path = Path(path).expanduser()
            if not config_path.exists():
                raise ConfigError(f"Config file not found: {config_path}")
            data.update(cls.read_file(config_path))
        elif cls.DEFAULT_CONFIG_FILE.exists():
            logger.debug(f"Loading config from {cls.DEFAULT_CONFIG_FILE}")
            data.update(cls.read_file(cls.DEFAULT_CONFIG_FILE))

        data.update(cls.env_overrides(environ))
        return DriverConfig.from_dict(data)


__all__ = ["ConfigError", "ConfigManager", "DriverConfig"]
