"""
ARBOR CONFIG - Configuration Management

Configuration is loaded once from config/arbor.toml and handed to the
stores as a plain dataclass. Every value has a default, so a missing or
broken file degrades to defaults with a warning rather than an error.

Usage:
    from infrastructure.config import load_config

    config = load_config()                      # config/arbor.toml
    config = load_config("/etc/arbor.toml")     # explicit file
    store = TreeStore(config=config)

File layout:
    [tree]
    delimiter = "/"

    [reachability]
    stale_policy = "raise"      # or "block"
    auto_rebuild = "off"        # or "sync", "background"

    [logging]
    level = "INFO"
    mutation_log = false
    log_path = "./workspace/logs"
    buffer_size = 10000
"""
import logging
import tomllib
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from infrastructure.logger import LoggerConfig

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path(__file__).parent.parent / "config" / "arbor.toml"

STALE_POLICIES = ("raise", "block")
AUTO_REBUILD_MODES = ("off", "sync", "background")


@dataclass
class TreeConfig:
    """Settings for TreeStore."""
    delimiter: str = "/"


@dataclass
class ReachabilityConfig:
    """Settings for GraphReachability."""
    stale_policy: str = "raise"         # What query() does when not READY
    auto_rebuild: str = "off"           # Rebuild after every mutation?


@dataclass
class LoggingConfig:
    """Settings for module logging and the mutation log."""
    level: str = "INFO"
    mutation_log: bool = False          # Write mutation events as JSONL
    log_path: str = "./workspace/logs"
    buffer_size: int = 10000

    def to_logger_config(self) -> LoggerConfig:
        return LoggerConfig(
            enable_file_log=self.mutation_log,
            log_path=Path(self.log_path),
            buffer_size=self.buffer_size,
        )


@dataclass
class ArborConfig:
    """Complete configuration for the hierarchy engine."""
    tree: TreeConfig = field(default_factory=TreeConfig)
    reachability: ReachabilityConfig = field(default_factory=ReachabilityConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ArborConfig":
        """Build a config from parsed TOML, ignoring unknown keys."""
        def section(klass, name):
            raw = data.get(name, {}) or {}
            known = {k: v for k, v in raw.items() if k in klass.__dataclass_fields__}
            unknown = sorted(set(raw) - set(known))
            if unknown:
                warnings.warn(f"Ignoring unknown [{name}] keys: {unknown}")
            return klass(**known)

        return cls(
            tree=section(TreeConfig, "tree"),
            reachability=section(ReachabilityConfig, "reachability"),
            logging=section(LoggingConfig, "logging"),
        )

    def validate(self) -> List[str]:
        """
        Validate configuration for consistency.

        Returns:
            List of validation errors (empty if valid)
        """
        errors = []

        if not isinstance(self.tree.delimiter, str) or not self.tree.delimiter:
            errors.append("tree.delimiter must be a non-empty string")

        if self.reachability.stale_policy not in STALE_POLICIES:
            errors.append(
                f"reachability.stale_policy must be one of {STALE_POLICIES}, "
                f"got {self.reachability.stale_policy!r}"
            )

        if self.reachability.auto_rebuild not in AUTO_REBUILD_MODES:
            errors.append(
                f"reachability.auto_rebuild must be one of {AUTO_REBUILD_MODES}, "
                f"got {self.reachability.auto_rebuild!r}"
            )

        # getLevelName maps known names to their int value
        if not isinstance(logging.getLevelName(str(self.logging.level).upper()), int):
            errors.append(f"logging.level {self.logging.level!r} is not a logging level")

        if self.logging.buffer_size <= 0:
            errors.append("logging.buffer_size must be positive")

        return errors


def load_config(path: Optional[Union[str, Path]] = None) -> ArborConfig:
    """
    Load configuration from a TOML file.

    Falls back to defaults (with a warning) when the file is missing,
    unparsable or fails validation.

    Args:
        path: TOML file to read (default: config/arbor.toml)
    """
    config_path = Path(path) if path is not None else DEFAULT_CONFIG_PATH

    try:
        with open(config_path, "rb") as f:
            config = ArborConfig.from_dict(tomllib.load(f))
    except (OSError, tomllib.TOMLDecodeError, TypeError) as e:
        warnings.warn(f"Failed to load config from {config_path}, using defaults: {e}")
        return ArborConfig()

    errors = config.validate()
    if errors:
        warnings.warn(f"Invalid config in {config_path}, using defaults: {errors}")
        return ArborConfig()

    logger.debug(f"Loaded config from {config_path}")
    return config


def configure_logging(config: Optional[ArborConfig] = None) -> None:
    """Apply the configured level to the package loggers."""
    config = config or load_config()
    level = str(config.logging.level).upper()
    for name in ("core", "infrastructure", "arbor"):
        logging.getLogger(name).setLevel(level)
