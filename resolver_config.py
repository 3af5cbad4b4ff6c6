"""Configuration and logging for the conflict resolver."""

import json
import logging
import os
from dataclasses import asdict, dataclass, fields
from pathlib import Path

from conflict_markers import CURRENT_LABEL, INCOMING_LABEL

logger = logging.getLogger(__name__)

CONFIG_DIR = Path.home() / ".config" / "resolve-conflicts"
CONFIG_FILE = CONFIG_DIR / "config.json"
DEFAULT_LOG_FILE = CONFIG_DIR / "resolve-conflicts.log"

LOG_FORMAT = "%(asctime)s | %(levelname)-7s | %(message)s"
LOG_DATEFMT = "%H:%M:%S"


@dataclass
class ResolverConfig:
    """User settings for scanning and resolving conflict blocks."""
    strict_blocks: bool = True          # Raise on malformed blocks instead of scanning to EOF
    rescan_delay: float = 0.001         # Seconds to wait after a document swap
    annotate_lines: bool = True         # Append side labels to marker lines
    incoming_label: str = INCOMING_LABEL
    current_label: str = CURRENT_LABEL
    log_file: str = str(DEFAULT_LOG_FILE)
    log_level: str = "INFO"

    def to_dict(self) -> dict:
        """Serialize to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "ResolverConfig":
        """Deserialize from dictionary.

        Unknown keys are ignored. A value of the wrong type, or a log level
        logging does not know, keeps that field's default.
        """
        defaults = cls()
        values = {}
        for f in fields(cls):
            if f.name not in data:
                continue
            value = _coerce(data[f.name], getattr(defaults, f.name))
            if f.name == "log_level" and value is not None:
                value = value.upper()
                if not isinstance(logging.getLevelName(value), int):
                    value = None
            if value is None:
                logger.warning("Ignoring invalid config value %s=%r", f.name, data[f.name])
                continue
            values[f.name] = value
        return cls(**values)


def _coerce(value, default):
    """Return ``value`` as the type of ``default``, or None if it is not one."""
    if isinstance(default, bool):
        return value if isinstance(value, bool) else None
    if isinstance(default, float):
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return None
        return float(value)
    return value if isinstance(value, type(default)) else None


def config_path() -> Path:
    """Config file location, overridable with RESOLVE_CONFLICTS_CONFIG."""
    override = os.environ.get("RESOLVE_CONFLICTS_CONFIG")
    return Path(override).expanduser() if override else CONFIG_FILE


def load_config(path: Path | None = None) -> ResolverConfig:
    """Load config from file, falling back to defaults."""
    path = path or config_path()
    if path.exists():
        try:
            data = json.loads(path.read_text())
            if isinstance(data, dict):
                return ResolverConfig.from_dict(data)
        except (json.JSONDecodeError, OSError, TypeError):
            pass
    return ResolverConfig()


def save_config(config: ResolverConfig, path: Path | None = None):
    """Save config to file."""
    path = path or config_path()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(config.to_dict(), indent=2))


def setup_logging(config: ResolverConfig) -> logging.Logger:
    """Route engine logs to a file; the TUI owns the terminal."""
    log_file = Path(config.log_file).expanduser()
    log_file.parent.mkdir(parents=True, exist_ok=True)

    root = logging.getLogger()
    root.setLevel(getattr(logging, config.log_level.upper(), logging.INFO))
    for handler in list(root.handlers):
        if isinstance(handler, logging.FileHandler) and Path(handler.baseFilename) == log_file.resolve():
            return root

    handler = logging.FileHandler(log_file, mode="a")
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root.addHandler(handler)
    return root
