"""
Hierarchical YAML configuration loader for synchive.

Discovers config files by convention, merges them with "project wins"
semantics and interpolates environment variables in string values.

Usage:
    from synchive.config_loader import load_hierarchical_config

    raw = load_hierarchical_config()
"""

import logging
import os
import re
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SYNCHIVE_CONFIG"

# Matches ${VAR} and ${VAR:-default}
_ENV_VAR_PATTERN = re.compile(r"\$\{([^}:]+?)(?::-(.*?))?\}")


# ---------------------------------------------------------------------------
# Env var interpolation
# ---------------------------------------------------------------------------


def interpolate_env_vars(value: str) -> str:
    """Replace ``${VAR}`` and ``${VAR:-default}`` with environment values.

    An unset or empty variable without a default becomes ``""``.
    """

    def _replace(match: re.Match) -> str:
        env_val = os.environ.get(match.group(1))
        if env_val:
            return env_val
        return match.group(2) or ""

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _interpolate_recursive(obj: Any) -> Any:
    if isinstance(obj, str):
        return interpolate_env_vars(obj)
    if isinstance(obj, dict):
        return {k: _interpolate_recursive(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_interpolate_recursive(item) for item in obj]
    return obj


# ---------------------------------------------------------------------------
# Discovery
# ---------------------------------------------------------------------------


def discover_config_files() -> list[Path]:
    """Return existing config file paths in precedence order (highest first).

    Search order:
        1. ``SYNCHIVE_CONFIG`` env var (explicit single path)
        2. ``.synchive/config.yml`` in CWD
        3. ``.synchive/config.yaml`` in CWD
        4. ``~/.config/synchive/config.yml``
    """
    candidates: list[Path] = []

    env_path = os.environ.get(CONFIG_ENV_VAR)
    if env_path:
        candidates.append(Path(env_path).expanduser().resolve())

    cwd = Path.cwd()
    candidates.append(cwd / ".synchive" / "config.yml")
    candidates.append(cwd / ".synchive" / "config.yaml")
    candidates.append(Path.home() / ".config" / "synchive" / "config.yml")

    return [p for p in candidates if p.exists()]


_STARTER_CONFIG = """\
# synchive configuration
#
# Every setting can also be supplied through environment variables
# (SYNCHIVE_EMBED_CHECKSUM, SYNCHIVE_DELIMITERS, SYNCHIVE_EXTENSIONS, ...)
# or command line flags, which take precedence over this file.
#
# sync:
#   embed_checksum: false
#   delimiters: "[], (), {}"
#   synthesis_delimiter: "[]"
#   scan_without_delimiters: false
#   extensions: ".mkv, .mp4"
#   trust_filename_checksums: false
#   max_workers: 4
#
# logging:
#   level: INFO
#   file: null
#   format: text
"""


def resolve_config_path() -> Path:
    """Return the active config file, or the default project-level path."""
    existing = discover_config_files()
    if existing:
        return existing[0]
    return Path.cwd() / ".synchive" / "config.yml"


def ensure_config(target: Path | None = None) -> Path:
    """Create a commented starter config unless one already exists.

    Returns:
        Path to the config file (existing or newly created).
    """
    existing = discover_config_files()
    if existing:
        logger.debug("Config file already exists: %s", existing[0])
        return existing[0]

    config_path = target or resolve_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(_STARTER_CONFIG, encoding="utf-8")
    logger.info("Created starter config: %s", config_path)
    return config_path


# ---------------------------------------------------------------------------
# Hierarchical merge
# ---------------------------------------------------------------------------


def load_yaml_file(path: Path) -> Any:
    """Parse one YAML file with the safe loader."""
    with open(path, "r", encoding="utf-8") as fh:
        return yaml.safe_load(fh)


def load_hierarchical_config() -> dict[str, Any]:
    """Load and merge all discovered config files.

    Files are applied from lowest precedence to highest; each file's
    top-level keys replace those of earlier files.  Returns an empty dict
    when no config file exists.
    """
    paths = discover_config_files()
    if not paths:
        logger.debug("No config files found, using defaults")
        return {}

    merged: dict[str, Any] = {}
    for path in reversed(paths):
        logger.debug("Loading config: %s", path)
        try:
            data = load_yaml_file(path)
        except Exception:
            logger.exception("Failed to load config file %s", path)
            raise

        if isinstance(data, dict):
            merged.update(data)
        elif data is not None:
            logger.warning(
                "Config file %s has non-dict root (%s), skipping",
                path,
                type(data).__name__,
            )

    return _interpolate_recursive(merged)
