"""Run configuration resolution.

Builds the immutable ``RunConfiguration`` snapshot from CLI arguments,
environment variables, .env files and the YAML ``sync:`` section.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    SYNCHIVE_EMBED_CHECKSUM: Embed checksums in destination names (true/false)
    SYNCHIVE_DELIMITERS: Recognised delimiter pairs, e.g. "[], (), {}"
    SYNCHIVE_SYNTHESIS_DELIMITER: Pair used when embedding, e.g. "[]"
    SYNCHIVE_SCAN_WITHOUT_DELIMITERS: Accept bare checksum tokens (true/false)
    SYNCHIVE_EXTENSIONS: Extensions eligible for embedding, e.g. ".mkv, .mp4"
    SYNCHIVE_TRUST_FILENAME_CHECKSUMS: Enable the filename fast path (true/false)
    SYNCHIVE_MAX_WORKERS: Hashing pool size (1-32)
"""

import logging
import os
from typing import Any

from pydantic import ValidationError

from .config_schema import RunConfiguration, SyncSettings
from .errors import ConfigurationError

logger = logging.getLogger(__name__)

# field name -> (env var, YAML key)
_SOURCES: dict[str, tuple[str, str]] = {
    "embed_checksum_in_filename": (
        "SYNCHIVE_EMBED_CHECKSUM",
        "embed_checksum",
    ),
    "recognized_delimiters": ("SYNCHIVE_DELIMITERS", "delimiters"),
    "synthesis_delimiter": (
        "SYNCHIVE_SYNTHESIS_DELIMITER",
        "synthesis_delimiter",
    ),
    "scan_without_delimiters": (
        "SYNCHIVE_SCAN_WITHOUT_DELIMITERS",
        "scan_without_delimiters",
    ),
    "extension_filter": ("SYNCHIVE_EXTENSIONS", "extensions"),
    "trust_filename_checksums": (
        "SYNCHIVE_TRUST_FILENAME_CHECKSUMS",
        "trust_filename_checksums",
    ),
    "max_workers": ("SYNCHIVE_MAX_WORKERS", "max_workers"),
}

_BOOL_FIELDS = {
    "embed_checksum_in_filename",
    "scan_without_delimiters",
    "trust_filename_checksums",
}


def get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.strip().lower() in ("true", "1", "yes", "on")


def _env_value(field: str, env_key: str) -> Any:
    if field in _BOOL_FIELDS:
        return get_bool_env(env_key)

    raw = os.getenv(env_key)
    if raw is None:
        return None
    if field == "max_workers":
        try:
            return int(raw)
        except ValueError:
            raise ConfigurationError(
                f"Invalid {env_key} '{raw}': must be a number between 1 and 32"
            ) from None
    return raw


def make_run_configuration(**values: Any) -> RunConfiguration:
    """Construct a ``RunConfiguration``, reporting every problem as a
    ``ConfigurationError``.
    """
    try:
        return RunConfiguration(**values)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}"
            for err in exc.errors()
        )
        raise ConfigurationError(f"Invalid configuration: {problems}") from exc


def load_run_configuration(
    cli_overrides: dict[str, Any] | None = None,
    yaml_settings: SyncSettings | None = None,
) -> RunConfiguration:
    """Resolve every setting and return a validated snapshot.

    The caller is responsible for calling ``load_dotenv()`` beforehand so
    that .env values are visible through ``os.getenv()``.

    Args:
        cli_overrides: ``RunConfiguration`` field values from the command
            line.  ``None`` entries mean "not given".
        yaml_settings: The ``sync:`` section of the YAML config.

    Returns:
        Validated ``RunConfiguration``.

    Raises:
        ConfigurationError: If any resolved value is invalid.
    """
    overrides = cli_overrides or {}
    fallbacks = (yaml_settings or SyncSettings()).model_dump()

    values: dict[str, Any] = {}
    for field, (env_key, yaml_key) in _SOURCES.items():
        value = overrides.get(field)
        source = "cli"
        if value is None:
            value = _env_value(field, env_key)
            source = "env"
        if value is None:
            value = fallbacks.get(yaml_key)
            source = "yaml"
        if value is not None:
            logger.debug("Setting %s from %s: %r", field, source, value)
            values[field] = value

    # Remaining engine knobs have no env/YAML source
    for field in ("chunk_size", "progress_interval"):
        if overrides.get(field) is not None:
            values[field] = overrides[field]

    config = make_run_configuration(**values)

    if config.trust_filename_checksums:
        logger.warning(
            "Filename checksum fast path enabled: matching embedded "
            "checksums are trusted without reading file contents"
        )
    return config
