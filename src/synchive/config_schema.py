"""Configuration schema for synchive.

Defines the Pydantic models for the YAML config file sections (``sync`` and
``logging``) and the immutable ``RunConfiguration`` snapshot handed to the
engine at the start of each run.

Usage:
    from synchive.config_schema import RunConfiguration, build_config

    unified = build_config(load_hierarchical_config())
    run_config = RunConfiguration(
        embed_checksum_in_filename=True,
        recognized_delimiters="[], ()",
        extension_filter=".mkv, .mp4",
    )
"""

from __future__ import annotations

import logging
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator

from .errors import ConfigurationError
from .validators import (
    normalize_extension,
    parse_delimiter_list,
    parse_delimiter_pair,
    parse_extension_list,
    validate_delimiter,
)

logger = logging.getLogger(__name__)

DEFAULT_RECOGNIZED_DELIMITERS = "[], (), {}"
DEFAULT_SYNTHESIS_DELIMITER = "[]"


# ---------------------------------------------------------------------------
# Run snapshot
# ---------------------------------------------------------------------------


class DelimiterPair(BaseModel):
    """Leading and trailing text surrounding a checksum in a filename.

    Raises ``ConfigurationError`` (not a pydantic ``ValidationError``) when
    either side is empty or contains a path separator.
    """

    leading: str
    trailing: str

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _check(self) -> DelimiterPair:
        ok, reason = validate_delimiter(self.leading, self.trailing)
        if not ok:
            raise ConfigurationError(reason)
        return self

    @classmethod
    def parse(cls, text: str) -> DelimiterPair:
        """Build a pair from a token such as ``"[]"``."""
        leading, trailing = parse_delimiter_pair(text)
        return cls(leading=leading, trailing=trailing)

    def as_tuple(self) -> tuple[str, str]:
        return (self.leading, self.trailing)

    def __str__(self) -> str:
        return f"{self.leading}{self.trailing}"


def _coerce_pair(value: Any) -> Any:
    if isinstance(value, str):
        return DelimiterPair.parse(value)
    if isinstance(value, (tuple, list)) and len(value) == 2:
        return DelimiterPair(leading=value[0], trailing=value[1])
    return value


class RunConfiguration(BaseModel):
    """Immutable per-run settings snapshot.

    Attributes:
        embed_checksum_in_filename: Write the checksum into destination
            filenames that do not already carry one.
        recognized_delimiters: Pairs recognised when parsing embedded
            checksums.  Accepts ``"[], ()"`` text as input.
        synthesis_delimiter: Pair used when embedding a checksum.
        scan_without_delimiters: Also accept a bare 8-hex-digit token at
            the end of the filename stem.
        extension_filter: Extensions eligible for embedding (empty = all).
        trust_filename_checksums: Allow the embedded-checksum fast path that
            skips hashing when source and destination names agree.
        max_workers: Size of the hashing thread pool.
        chunk_size: Read size used when streaming file bytes.
        progress_interval: Minimum seconds between progress events.
    """

    embed_checksum_in_filename: bool = False
    recognized_delimiters: tuple[DelimiterPair, ...] = Field(
        default_factory=lambda: tuple(
            DelimiterPair(leading=o, trailing=c)
            for o, c in parse_delimiter_list(DEFAULT_RECOGNIZED_DELIMITERS)
        )
    )
    synthesis_delimiter: DelimiterPair = Field(
        default_factory=lambda: DelimiterPair.parse(
            DEFAULT_SYNTHESIS_DELIMITER
        )
    )
    scan_without_delimiters: bool = False
    extension_filter: frozenset[str] = frozenset()
    trust_filename_checksums: bool = False
    max_workers: int = Field(default=4, ge=1, le=32)
    chunk_size: int = Field(default=65536, ge=1024)
    progress_interval: float = Field(default=0.25, ge=0.0)

    model_config = {"frozen": True}

    @field_validator("recognized_delimiters", mode="before")
    @classmethod
    def _parse_recognized(cls, value: Any) -> Any:
        if isinstance(value, str):
            return tuple(
                DelimiterPair(leading=o, trailing=c)
                for o, c in parse_delimiter_list(value)
            )
        if isinstance(value, (list, tuple, set, frozenset)):
            return tuple(_coerce_pair(v) for v in value)
        return value

    @field_validator("synthesis_delimiter", mode="before")
    @classmethod
    def _parse_synthesis(cls, value: Any) -> Any:
        return _coerce_pair(value)

    @field_validator("extension_filter", mode="before")
    @classmethod
    def _normalize_extensions(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            return parse_extension_list(value)
        return frozenset(
            ext for ext in (normalize_extension(v) for v in value) if ext
        )

    @property
    def delimiter_pairs(self) -> list[tuple[str, str]]:
        """Recognised delimiters as plain ``(leading, trailing)`` tuples."""
        return [pair.as_tuple() for pair in self.recognized_delimiters]

    def is_extension_eligible(self, extension: str) -> bool:
        """Return ``True`` if files with *extension* may receive a checksum."""
        if not self.extension_filter:
            return True
        return extension.lower() in self.extension_filter


# ---------------------------------------------------------------------------
# YAML section models
# ---------------------------------------------------------------------------


class SyncSettings(BaseModel):
    """The ``sync:`` section of the YAML config file.

    Every field is optional: unset values fall through to environment
    variables and built-in defaults.
    """

    embed_checksum: bool | None = Field(
        default=None, description="Embed checksums in destination names"
    )
    delimiters: str | list[str] | None = Field(
        default=None,
        description="Recognised delimiter pairs, e.g. '[], ()'",
    )
    synthesis_delimiter: str | None = Field(
        default=None, description="Delimiter pair used when embedding"
    )
    scan_without_delimiters: bool | None = Field(
        default=None, description="Accept bare trailing checksum tokens"
    )
    extensions: str | list[str] | None = Field(
        default=None, description="Extensions eligible for embedding"
    )
    trust_filename_checksums: bool | None = Field(
        default=None, description="Enable the embedded-checksum fast path"
    )
    max_workers: int | None = Field(
        default=None, ge=1, le=32, description="Hashing pool size (1-32)"
    )

    model_config = {"frozen": True}


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
        format: ``text`` or ``json``.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")
    format: str = Field(default="text", description="text or json")

    model_config = {"frozen": True}


class UnifiedConfig(BaseModel):
    """Top-level configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    sync: SyncSettings = Field(default_factory=SyncSettings)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the raw dict returned by
    ``load_hierarchical_config()``.

    Unknown top-level sections are ignored with a warning.
    """
    if not raw_data:
        return UnifiedConfig()

    known = {k: v for k, v in raw_data.items() if k in ("sync", "logging")}
    for key in raw_data:
        if key not in known:
            logger.warning("Ignoring unknown config section '%s'", key)
    return UnifiedConfig(**{k: v or {} for k, v in known.items()})
