"""
Input validation and parsing for user-supplied settings text.

The settings layer stores delimiters and extension filters as short
comma-separated strings (for example ``"[], {}, ()"`` and ``".mkv, mp4"``).
These helpers turn that text into validated values before a run starts.
"""

from synchive.errors import ConfigurationError

# Characters that can never appear inside a filename component.
_FORBIDDEN_DELIMITER_CHARS = ("/", "\\", "\0")


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "Delimiter")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_delimiter(open_text: str, close_text: str) -> tuple[bool, str]:
    """
    Validate one delimiter pair.

    Args:
        open_text: Leading delimiter (e.g. ``"["``)
        close_text: Trailing delimiter (e.g. ``"]"``)

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Neither side can be empty
        - Neither side can contain a path separator or NUL
    """
    if not open_text:
        return (
            False,
            format_validation_error("Leading delimiter", "cannot be empty"),
        )
    if not close_text:
        return (
            False,
            format_validation_error("Trailing delimiter", "cannot be empty"),
        )

    for char in _FORBIDDEN_DELIMITER_CHARS:
        if char in open_text or char in close_text:
            return (
                False,
                format_validation_error(
                    "Delimiter", f"cannot contain {char!r}"
                ),
            )

    return (True, "")


# ---------------------------------------------------------------------------
# Delimiter text
# ---------------------------------------------------------------------------


def parse_delimiter_pair(text: str) -> tuple[str, str]:
    """Split a delimiter token such as ``"[]"`` or ``"<<>>"`` in half.

    Raises:
        ConfigurationError: If the token is empty, has odd length, or
            fails ``validate_delimiter``.
    """
    token = text.strip()
    if not token:
        raise ConfigurationError(
            format_validation_error("Delimiter", "cannot be empty")
        )
    if len(token) % 2:
        raise ConfigurationError(
            format_validation_error(
                f"Delimiter '{token}'",
                "must have an even length (leading half, trailing half)",
            )
        )

    half = len(token) // 2
    open_text, close_text = token[:half], token[half:]
    ok, reason = validate_delimiter(open_text, close_text)
    if not ok:
        raise ConfigurationError(f"{reason} (in '{token}')")
    return open_text, close_text


def parse_delimiter_list(text: str) -> list[tuple[str, str]]:
    """Parse ``"[], {}, ()"`` into ``[("[", "]"), ("{", "}"), ("(", ")")]``.

    Blank entries are ignored; duplicates are dropped, first one wins.
    """
    pairs: list[tuple[str, str]] = []
    for chunk in text.split(","):
        if not chunk.strip():
            continue
        pair = parse_delimiter_pair(chunk)
        if pair not in pairs:
            pairs.append(pair)
    return pairs


# ---------------------------------------------------------------------------
# Extension text
# ---------------------------------------------------------------------------


def normalize_extension(extension: str) -> str:
    """Lowercase an extension and make sure it has a leading dot.

    Returns an empty string for blank input.
    """
    ext = extension.strip().lower()
    if not ext:
        return ""
    if not ext.startswith("."):
        ext = "." + ext
    return ext


def parse_extension_list(text: str) -> frozenset[str]:
    """Parse ``".mkv, MP4"`` into ``frozenset({".mkv", ".mp4"})``."""
    result = set()
    for chunk in text.split(","):
        ext = normalize_extension(chunk)
        if ext:
            result.add(ext)
    return frozenset(result)
