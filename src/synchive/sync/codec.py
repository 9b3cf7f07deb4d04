"""Filename/CRC codec.

Recognises checksums embedded in filenames (``photo [1A2B3C4D].jpg``) and
produces such filenames.

Parsing looks only at the stem (filename minus extension).  When several
delimited candidates are present, the rightmost one wins; with
``allow_bare`` a trailing 8-hex-digit token without delimiters is accepted
as a fallback.

Embedding inserts ``<leading><CHECKSUM><trailing>`` before the extension,
preceded by a separator chosen to match the style of the stem:

- a stem ending in ``) } ] - _ + =`` gets no separator;
- otherwise the strictly most common of dot / underscore / space splits
  is used (``Hello.World`` -> ``.``, ``Hello_World`` -> ``_``);
- a stem without any space (``HelloWorld``) gets a space;
- anything else (ties involving spaces) gets no separator.
"""

from __future__ import annotations

import re
from collections.abc import Iterable

from .checksum import CHECKSUM_LENGTH

PUNCTUATION_ENDINGS = (")", "}", "]", "-", "_", "+", "=")

_HEX = f"([0-9A-Fa-f]{{{CHECKSUM_LENGTH}}})"
_BARE_RE = re.compile(r"(?<![0-9A-Fa-f])" + _HEX + r"$")


def get_extension(filename: str) -> str:
    """Return the extension including its dot, in its original case.

    A dotfile is all extension (``.bashrc``).  A name ending in a dot has
    none.
    """
    idx = filename.rfind(".")
    if idx < 0 or idx == len(filename) - 1:
        return ""
    return filename[idx:]


def get_stem(filename: str, extension: str | None = None) -> str:
    if extension is None:
        extension = get_extension(filename)
    return filename[: len(filename) - len(extension)]


def parse_embedded(
    filename: str,
    delimiters: Iterable[tuple[str, str]],
    allow_bare: bool = False,
) -> str | None:
    """Return the checksum embedded in *filename*, lowercased, or ``None``.

    Args:
        filename: Bare filename (no directories).
        delimiters: ``(leading, trailing)`` pairs to recognise.
        allow_bare: Accept an undelimited token ending the stem.
    """
    stem = get_stem(filename)

    best: tuple[tuple[int, int], str] | None = None
    for leading, trailing in delimiters:
        pattern = re.compile(re.escape(leading) + _HEX + re.escape(trailing))
        for match in pattern.finditer(stem):
            key = (match.end(), match.start())
            if best is None or key > best[0]:
                best = (key, match.group(1))

    if best is not None:
        return best[1].lower()

    if allow_bare:
        match = _BARE_RE.search(stem)
        if match:
            return match.group(1).lower()

    return None


def _split_count(text: str, sep: str) -> int:
    """Count pieces the way a split that drops trailing empties does."""
    if not text:
        return 1
    parts = text.split(sep)
    while parts and parts[-1] == "":
        parts.pop()
    return len(parts)


def choose_separator(stem: str) -> str:
    """Pick the separator placed between *stem* and the checksum."""
    if stem.endswith(PUNCTUATION_ENDINGS):
        return ""

    dots = _split_count(stem, ".")
    underscores = _split_count(stem, "_")
    spaces = _split_count(stem, " ")

    if dots > 1 and dots > max(underscores, spaces):
        return "."
    if underscores > 1 and underscores > max(dots, spaces):
        return "_"
    if (spaces > 1 and spaces > max(dots, underscores)) or " " not in stem:
        return " "
    return ""


def embed(
    filename: str,
    extension: str | None,
    checksum: str,
    delimiter: tuple[str, str],
) -> str:
    """Return *filename* with *checksum* embedded before the extension.

    Args:
        filename: Bare filename.
        extension: Extension of *filename* including the dot; derived
            when ``None``.
        checksum: Eight hex digits; written uppercase.
        delimiter: ``(leading, trailing)`` pair surrounding the checksum.
    """
    if extension is None:
        extension = get_extension(filename)
    stem = get_stem(filename, extension)
    if not extension and stem.endswith("."):
        # Trailing dots stay last so the token is never read as an extension
        trimmed = stem.rstrip(".")
        extension = stem[len(trimmed) :]
        stem = trimmed
    leading, trailing = delimiter
    return (
        f"{stem}{choose_separator(stem)}"
        f"{leading}{checksum.upper()}{trailing}{extension}"
    )
