"""
String slugification for storage keys.

Categories and queries are free text; storage keys must be stable, readable and
safe as path segments on every filesystem.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Optional

UNSAFE_CHARS_PATTERN = re.compile(r"[^A-Za-z0-9\-]")
MULTIPLE_SEPARATORS_PATTERN = re.compile(r"-+")

WINDOWS_RESERVED_NAMES = {"CON", "PRN", "AUX", "NUL"} | {f"COM{i}" for i in range(1, 10)} | {f"LPT{i}" for i in range(1, 10)}


def slugify(text: str, replacement: str = "-", max_length: Optional[int] = 120, lowercase: bool = True) -> str:
    """
    Convert a string to a filesystem-safe slug.

    Examples:
        >>> slugify("Fine Art & Paintings")
        'fine-art-paintings'

        >>> slugify("Café/Crème")
        'cafe-creme'

        >>> slugify("CON")
        'con-reserved'
    """
    if not text or not text.strip():
        return ""

    normalized = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
    slug = UNSAFE_CHARS_PATTERN.sub("-", normalized.strip())
    slug = MULTIPLE_SEPARATORS_PATTERN.sub("-", slug).strip("-")

    if slug.upper() in WINDOWS_RESERVED_NAMES:
        slug = f"{slug}-reserved"

    if lowercase:
        slug = slug.lower()

    if max_length is not None and len(slug) > max_length:
        slug = slug[:max_length].rstrip("-")

    if replacement != "-":
        slug = slug.replace("-", replacement)
    return slug
