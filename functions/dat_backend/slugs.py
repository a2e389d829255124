"""
Slug normalization helpers shared by the loaders and the resolver.
"""

from __future__ import annotations

import re
import unicodedata
from typing import Iterable

_NON_SLUG = re.compile(r"[^a-z0-9]+")
_ALIAS_SPLIT = re.compile(r"[,;\s]+")
_ALUMNI_PATH = re.compile(r"^/alumni/([^/?#]+)", re.IGNORECASE)


def normalize_key(value: object) -> str:
    """Trim + lowercase. Used for lookups against already-canonical data."""
    if value is None:
        return ""
    return str(value).strip().lower()


def slugify(value: object) -> str:
    """
    Fold a free-form string into `[a-z0-9-]`.

    'José  Núñez & Co' -> 'jose-nunez-and-co'
    """
    if value is None:
        return ""
    text = unicodedata.normalize("NFKD", str(value).lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    text = text.replace("&", "and")
    return _NON_SLUG.sub("-", text).strip("-")


def split_aliases(raw: object) -> list[str]:
    """Split an alias cell (comma / semicolon / whitespace delimited) into slugs."""
    if not raw:
        return []
    out: list[str] = []
    for part in _ALIAS_SPLIT.split(str(raw)):
        slug = slugify(part)
        if slug and slug not in out:
            out.append(slug)
    return out


def normalize_header(value: object) -> str:
    return _NON_SLUG.sub("-", normalize_key(value)).strip("-")


def match_alumni_path(path: str) -> str | None:
    """Return the raw slug segment of an `/alumni/<slug>` path, or None."""
    match = _ALUMNI_PATH.match(path or "")
    if not match:
        return None
    return match.group(1)


def first_present(row: dict[str, str], keys: Iterable[str]) -> str:
    for key in keys:
        value = row.get(key)
        if value:
            return value
    return ""
