"""
Resolve any incoming alumni slug to the canonical slug a request should land on.
"""

from __future__ import annotations

import logging
import re
from typing import Optional
from urllib.parse import quote, unquote, urlsplit, urlunsplit

from dat_backend.aliases import SlugAliasStore
from dat_backend.alumni import AlumniDirectory
from dat_backend.csv_loader import CsvLoadError
from dat_backend.forwards import SlugForwardMap, follow_chain
from dat_backend.records import AlumniProfile
from dat_backend.slugs import normalize_key

logger = logging.getLogger(__name__)

_HREF_ALUMNI = re.compile(r"^/alumni/([^/?#]+)")


class CanonicalResolver:
    """
    Forward map first (following chains to their final target), then the
    alias index, then the input itself.
    """

    def __init__(
        self,
        forwards: SlugForwardMap,
        aliases: Optional[SlugAliasStore] = None,
        directory: Optional[AlumniDirectory] = None,
    ):
        self.forwards = forwards
        self.aliases = aliases
        self.directory = directory

    def _forward_map(self) -> dict[str, str]:
        try:
            return self.forwards.load_slug_forward_map()
        except CsvLoadError as exc:
            logger.warning("Forward map unavailable, resolving without it: %s", exc)
            return {}

    def _alias_target(self, slug: str) -> Optional[str]:
        if self.aliases is None:
            return None
        try:
            return self.aliases.find_canonical_for_alias(slug)
        except CsvLoadError as exc:
            logger.warning("Alias index unavailable, resolving without it: %s", exc)
            return None

    def resolve_chain(self, input_slug: str) -> list[str]:
        """Every slug visited on the way to the canonical one, input first."""
        slug = normalize_key(input_slug)
        if not slug:
            return [""]
        forward = self._forward_map()
        if slug in forward:
            return follow_chain(forward, slug)
        target = self._alias_target(slug)
        if target and target != slug:
            return [slug] + follow_chain(forward, target)
        return [slug]

    def resolve_canonical_slug(self, input_slug: str) -> str:
        return self.resolve_chain(input_slug)[-1]

    def forward_target(self, input_slug: str) -> Optional[str]:
        """Canonical slug when it differs from the input, else None."""
        slug = normalize_key(input_slug)
        canonical = self.resolve_canonical_slug(slug)
        if canonical and canonical != slug:
            return canonical
        return None

    def load_alumni_by_slug(self, slug: str) -> Optional[AlumniProfile]:
        """
        Alumni row for `slug` after following forwards. When the target has no
        row yet (the rename has not been written back), fall back to the row
        still carrying a slug that forwards to it.
        """
        if self.directory is None:
            return None
        canonical = self.resolve_canonical_slug(slug)
        if not canonical:
            return None
        found = self.directory.find_by_slug(canonical)
        if found is not None:
            return found
        try:
            reverse = self.forwards.reverse_source(canonical)
        except CsvLoadError as exc:
            logger.warning("Reverse lookup for %s unavailable: %s", canonical, exc)
            return None
        if reverse:
            return self.directory.find_by_slug(reverse)
        return None

    def canon_alumni_href(self, href: Optional[str]) -> Optional[str]:
        """
        Rewrite an `/alumni/<slug>` href (absolute or relative) to the canonical
        slug, keeping query and fragment. Other hrefs come back unchanged.
        """
        value = (href or "").strip()
        if not value:
            return None
        parts = urlsplit(value)
        match = _HREF_ALUMNI.match(parts.path)
        if not match:
            return value
        old_slug = unquote(match.group(1))
        new_slug = self.resolve_canonical_slug(old_slug)
        if not new_slug or new_slug == normalize_key(old_slug):
            return value
        path = f"/alumni/{quote(new_slug, safe='')}{parts.path[match.end():]}"
        return urlunsplit(parts._replace(path=path))
