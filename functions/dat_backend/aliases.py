"""
Alias slugs known to refer to a canonical alumni profile.
"""

from __future__ import annotations

import logging
from typing import Optional

from dat_backend.alumni import AlumniDirectory
from dat_backend.cache import InMemoryKeyValueCache, KeyValueCache
from dat_backend.forwards import SlugForwardMap, follow_chain
from dat_backend.slugs import normalize_key

logger = logging.getLogger(__name__)

_REVERSE_INDEX_KEY = "__alias_index__"


class SlugAliasStore:
    """
    Builds alias sets from the alumni rows' former-slug columns plus any
    forward rules that end at the canonical slug.

    Results are cached per canonical slug until explicitly invalidated.
    """

    def __init__(
        self,
        directory: AlumniDirectory,
        forwards: Optional[SlugForwardMap] = None,
        cache: Optional[KeyValueCache] = None,
    ):
        self.directory = directory
        self.forwards = forwards
        self.cache = cache if cache is not None else InMemoryKeyValueCache()

    def get_slug_aliases(self, canonical_slug: str) -> set[str]:
        key = normalize_key(canonical_slug)
        if not key:
            return set()
        cached = self.cache.get(key)
        if cached is not None:
            return set(cached)

        aliases: set[str] = set()
        profile = self.directory.find_by_slug(key)
        if profile:
            aliases.update(profile.previous_slugs)

        if self.forwards is not None:
            forward = self.forwards.load_slug_forward_map()
            for from_slug in forward:
                if follow_chain(forward, from_slug)[-1] == key:
                    aliases.add(from_slug)

        aliases.discard(key)
        self.cache.set(key, frozenset(aliases))
        logger.debug("Alias set for %s: %d entries", key, len(aliases))
        return set(aliases)

    def _reverse_index(self) -> dict[str, str]:
        index = self.cache.get(_REVERSE_INDEX_KEY)
        if index is not None:
            return index
        index = {}
        for profile in self.directory.load_alumni():
            for alias in profile.previous_slugs:
                # First row in sheet order claims an alias.
                index.setdefault(alias, profile.slug)
        self.cache.set(_REVERSE_INDEX_KEY, index)
        return index

    def find_canonical_for_alias(self, slug: str) -> Optional[str]:
        key = normalize_key(slug)
        if not key:
            return None
        return self._reverse_index().get(key)

    def invalidate_slug_aliases_cache(self, canonical_slug: Optional[str] = None) -> None:
        if canonical_slug is None:
            self.cache.invalidate()
        else:
            self.cache.invalidate(normalize_key(canonical_slug))
            self.cache.invalidate(_REVERSE_INDEX_KEY)
        logger.info("Slug alias cache invalidated (%s)", canonical_slug or "all")
