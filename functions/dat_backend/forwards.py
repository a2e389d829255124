"""
Old -> new slug forward map backed by the Profile-Slugs tab.
"""

from __future__ import annotations

import logging
from typing import Callable, Optional, Sequence

from dat_backend.csv_loader import load_csv
from dat_backend.records import SlugForwardRule, parse_forward_cells
from dat_backend.slugs import normalize_header, normalize_key

logger = logging.getLogger(__name__)

SLUG_MAP_FALLBACK_FILE = "slug-map.csv"
FORWARD_HEADER = ["fromSlug", "toSlug", "createdAt"]
MAX_HOPS = 100

FROM_HEADERS = {"fromslug", "from-slug", "from", "old", "alias", "alias-slug"}
TO_HEADERS = {"toslug", "to-slug", "to", "canonical", "target", "canonical-slug"}
CREATED_HEADERS = {"createdat", "created-at"}


def _index_of(headers: list[str], accepted: set[str]) -> int:
    for i, header in enumerate(headers):
        if header in accepted:
            return i
    return -1


def parse_forward_table(rows: Sequence[Sequence[object]]) -> list[SlugForwardRule]:
    """
    Parse a header row plus data rows into forward rules, in sheet order.

    Unknown two-column headers are read positionally as (from, to).
    """
    if not rows:
        return []
    headers = [normalize_header(h) for h in rows[0]]
    i_from = _index_of(headers, FROM_HEADERS)
    i_to = _index_of(headers, TO_HEADERS)
    i_at = _index_of(headers, CREATED_HEADERS)
    if (i_from < 0 or i_to < 0) and len(headers) == 2:
        i_from, i_to = 0, 1
    if i_from < 0 or i_to < 0:
        logger.warning("Slug forward table has no recognizable headers: %s", headers)
        return []

    rules: list[SlugForwardRule] = []
    for cells in rows[1:]:
        rule = parse_forward_cells(cells, i_from, i_to, i_at)
        if rule:
            rules.append(rule)
    return rules


def parse_forward_csv(text: str) -> list[SlugForwardRule]:
    # Naive split: slugs are limited to [a-z0-9-] so they never contain commas.
    lines = [line.strip() for line in text.splitlines()]
    return parse_forward_table([line.split(",") for line in lines if line])


def build_forward_map(rules: Sequence[SlugForwardRule]) -> dict[str, str]:
    """
    Collapse rules to one target per from-slug.

    The rule with the latest createdAt wins; rules without a parsable
    timestamp, or with equal timestamps, fall back to sheet order (later wins).
    """
    latest: dict[str, SlugForwardRule] = {}
    for rule in rules:
        prev = latest.get(rule.from_slug)
        if (
            prev is None
            or prev.created_at is None
            or rule.created_at is None
            or rule.created_at >= prev.created_at
        ):
            latest[rule.from_slug] = rule
    return {from_slug: rule.to_slug for from_slug, rule in latest.items()}


def follow_chain(
    forward: dict[str, str], start: str, max_hops: int = MAX_HOPS
) -> list[str]:
    """
    Walk from -> to links starting at `start` until a fixed point or a cycle.

    Returns the visited path; the last element is the final target. When the
    walk hits a cycle the path is cut at the cycle's smallest slug, so every
    slug on (or leading into) the cycle settles on the same member.
    """
    path = [start]
    seen = {start}
    current = start
    for _ in range(max_hops):
        nxt = forward.get(current)
        if not nxt:
            break
        if nxt in seen:
            anchor = min(path[path.index(nxt) :])
            return path[: path.index(anchor) + 1]
        path.append(nxt)
        seen.add(nxt)
        current = nxt
    return path


class SlugForwardMap:
    """
    Loads the forward map fresh on every call (no in-process caching) so a
    newly written rule is visible to the next request.
    """

    def __init__(
        self, csv_url: str = "", source: Optional[Callable[[], str]] = None
    ):
        self.csv_url = csv_url
        self._source = source

    def load_text(self) -> str:
        if self._source is not None:
            return self._source()
        if not self.csv_url:
            logger.debug("SLUGS_CSV_URL not configured; forward map is empty")
            return ""
        return load_csv(self.csv_url, SLUG_MAP_FALLBACK_FILE, no_store=True)

    def load_rules(self) -> list[SlugForwardRule]:
        return parse_forward_csv(self.load_text())

    def load_slug_forward_map(self) -> dict[str, str]:
        forward = build_forward_map(self.load_rules())
        logger.debug("Loaded %d slug forwards", len(forward))
        return forward

    def get_slug_forward(self, slug: str) -> Optional[str]:
        key = normalize_key(slug)
        if not key:
            return None
        return self.load_slug_forward_map().get(key)

    def reverse_source(self, target: str) -> Optional[str]:
        """Alphabetically first from-slug that maps directly to `target`."""
        want = normalize_key(target)
        candidates = sorted(
            from_slug
            for from_slug, to_slug in self.load_slug_forward_map().items()
            if to_slug == want
        )
        return candidates[0] if candidates else None
