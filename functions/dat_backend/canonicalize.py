"""
Write-side of slug canonicalization: forward rules and alumni row slug rewrites.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from dat_backend.aliases import SlugAliasStore
from dat_backend.alumni import AlumniDirectory
from dat_backend.forwards import (
    FORWARD_HEADER,
    build_forward_map,
    follow_chain,
    parse_forward_table,
)
from dat_backend.sheets import SheetsClient, col_to_a1
from dat_backend.slugs import normalize_header, normalize_key

logger = logging.getLogger(__name__)

DEFAULT_ALUMNI_TAB = "Profile-Data"
SLUG_COLUMN_HEADERS = {"slug", "profile-slug"}


class ForwardRuleError(ValueError):
    """Raised for forward rules that must not be written (blank, self, cycle)."""


@dataclass
class ForwardWriteResult:
    from_slug: str
    to_slug: str
    created_at: Optional[str]
    updated: bool
    note: str = ""


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


class SlugCanonicalizer:
    """
    Persists slug renames to the spreadsheet.

    Forward rules are appended to the Profile-Slugs tab (history is never
    rewritten). Writes are idempotent: a rule that would not change where the
    from-slug ends up is skipped, so retried jobs do not pile up rows.
    """

    def __init__(
        self,
        sheets: SheetsClient,
        *,
        slugs_tab: str = "Profile-Slugs",
        alumni_tab: Optional[str] = None,
        directory: Optional[AlumniDirectory] = None,
        aliases: Optional[SlugAliasStore] = None,
        clock: Callable[[], str] = _utc_now_iso,
    ):
        self.sheets = sheets
        self.slugs_tab = slugs_tab
        self.alumni_tab = alumni_tab or DEFAULT_ALUMNI_TAB
        self.directory = directory
        self.aliases = aliases
        self.clock = clock
        self._inflight: set[tuple[str, str]] = set()
        self._inflight_lock = threading.Lock()

    def _invalidate_caches(self) -> None:
        if self.directory is not None:
            self.directory.invalidate()
        if self.aliases is not None:
            self.aliases.invalidate_slug_aliases_cache()

    def _read_forward_map(self) -> dict[str, str]:
        rows = self.sheets.get_values(f"{self.slugs_tab}!A:C")
        if not rows:
            self.sheets.update_values(f"{self.slugs_tab}!A1:C1", [FORWARD_HEADER])
            logger.info("Wrote header row to empty %s tab", self.slugs_tab)
            return {}
        return build_forward_map(parse_forward_table(rows))

    def write_forward_rule(self, from_slug: str, to_slug: str) -> ForwardWriteResult:
        """
        Record `from_slug -> to_slug`, collapsed to the ultimate target of `to_slug`.

        Raises:
            ForwardRuleError: On blank or identical slugs, or when the rule would
                create a cycle.
        """
        source = normalize_key(from_slug)
        desired = normalize_key(to_slug)
        if not source or not desired:
            raise ForwardRuleError("fromSlug and toSlug are required")
        if source == desired:
            raise ForwardRuleError("fromSlug and toSlug cannot be the same")

        forward = self._read_forward_map()
        final_source = follow_chain(forward, source)[-1]
        final_desired = follow_chain(forward, desired)[-1]

        if final_desired == source:
            raise ForwardRuleError("Mapping would create a cycle")

        if forward.get(source) == final_desired or final_source == final_desired:
            logger.info("Forward %s -> %s already in place", source, final_desired)
            return ForwardWriteResult(
                from_slug=source,
                to_slug=final_desired,
                created_at=None,
                updated=False,
                note="No change (already forwards to the same final target)",
            )

        created_at = self.clock()
        self.sheets.append_values(
            f"{self.slugs_tab}!A:C", [[source, final_desired, created_at]]
        )
        logger.info("Appended slug forward %s -> %s", source, final_desired)
        if self.aliases is not None:
            self.aliases.invalidate_slug_aliases_cache()
        return ForwardWriteResult(
            from_slug=source, to_slug=final_desired, created_at=created_at, updated=True
        )

    def ensure_canonical_alumni_slug(self, old_slug: str, next_slug: str) -> bool:
        """
        Rewrite the alumni row still carrying `old_slug` to `next_slug`.

        Returns True when a row was updated. Skips when another call for the same
        pair is in flight, when `next_slug` already has a row, or when no row has
        `old_slug`.
        """
        old_key = normalize_key(old_slug)
        new_key = normalize_key(next_slug)
        if not old_key or not new_key or old_key == new_key:
            return False

        guard = (old_key, new_key)
        with self._inflight_lock:
            if guard in self._inflight:
                return False
            self._inflight.add(guard)
        try:
            return self._rewrite_alumni_slug(old_key, new_key, next_slug.strip())
        finally:
            with self._inflight_lock:
                self._inflight.discard(guard)

    def _rewrite_alumni_slug(self, old_key: str, new_key: str, new_value: str) -> bool:
        rows = self.sheets.get_values(f"{self.alumni_tab}!A:ZZZ")
        if not rows:
            return False
        header = [normalize_header(h) for h in rows[0]]
        slug_col = next(
            (i for i, h in enumerate(header) if h in SLUG_COLUMN_HEADERS), -1
        )
        if slug_col < 0:
            logger.warning("No slug column on tab %s", self.alumni_tab)
            return False

        def slug_at(row: list[str]) -> str:
            return normalize_key(row[slug_col]) if slug_col < len(row) else ""

        old_idx = -1
        for i, row in enumerate(rows[1:], start=1):
            current = slug_at(row)
            if current == new_key:
                logger.debug("Row with slug %s already exists; skipping rewrite", new_key)
                return False
            if current == old_key and old_idx < 0:
                old_idx = i
        if old_idx < 0:
            logger.debug("No alumni row with slug %s; skipping rewrite", old_key)
            return False

        row = list(rows[old_idx])
        width = max(len(rows[0]), slug_col + 1)
        row.extend([""] * (width - len(row)))
        row[slug_col] = new_value
        row_number = old_idx + 1
        end_col = col_to_a1(width - 1)
        self.sheets.update_values(
            f"{self.alumni_tab}!A{row_number}:{end_col}{row_number}", [row], raw=False
        )
        logger.info(
            "Alumni row %d on %s: slug %s -> %s",
            row_number,
            self.alumni_tab,
            old_key,
            new_key,
        )
        self._invalidate_caches()
        return True

    def auto_canonicalize(self, old_slug: str, next_slug: str) -> bool:
        """Persist the forward rule and rewrite the alumni row. True if anything changed."""
        rule = self.write_forward_rule(old_slug, next_slug)
        row_updated = self.ensure_canonical_alumni_slug(old_slug, rule.to_slug)
        return rule.updated or row_updated
