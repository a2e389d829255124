"""
Typed records for rows read from the alumni spreadsheet.

Every sheet/CSV row crosses into the application through one of the
``parse_*`` functions below. They return a dataclass or ``None`` for rows that
cannot be used; callers never coerce raw cells themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Sequence

from dat_backend.slugs import first_present, normalize_key, split_aliases

logger = logging.getLogger(__name__)

TRUTHY_SHOW = {"yes", "y", "true", "✓"}

SLUG_KEYS = ("slug", "profile slug", "profile-slug")
ALIAS_KEYS = (
    "previousslugs",
    "previous slugs",
    "oldslugs",
    "old slugs",
    "aliases",
    "slug aliases",
)


@dataclass
class AlumniProfile:
    slug: str
    name: str
    profile_id: str = ""
    location: str = ""
    role: str = ""
    email: str = ""
    website: str = ""
    social_links: list[str] = field(default_factory=list)
    current_update_text: str = ""
    story_title: str = ""
    current_headshot_id: str = ""
    featured_album_id: str = ""
    featured_reel_id: str = ""
    featured_event_id: str = ""
    previous_slugs: list[str] = field(default_factory=list)
    show_on_profile: str = ""
    status: str = "live"

    @property
    def visible(self) -> bool:
        return (
            normalize_key(self.show_on_profile) in TRUTHY_SHOW
            and bool(self.name.strip())
        )

    def as_sample(self) -> dict:
        return {
            "slug": self.slug,
            "name": self.name,
            "showOnProfile": self.show_on_profile,
        }


@dataclass(frozen=True)
class SlugForwardRule:
    from_slug: str
    to_slug: str
    created_at: Optional[datetime] = None


@dataclass
class ProfileChangeRow:
    ts: str
    alumni_id: str
    field: str
    email: Optional[str] = None
    before: Optional[str] = None
    after: Optional[str] = None
    is_undone: bool = False
    row_number: Optional[int] = None

    @property
    def timestamp(self) -> float:
        parsed = parse_timestamp(self.ts)
        return parsed.timestamp() if parsed else 0.0

    @property
    def is_noop(self) -> bool:
        before = (self.before or "").strip()
        after = (self.after or "").strip()
        return before == after


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse ISO-ish timestamps written by the app or typed into the sheet."""
    text = str(value or "").strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _clean_row(raw: dict) -> dict[str, str]:
    return {
        normalize_key(key): str(value).strip() if value is not None else ""
        for key, value in raw.items()
        if key is not None
    }


def parse_alumni_row(raw: dict) -> Optional[AlumniProfile]:
    """Shape a Profile-Data row (header -> cell) into an AlumniProfile."""
    row = _clean_row(raw)
    slug = normalize_key(first_present(row, SLUG_KEYS))
    name = row.get("name", "")
    if not slug:
        logger.debug("Skipping alumni row without slug (name=%r)", name)
        return None

    aliases = []
    for key in ALIAS_KEYS:
        for alias in split_aliases(row.get(key)):
            if alias != slug and alias not in aliases:
                aliases.append(alias)

    status = normalize_key(row.get("status")) or "live"
    return AlumniProfile(
        slug=slug,
        name=name,
        profile_id=first_present(row, ("profile id", "alumniid", "alumni id")),
        location=row.get("location", ""),
        role=row.get("role", ""),
        email=first_present(row, ("artist email", "email")),
        website=first_present(row, ("artist url", "website")),
        social_links=[
            s.strip()
            for s in row.get("artist social links", "").split(",")
            if s.strip()
        ],
        current_update_text=first_present(
            row, ("currentupdatetext", "current update text")
        ),
        story_title=first_present(row, ("storytitle", "story title")),
        current_headshot_id=first_present(
            row, ("currentheadshotid", "current headshot id")
        ),
        featured_album_id=first_present(row, ("featuredalbumid", "featured album id")),
        featured_reel_id=first_present(row, ("featuredreelid", "featured reel id")),
        featured_event_id=first_present(row, ("featuredeventid", "featured event id")),
        previous_slugs=aliases,
        show_on_profile=row.get("show on profile?", ""),
        status=status,
    )


def parse_forward_cells(
    cells: Sequence[object], i_from: int, i_to: int, i_at: int = -1
) -> Optional[SlugForwardRule]:
    """Build a rule from one split CSV/sheet row; rejects blanks and self-maps."""

    def cell(i: int) -> str:
        if i < 0 or i >= len(cells):
            return ""
        return normalize_key(cells[i])

    from_slug = cell(i_from)
    to_slug = cell(i_to)
    if not from_slug or not to_slug:
        return None
    if from_slug == to_slug:
        logger.debug("Ignoring self-forward row for %s", from_slug)
        return None
    created_at = parse_timestamp(cells[i_at]) if 0 <= i_at < len(cells) else None
    return SlugForwardRule(from_slug=from_slug, to_slug=to_slug, created_at=created_at)


def parse_change_row(
    cells: Sequence[object], columns: dict[str, int], row_number: int
) -> Optional[ProfileChangeRow]:
    """Build a ProfileChangeRow from a Profile-Changes sheet row."""

    def cell(name: str) -> str:
        i = columns.get(name, -1)
        if i < 0 or i >= len(cells):
            return ""
        value = cells[i]
        return str(value).strip() if value is not None else ""

    ts = cell("ts")
    alumni_id = cell("alumni_id")
    field_name = cell("field")
    if not ts or not alumni_id or not field_name:
        return None
    return ProfileChangeRow(
        ts=ts,
        alumni_id=alumni_id,
        field=field_name,
        email=cell("email") or None,
        before=cell("before") or None,
        after=cell("after") or None,
        is_undone=cell("is_undone").lower() == "true",
        row_number=row_number,
    )
