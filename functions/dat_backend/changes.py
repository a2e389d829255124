"""
Profile-Changes audit log and the community feed projected from it.

The log is append-only. Undoing a change flips its `isUndone` cell so the row
drops out of the feed while the history stays intact.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Iterable, Optional

from dat_backend.records import AlumniProfile, ProfileChangeRow, parse_change_row
from dat_backend.sheets import SheetsClient, col_to_a1
from dat_backend.slugs import normalize_header

logger = logging.getLogger(__name__)

COLUMN_ALIASES = {
    "ts": ("ts", "timestamp"),
    "alumni_id": ("alumniid", "alumni-id", "id"),
    "email": ("email",),
    "field": ("field",),
    "before": ("before",),
    "after": ("after",),
    "is_undone": ("isundone", "is-undone", "undone"),
}

CURRENT_FIELDS = {"currentUpdateText", "currentUpdateLink", "currentUpdateExpiresAt"}
EVENT_FIELDS = {
    "upcomingEventTitle",
    "upcomingEventDate",
    "upcomingEventLink",
    "upcomingEventExpiresAt",
    "upcomingEventDescription",
}
STORY_FIELDS = {
    "storyTitle",
    "storyProgram",
    "storyLocationName",
    "storyYears",
    "storyPartners",
    "storyShortStory",
    "storyQuote",
    "storyQuoteAuthor",
    "storyMediaUrl",
    "storyMoreInfoUrl",
    "storyCountry",
    "showOnMap",
}
MEDIA_TEXT = {
    "currentHeadshotId": ("Updated headshot", 14),
    "currentHeadshotUrl": ("Updated headshot", 14),
    "featuredAlbumId": ("Updated photo gallery", 12),
    "featuredReelId": ("Updated reel", 10),
    "featuredEventId": ("Updated event media", 8),
}


@dataclass
class CommunityFeedItem:
    ts: str
    alumni_id: str
    name: str
    slug: str
    label: str
    text: str
    kind: str
    field: str

    def as_dict(self) -> dict:
        return {
            "ts": self.ts,
            "alumniId": self.alumni_id,
            "name": self.name,
            "slug": self.slug,
            "label": self.label,
            "text": self.text,
            "kind": self.kind,
            "field": self.field,
        }


def _column_index(header: list[str]) -> dict[str, int]:
    normalized = [normalize_header(h) for h in header]
    columns: dict[str, int] = {}
    for name, accepted in COLUMN_ALIASES.items():
        for candidate in accepted:
            if candidate in normalized:
                columns[name] = normalized.index(candidate)
                break
    return columns


def _score(row: ProfileChangeRow) -> tuple[str, int]:
    name = row.field
    if name in CURRENT_FIELDS:
        return "current", 500 + (40 if name == "currentUpdateText" else 0)
    if name in EVENT_FIELDS:
        return "event", 400 + (20 if name == "upcomingEventTitle" else 0)
    if name in STORY_FIELDS:
        return "story", 300 + (20 if name == "storyTitle" else 0)
    if name in MEDIA_TEXT:
        return "media", 200 + MEDIA_TEXT[name][1]
    return "fallback", 100


def _label_and_text(kind: str, row: ProfileChangeRow, profile: Optional[AlumniProfile]):
    after = (row.after or "").strip()
    if kind == "current":
        text = after if row.field == "currentUpdateText" else ""
        if not text and profile:
            text = profile.current_update_text
        return "Current Update", text or "Updated profile"
    if kind == "event":
        title = after if row.field == "upcomingEventTitle" else ""
        return "Upcoming Event", f"Added an event: {title}" if title else "Updated an event"
    if kind == "story":
        title = after if row.field == "storyTitle" else ""
        if not title and profile:
            title = profile.story_title
        if title:
            return "Story Map", f"Added a story to the map: {title}"
        return "Story Map", "Added a story to the map"
    if kind == "media":
        return "Media", MEDIA_TEXT[row.field][0]
    return "Profile", "Updated profile"


def build_community_feed(
    changes: Iterable[ProfileChangeRow],
    profiles_by_id: dict[str, AlumniProfile],
    limit: int = 5,
) -> list[CommunityFeedItem]:
    """
    One item per person: their highest-scoring change (newest breaks ties),
    then newest first across people.
    """
    best: dict[str, tuple[int, float, ProfileChangeRow, str]] = {}
    for row in changes:
        if row.is_undone or row.is_noop:
            continue
        kind, score = _score(row)
        ts = row.timestamp
        current = best.get(row.alumni_id)
        if current is None or (score, ts) > (current[0], current[1]):
            best[row.alumni_id] = (score, ts, row, kind)

    picked = sorted(best.values(), key=lambda item: item[1], reverse=True)[:limit]
    items = []
    for _score_value, _ts, row, kind in picked:
        profile = profiles_by_id.get(row.alumni_id)
        label, text = _label_and_text(kind, row, profile)
        items.append(
            CommunityFeedItem(
                ts=row.ts,
                alumni_id=row.alumni_id,
                name=(profile.name if profile else "") or "Unknown",
                slug=(profile.slug if profile else "") or row.alumni_id,
                label=label,
                text=text,
                kind=kind,
                field=row.field,
            )
        )
    return items


class ProfileChangeLog:
    def __init__(self, sheets: SheetsClient, tab: str = "Profile-Changes"):
        self.sheets = sheets
        self.tab = tab

    def _read(self) -> tuple[list[str], list[list[str]]]:
        values = self.sheets.get_values(f"{self.tab}!A:ZZ")
        if not values:
            return [], []
        return values[0], values[1:]

    def load_profile_changes(
        self, days: int = 14, *, include_undone: bool = False, now: Optional[float] = None
    ) -> list[ProfileChangeRow]:
        """Changes newer than `days`, newest first. Undone rows are dropped unless asked for."""
        header, rows = self._read()
        if not header:
            return []
        columns = _column_index(header)
        cutoff = (now if now is not None else time.time()) - days * 24 * 60 * 60

        out: list[ProfileChangeRow] = []
        for offset, cells in enumerate(rows):
            change = parse_change_row(cells, columns, row_number=offset + 2)
            if change is None:
                continue
            if change.timestamp and change.timestamp < cutoff:
                continue
            if change.is_undone and not include_undone:
                continue
            out.append(change)
        out.sort(key=lambda c: c.timestamp, reverse=True)
        return out

    def mark_undone(self, ts: str, alumni_id: str, field: str) -> bool:
        """Flip `isUndone` on the matching change row. False when nothing matched."""
        header, rows = self._read()
        if not header:
            return False
        columns = _column_index(header)
        undone_col = columns.get("is_undone")
        if undone_col is None:
            undone_col = len(header)
            self.sheets.update_values(
                f"{self.tab}!{col_to_a1(undone_col)}1", [["isUndone"]]
            )
            columns["is_undone"] = undone_col

        for offset, cells in enumerate(rows):
            change = parse_change_row(cells, columns, row_number=offset + 2)
            if change is None:
                continue
            if (
                change.ts == ts.strip()
                and change.alumni_id == alumni_id.strip()
                and change.field == field.strip()
            ):
                cell = f"{self.tab}!{col_to_a1(undone_col)}{change.row_number}"
                self.sheets.update_values(cell, [["true"]])
                logger.info(
                    "Marked change undone: %s %s @ %s", alumni_id, field, ts
                )
                return True
        return False
