"""
Alumni roster loaded from the Profile-Data CSV export.
"""

from __future__ import annotations

import csv
import io
import logging
import threading
from typing import Callable, Optional

from dat_backend.csv_loader import load_csv
from dat_backend.records import AlumniProfile, parse_alumni_row
from dat_backend.slugs import normalize_key

logger = logging.getLogger(__name__)

ALUMNI_FALLBACK_FILE = "alumni.csv"

CsvSource = Callable[[], str]


def parse_alumni_csv(text: str) -> list[AlumniProfile]:
    reader = csv.DictReader(io.StringIO(text))
    rows: list[AlumniProfile] = []
    skipped = 0
    for raw in reader:
        profile = parse_alumni_row(raw)
        if profile is None:
            skipped += 1
            continue
        rows.append(profile)
    logger.debug("Parsed %d alumni rows, skipped %d", len(rows), skipped)
    return rows


class AlumniDirectory:
    """
    Cached view over the alumni roster.

    The roster is held until `invalidate()` is called (after a slug rewrite or
    an admin flush). Load failures propagate as CsvLoadError.
    """

    def __init__(self, csv_url: str = "", source: Optional[CsvSource] = None):
        self.csv_url = csv_url
        self._source = source or (lambda: load_csv(self.csv_url, ALUMNI_FALLBACK_FILE))
        self._rows: Optional[list[AlumniProfile]] = None
        self._lock = threading.Lock()

    def load_alumni(self) -> list[AlumniProfile]:
        with self._lock:
            if self._rows is not None:
                return self._rows
        rows = parse_alumni_csv(self._source())
        with self._lock:
            self._rows = rows
        logger.info("Loaded %d alumni profiles", len(rows))
        return rows

    def load_visible_alumni(self) -> list[AlumniProfile]:
        return [a for a in self.load_alumni() if a.visible]

    def find_by_slug(self, slug: str) -> Optional[AlumniProfile]:
        key = normalize_key(slug)
        if not key:
            return None
        for profile in self.load_alumni():
            if profile.slug == key:
                return profile
        return None

    def invalidate(self) -> None:
        with self._lock:
            self._rows = None
