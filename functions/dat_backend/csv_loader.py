"""
CSV loader with an in-process cache and an on-disk fallback copy.

Sheet exports are fetched over HTTP. Every successful fetch refreshes a local
fallback file so the site keeps rendering when Google is slow or down.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import requests

from dat_backend.config import get_settings

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 8  # seconds

DEFAULT_HEADERS = {
    "User-Agent": "Mozilla/5.0",
    "Accept": "text/csv",
    "Referer": "https://docs.google.com/",
}


class CsvLoadError(RuntimeError):
    """Raised when neither the live URL nor the fallback file produced CSV text."""


@dataclass
class _CacheEntry:
    text: str
    fetched_at: float


_cache: dict[str, _CacheEntry] = {}
_cache_lock = threading.Lock()


def clear_csv_cache() -> None:
    with _cache_lock:
        _cache.clear()


def fallback_path(fallback_filename: str, fallback_dir: Optional[str] = None) -> Path:
    base = fallback_dir if fallback_dir is not None else get_settings().fallback_dir
    return Path(base) / fallback_filename


def _with_cache_buster(url: str) -> str:
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != "_cb"]
    query.append(("_cb", str(int(time.time() * 1000))))
    return urlunsplit(parts._replace(query=urlencode(query)))


def _strip_bom(text: str) -> str:
    if text and text[0] == "\ufeff":
        return text[1:]
    return text


def _write_fallback(path: Path, text: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        logger.warning("Could not refresh CSV fallback %s: %s", path, exc)


def _fetch(url: str, *, no_store: bool) -> str:
    headers = dict(DEFAULT_HEADERS)
    if no_store:
        headers["Cache-Control"] = "no-cache, no-store, max-age=0"
        headers["Pragma"] = "no-cache"
    response = requests.get(url, headers=headers, timeout=REQUEST_TIMEOUT)
    response.raise_for_status()
    response.encoding = response.encoding or "utf-8"
    return _strip_bom(response.text)


def load_csv(
    url: Optional[str],
    fallback_filename: str,
    *,
    no_store: bool = False,
    revalidate: Optional[float] = None,
    cache_bust: bool = False,
    fallback_dir: Optional[str] = None,
) -> str:
    """
    Load CSV text from `url`, falling back to a same-named local file.

    Args:
        url: Live CSV location. Empty means "use the fallback file only".
        fallback_filename: File name under the fallback directory.
        no_store: Skip the in-process cache and ask intermediaries not to cache.
        revalidate: Serve a cached copy younger than this many seconds.
        cache_bust: Append a `_cb` query parameter to defeat HTTP caches.
        fallback_dir: Override the configured fallback directory.

    Raises:
        CsvLoadError: If the fetch failed and no fallback file exists.
    """
    path = fallback_path(fallback_filename, fallback_dir)

    if url:
        if not no_store and revalidate:
            with _cache_lock:
                entry = _cache.get(url)
            if entry and time.time() - entry.fetched_at < revalidate:
                logger.debug("Serving cached CSV for %s", url)
                return entry.text

        fetch_url = _with_cache_buster(url) if cache_bust else url
        try:
            logger.debug("Fetching CSV %s", fetch_url)
            text = _fetch(fetch_url, no_store=no_store)
        except requests.RequestException as exc:
            logger.warning("Live CSV fetch failed for %s: %s", url, exc)
        else:
            if not no_store:
                with _cache_lock:
                    _cache[url] = _CacheEntry(text=text, fetched_at=time.time())
            _write_fallback(path, text)
            return text

    try:
        logger.debug("Using CSV fallback %s", path)
        return _strip_bom(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise CsvLoadError(
            f"No CSV content found from URL or fallback: {fallback_filename}"
        ) from exc
