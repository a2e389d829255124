"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from dat_backend.alumni import AlumniDirectory
from dat_backend.aliases import SlugAliasStore
from dat_backend.canonicalize import DEFAULT_ALUMNI_TAB, SlugCanonicalizer
from dat_backend.changes import ProfileChangeLog
from dat_backend.config import get_settings
from dat_backend.forwards import SlugForwardMap
from dat_backend.queue import InMemoryWriteQueue, RedisWriteQueue, WriteQueue
from dat_backend.rate_limit import InMemoryRateLimiter, RateLimiter, RedisRateLimiter
from dat_backend.resolver import CanonicalResolver
from dat_backend.sheets import (
    GoogleSheetsClient,
    InMemorySheetsClient,
    SheetsClient,
    sheet_csv_source,
)

_sheets_client: SheetsClient | None = None
_alumni_directory: AlumniDirectory | None = None
_forward_map: SlugForwardMap | None = None
_alias_store: SlugAliasStore | None = None
_resolver: CanonicalResolver | None = None
_canonicalizer: SlugCanonicalizer | None = None
_write_queue: WriteQueue | None = None
_rate_limiter: RateLimiter | None = None
_change_log: ProfileChangeLog | None = None


def _alumni_tab() -> str:
    return get_settings().alumni_tab or DEFAULT_ALUMNI_TAB


def get_sheets_client() -> SheetsClient:
    """
    Return a singleton sheets client. Constructing the Google client raises
    ConfigurationError when the sheet id or service account is missing.
    """
    global _sheets_client
    if _sheets_client:
        return _sheets_client

    settings = get_settings()
    if settings.use_in_memory_backends:
        _sheets_client = InMemorySheetsClient()
    else:
        _sheets_client = GoogleSheetsClient(
            spreadsheet_id=settings.require_sheet_id(),
            service_account_json=settings.gcp_sa_json or "",
        )
    return _sheets_client


def get_alumni_directory() -> AlumniDirectory:
    global _alumni_directory
    if _alumni_directory:
        return _alumni_directory

    settings = get_settings()
    if settings.use_in_memory_backends:
        _alumni_directory = AlumniDirectory(
            source=sheet_csv_source(get_sheets_client(), f"{_alumni_tab()}!A:ZZZ")
        )
    else:
        _alumni_directory = AlumniDirectory(csv_url=settings.alumni_csv_url)
    return _alumni_directory


def get_forward_map() -> SlugForwardMap:
    global _forward_map
    if _forward_map:
        return _forward_map

    settings = get_settings()
    if settings.use_in_memory_backends:
        _forward_map = SlugForwardMap(
            source=sheet_csv_source(get_sheets_client(), f"{settings.slugs_tab}!A:C")
        )
    else:
        _forward_map = SlugForwardMap(csv_url=settings.slugs_csv_url)
    return _forward_map


def get_alias_store() -> SlugAliasStore:
    global _alias_store
    if _alias_store:
        return _alias_store
    _alias_store = SlugAliasStore(get_alumni_directory(), forwards=get_forward_map())
    return _alias_store


def get_resolver() -> CanonicalResolver:
    global _resolver
    if _resolver:
        return _resolver
    _resolver = CanonicalResolver(
        get_forward_map(),
        aliases=get_alias_store(),
        directory=get_alumni_directory(),
    )
    return _resolver


def get_canonicalizer() -> SlugCanonicalizer:
    global _canonicalizer
    if _canonicalizer:
        return _canonicalizer

    settings = get_settings()
    _canonicalizer = SlugCanonicalizer(
        get_sheets_client(),
        slugs_tab=settings.slugs_tab,
        alumni_tab=_alumni_tab(),
        directory=get_alumni_directory(),
        aliases=get_alias_store(),
    )
    return _canonicalizer


def get_write_queue() -> WriteQueue:
    """
    Return a singleton queue for slug write-back jobs.
    """
    global _write_queue
    if _write_queue is not None:
        return _write_queue

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _write_queue = RedisWriteQueue(
            url=settings.redis_url,
            queue_key=settings.redis_write_queue_key,
        )
    else:
        _write_queue = InMemoryWriteQueue()
    return _write_queue


def get_rate_limiter() -> RateLimiter:
    global _rate_limiter
    if _rate_limiter:
        return _rate_limiter

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _rate_limiter = RedisRateLimiter(
            url=settings.redis_url, limit=settings.rate_limit_per_minute
        )
    else:
        _rate_limiter = InMemoryRateLimiter(limit=settings.rate_limit_per_minute)
    return _rate_limiter


def get_change_log() -> ProfileChangeLog:
    global _change_log
    if _change_log:
        return _change_log
    _change_log = ProfileChangeLog(get_sheets_client(), tab=get_settings().changes_tab)
    return _change_log


def reset_dependencies() -> None:
    """Drop every singleton; tests call this after changing settings."""
    global _sheets_client, _alumni_directory, _forward_map, _alias_store
    global _resolver, _canonicalizer, _write_queue, _rate_limiter, _change_log
    _sheets_client = None
    _alumni_directory = None
    _forward_map = None
    _alias_store = None
    _resolver = None
    _canonicalizer = None
    _write_queue = None
    _rate_limiter = None
    _change_log = None
