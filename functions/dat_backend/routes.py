"""
HTTP routes for slug forwarding, alias diagnostics and the alumni feed.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query, Request, Response

from dat_backend.aliases import SlugAliasStore
from dat_backend.alumni import AlumniDirectory
from dat_backend.canonicalize import ForwardRuleError, SlugCanonicalizer
from dat_backend.changes import ProfileChangeLog, build_community_feed
from dat_backend.config import Settings, get_settings
from dat_backend.csv_loader import CsvLoadError, clear_csv_cache, fallback_path
from dat_backend.dependencies import (
    get_alias_store,
    get_alumni_directory,
    get_canonicalizer,
    get_change_log,
    get_forward_map,
    get_rate_limiter,
    get_resolver,
    get_write_queue,
)
from dat_backend.forwards import (
    SLUG_MAP_FALLBACK_FILE,
    SlugForwardMap,
    build_forward_map,
    parse_forward_csv,
)
from dat_backend.queue import SlugWriteJob, WriteQueue
from dat_backend.rate_limit import RateLimiter, rate_key
from dat_backend.resolver import CanonicalResolver
from dat_backend.schemas import (
    AliasDiagResponse,
    AutoCanonRequest,
    AutoCanonResponse,
    CommunityFeedItemResponse,
    CommunityFeedResponse,
    CsvProbe,
    FlushAliasesResponse,
    ForwardSlugResponse,
    ForwardSlugWriteRequest,
    ForwardSlugWriteResponse,
    HealthResponse,
    InvalidateResponse,
    SlugForwardDebugResponse,
    SlugHealthResponse,
    UndoRequest,
    UndoResponse,
)
from dat_backend.slugs import normalize_key

logger = logging.getLogger(__name__)

NO_STORE = "no-store, max-age=0"
PROBE_HEAD_CHARS = 200


def enforce_rate_limit(
    request: Request, limiter: RateLimiter = Depends(get_rate_limiter)
) -> None:
    if not limiter.hit(rate_key(request)):
        raise HTTPException(status_code=429, detail="Too many requests")


def _provided_key(request: Request, settings: Settings) -> str:
    return request.headers.get(settings.admin_header_name, "")


def require_admin_key(
    request: Request, settings: Settings = Depends(get_settings)
) -> None:
    """Writes that need an explicit key; an unset ADMIN_API_KEY locks them."""
    if not settings.admin_api_key or _provided_key(request, settings) != settings.admin_api_key:
        raise HTTPException(status_code=403, detail="Forbidden")


def check_admin_key_if_set(
    request: Request, settings: Settings = Depends(get_settings)
) -> None:
    if settings.admin_api_key and _provided_key(request, settings) != settings.admin_api_key:
        raise HTTPException(status_code=403, detail="Forbidden")


router = APIRouter()
admin = [Depends(enforce_rate_limit)]


@router.get("/admin/forward-slug", response_model=ForwardSlugResponse, dependencies=admin)
def get_forward_slug(
    response: Response,
    slug: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    resolver: CanonicalResolver = Depends(get_resolver),
    queue: WriteQueue = Depends(get_write_queue),
) -> ForwardSlugResponse:
    """Read-only resolver the redirect middleware consults."""
    incoming = normalize_key(slug)
    if not incoming:
        raise HTTPException(status_code=400, detail="slug is required")

    target = resolver.forward_target(incoming)
    moving = bool(target) and target != incoming

    response.headers["Cache-Control"] = NO_STORE
    response.headers["x-slug-in"] = incoming
    response.headers["x-slug-target"] = target or ""
    response.headers["x-slug-action"] = "redirect" if moving else "pass"

    if moving and settings.auto_canonicalize_slugs:
        try:
            queue.enqueue(SlugWriteJob(old=incoming, next=target))
            response.headers["x-autocanon"] = "queued"
        except Exception:
            logger.exception("Failed to queue slug write %s -> %s", incoming, target)

    return ForwardSlugResponse(input=incoming, target=target)


@router.post(
    "/admin/forward-slug",
    response_model=ForwardSlugWriteResponse,
    dependencies=admin + [Depends(require_admin_key)],
)
def post_forward_slug(
    payload: ForwardSlugWriteRequest,
    canonicalizer: SlugCanonicalizer = Depends(get_canonicalizer),
) -> ForwardSlugWriteResponse:
    try:
        result = canonicalizer.write_forward_rule(payload.from_slug, payload.to_slug)
    except ForwardRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    return ForwardSlugWriteResponse(
        updated=result.updated,
        from_slug=result.from_slug,
        to_slug=result.to_slug,
        created_at=result.created_at,
        note=result.note or None,
    )


def require_auto_canon(settings: Settings = Depends(get_settings)) -> None:
    if not settings.auto_canonicalize_slugs:
        raise HTTPException(status_code=403, detail="AUTO_CANONICALIZE_SLUGS is not enabled")


auto_canon_guards = admin + [Depends(require_auto_canon), Depends(check_admin_key_if_set)]


def _auto_canon(
    old: Optional[str], new: Optional[str], canonicalizer: SlugCanonicalizer
) -> AutoCanonResponse:
    old_slug = normalize_key(old)
    next_slug = normalize_key(new)
    if not old_slug or not next_slug:
        raise HTTPException(
            status_code=400, detail="Both 'old' and 'next' slugs are required"
        )
    if old_slug == next_slug:
        return AutoCanonResponse(old=old_slug, next=next_slug, updated=False)

    try:
        updated = canonicalizer.auto_canonicalize(old_slug, next_slug)
    except ForwardRuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return AutoCanonResponse(old=old_slug, next=next_slug, updated=updated)


@router.get(
    "/admin/auto-canon",
    response_model=AutoCanonResponse,
    dependencies=auto_canon_guards,
)
def get_auto_canon(
    response: Response,
    old: Optional[str] = Query(default=None),
    next_slug: Optional[str] = Query(default=None, alias="next"),
    canonicalizer: SlugCanonicalizer = Depends(get_canonicalizer),
) -> AutoCanonResponse:
    response.headers["Cache-Control"] = NO_STORE
    return _auto_canon(old, next_slug, canonicalizer)


@router.post(
    "/admin/auto-canon",
    response_model=AutoCanonResponse,
    dependencies=auto_canon_guards,
)
def post_auto_canon(
    response: Response,
    payload: Optional[AutoCanonRequest] = Body(default=None),
    old: Optional[str] = Query(default=None),
    next_slug: Optional[str] = Query(default=None, alias="next"),
    canonicalizer: SlugCanonicalizer = Depends(get_canonicalizer),
) -> AutoCanonResponse:
    response.headers["Cache-Control"] = NO_STORE
    if payload is not None:
        old = payload.old or old
        next_slug = payload.next or next_slug
    return _auto_canon(old, next_slug, canonicalizer)


@router.get("/admin/diag-aliases", response_model=AliasDiagResponse, dependencies=admin)
def diag_aliases(
    slug: Optional[str] = Query(default=None),
    aliases: SlugAliasStore = Depends(get_alias_store),
) -> AliasDiagResponse:
    key = normalize_key(slug)
    if not key:
        raise HTTPException(status_code=400, detail="slug required")
    try:
        found = aliases.get_slug_aliases(key)
    except CsvLoadError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    return AliasDiagResponse(
        slug=key, alias_count=len(found), aliases=sorted(found)
    )


@router.get("/admin/slug-health", response_model=SlugHealthResponse, dependencies=admin)
def slug_health(
    slug: Optional[str] = Query(default=None),
    resolver: CanonicalResolver = Depends(get_resolver),
    directory: AlumniDirectory = Depends(get_alumni_directory),
) -> SlugHealthResponse:
    """Explain where a slug lands and whether that profile will render."""
    incoming = normalize_key(slug)
    if not incoming:
        raise HTTPException(status_code=400, detail="Missing ?slug=")

    forward = resolver.forward_target(incoming)
    canonical = forward or incoming
    try:
        match = directory.find_by_slug(canonical)
    except CsvLoadError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc

    suggestions = []
    if match is None:
        suggestions.append(
            f"Add a row in Alumni CSV with slug='{canonical}' "
            "(and at least Name, Show on Profile?=YES)."
        )
    elif not match.visible:
        suggestions.append(
            f'Set "Show on Profile?" to YES for slug=\'{canonical}\' '
            "(or fill required fields so it isn’t filtered out)."
        )

    return SlugHealthResponse(
        input=incoming,
        forward_target=forward,
        canonical_slug=canonical,
        exists_in_alumni=match is not None,
        visible_in_alumni=bool(match and match.visible),
        sample=match.as_sample() if match else None,
        suggestions=suggestions,
    )


def _invalidate_alumni_caches() -> None:
    get_alumni_directory().invalidate()
    get_alias_store().invalidate_slug_aliases_cache()
    clear_csv_cache()
    logger.info("Alumni roster, alias and CSV caches invalidated")


@router.get(
    "/admin/flush-slug-aliases", response_model=FlushAliasesResponse, dependencies=admin
)
def flush_slug_aliases(
    deep: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
) -> FlushAliasesResponse:
    if not settings.is_development:
        raise HTTPException(status_code=403, detail="Dev only")

    _invalidate_alumni_caches()

    wipe = deep == "1"
    removed: list[str] = []
    if wipe:
        path = fallback_path(SLUG_MAP_FALLBACK_FILE, settings.fallback_dir)
        if path.exists():
            try:
                path.unlink()
                removed.append(SLUG_MAP_FALLBACK_FILE)
            except OSError as exc:
                logger.warning("Could not delete fallback %s: %s", path, exc)
    return FlushAliasesResponse(deep=wipe, removed=removed)


@router.api_route(
    "/admin/invalidate",
    methods=["GET", "POST"],
    response_model=InvalidateResponse,
    dependencies=admin + [Depends(check_admin_key_if_set)],
)
def invalidate_caches(request: Request, response: Response) -> InvalidateResponse:
    """Drop cached roster and alias data so sheet edits apply on the next request."""
    _invalidate_alumni_caches()
    response.headers["Cache-Control"] = NO_STORE
    return InvalidateResponse(via=request.method)


@router.get("/debug/slug-forward", response_model=SlugForwardDebugResponse)
def debug_slug_forward(
    slug: Optional[str] = Query(default=None),
    settings: Settings = Depends(get_settings),
    forwards: SlugForwardMap = Depends(get_forward_map),
    resolver: CanonicalResolver = Depends(get_resolver),
) -> SlugForwardDebugResponse:
    incoming = normalize_key(slug)

    text = ""
    try:
        text = forwards.load_text()
        probe = CsvProbe(ok=True, len=len(text), head=text[:PROBE_HEAD_CHARS])
    except CsvLoadError as exc:
        probe = CsvProbe(ok=False, error=str(exc))

    forward = build_forward_map(parse_forward_csv(text))
    return SlugForwardDebugResponse(
        input=incoming or "(empty)",
        env_url=settings.slugs_csv_url,
        csv_probe=probe,
        map_size=len(forward),
        direct=forward.get(incoming),
        target=resolver.forward_target(incoming) if incoming else None,
    )


@router.get("/alumni/community-feed", response_model=CommunityFeedResponse)
def community_feed(
    response: Response,
    days: int = Query(default=14),
    limit: int = Query(default=5),
    changes: ProfileChangeLog = Depends(get_change_log),
    directory: AlumniDirectory = Depends(get_alumni_directory),
) -> CommunityFeedResponse:
    days = min(60, max(1, days))
    limit = min(20, max(1, limit))

    rows = changes.load_profile_changes(days)
    profiles = {p.profile_id: p for p in directory.load_alumni() if p.profile_id}
    items = build_community_feed(rows, profiles, limit=limit)

    response.headers["Cache-Control"] = NO_STORE
    return CommunityFeedResponse(
        items=[CommunityFeedItemResponse.model_validate(i.as_dict()) for i in items],
        days=days,
        limit=limit,
    )


@router.post(
    "/alumni/update/undo",
    response_model=UndoResponse,
    dependencies=admin + [Depends(require_admin_key)],
)
def undo_change(
    payload: UndoRequest,
    changes: ProfileChangeLog = Depends(get_change_log),
) -> UndoResponse:
    if not changes.mark_undone(payload.ts, payload.alumni_id, payload.field):
        raise HTTPException(status_code=404, detail="No matching change row")
    return UndoResponse()


@router.get("/healthz", response_model=HealthResponse)
def healthz() -> HealthResponse:
    return HealthResponse()
