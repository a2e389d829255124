"""
FastAPI application entry point for the alumni slug service.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import FastAPI

from dat_backend.config import get_settings
from dat_backend.dependencies import get_resolver, get_write_queue
from dat_backend.errors import install_error_handlers
from dat_backend.middleware import (
    ForwardLookup,
    HttpForwardLookup,
    LocalForwardLookup,
    SlugRedirectMiddleware,
)
from dat_backend.routes import router


def create_app(lookup: Optional[ForwardLookup] = None) -> FastAPI:
    settings = get_settings()
    logging.basicConfig(level=logging.INFO)
    if settings.debug:
        logging.getLogger("dat_backend").setLevel(logging.DEBUG)

    app = FastAPI(title="DAT Alumni Slugs (FastAPI)", version="0.1.0")
    install_error_handlers(app)
    app.include_router(router, prefix=settings.api_prefix)

    write_queue = None
    if lookup is None and settings.site_origin:
        # The remote forward-slug endpoint queues its own write-back.
        lookup = HttpForwardLookup(settings.site_origin)
    else:
        lookup = lookup or LocalForwardLookup(get_resolver)
        if settings.auto_canonicalize_slugs:
            write_queue = get_write_queue
    app.add_middleware(
        SlugRedirectMiddleware,
        lookup=lookup,
        write_queue=write_queue,
        timeout=settings.forward_lookup_timeout,
    )
    return app


app = create_app()
