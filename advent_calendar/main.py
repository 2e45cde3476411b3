"""
Main FastAPI application for the advent calendar.

Routes are plain handlers composed with the filter chains from
advent_calendar.pipeline; FastAPI only adapts requests into a RequestContext
and runs the chain on a worker thread.
"""
import logging
from datetime import datetime
from typing import Callable, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker
from starlette.concurrency import run_in_threadpool
from starlette.responses import Response

from advent_calendar.auth.authenticators import (
    Authenticator,
    GoogleAuthenticator,
    NoAuthAuthenticator,
)
from advent_calendar.auth.google import GoogleOAuthClient, GooglePublicKeys
from advent_calendar.auth.id_tokens import IdTokenVerifier
from advent_calendar.auth.impersonation import (
    ImpersonationTokens,
    impersonate_handler,
    impersonation_filter,
    stop_impersonating_handler,
)
from advent_calendar.auth.utils import utcnow
from advent_calendar.core.config import GoogleOAuthSettings, Settings, load_settings
from advent_calendar.core.database import create_database, init_database
from advent_calendar.core.logging import configure_logging
from advent_calendar.pipeline.chain import FilterChain, Handler
from advent_calendar.pipeline.context import RequestContext
from advent_calendar.pipeline.filters import (
    admin_filter,
    display_error_filter,
    error_boundary,
    forbidden_filter,
    redirect_filter,
    require,
    transaction_filter,
)
from advent_calendar.web.days import DirectoryMessageLoader
from advent_calendar.web.routes import CalendarPages
from advent_calendar.web.static import ChainedStaticFiles
from advent_calendar.web.templating import ASSETS_DIR, create_templates

logger = logging.getLogger(__name__)

HTTP_TIMEOUT_SECONDS = 10.0


def create_app(
    settings: Settings,
    *,
    clock: Callable[[], datetime] = utcnow,
    http_transport: Optional[httpx.BaseTransport] = None,
    engine: Optional[Engine] = None,
) -> FastAPI:
    """
    Build the application.

    Args:
        settings: Application settings
        clock: Source of the current time (tests pass a controllable one)
        http_transport: Transport for calls to Google (tests pass a fake);
            httpx's default when omitted
        engine: Database engine; one is created from settings.db_url if omitted

    Returns:
        FastAPI app with every route registered
    """
    if engine is None:
        engine, session_factory = create_database(settings.db_url)
    else:
        session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    init_database(engine)

    http_client = httpx.Client(transport=http_transport, timeout=HTTP_TIMEOUT_SECONDS)

    templates = create_templates(settings.hot_reloading)
    asset_dirs = list(settings.asset_dirs) + [ASSETS_DIR]
    pages = CalendarPages(
        templates=templates,
        message_loader=DirectoryMessageLoader(asset_dirs),
        clock=clock,
        earliest_date=settings.earliest_date,
    )
    tokens = ImpersonationTokens(settings.token_hash_key, clock)
    authenticator = _create_authenticator(settings, http_client, http_transport, clock)

    # Outermost first
    outer = FilterChain([
        error_boundary,
        transaction_filter(session_factory),
        forbidden_filter,
        redirect_filter,
    ])
    gated = outer.then(FilterChain([
        authenticator.authenticate,
        admin_filter(settings.admin_emails),
        impersonation_filter(tokens),
        display_error_filter(templates),
    ]))
    admin_only = gated.then(FilterChain([require(lambda ctx: ctx.user.is_admin)]))

    app = FastAPI(title="Advent Calendar", docs_url=None, redoc_url=None, openapi_url=None)

    # ========================================================================
    # ROUTES
    # ========================================================================

    _add_route(app, "/", "GET", gated.wrap(pages.index))
    _add_route(app, "/days", "GET", gated.wrap(pages.days))
    _add_route(app, "/previous-days", "GET", gated.wrap(pages.previous_days))
    _add_route(app, "/day/{date}", "GET", gated.wrap(pages.day))
    _add_route(app, "/impersonate", "POST", admin_only.wrap(impersonate_handler(tokens, clock)))
    _add_route(app, "/impersonate/stop", "POST", outer.wrap(stop_impersonating_handler))
    _add_route(app, "/logout", "GET", outer.wrap(authenticator.logout))
    for path, method, handler in authenticator.routes():
        _add_route(app, path, method, outer.wrap(handler))

    app.mount("/assets", ChainedStaticFiles(asset_dirs), name="assets")

    @app.on_event("shutdown")
    def shutdown_event():
        """Release outbound HTTP clients and database connections."""
        http_client.close()
        authenticator.close()
        engine.dispose()

    logger.info(f"Application created ({type(authenticator).__name__})")
    return app


def _create_authenticator(
    settings: Settings,
    http_client: httpx.Client,
    http_transport: Optional[httpx.BaseTransport],
    clock: Callable[[], datetime],
) -> Authenticator:
    auth = settings.auth
    if not isinstance(auth, GoogleOAuthSettings):
        logger.warning("Authentication disabled: every request runs as the development user")
        return NoAuthAuthenticator()

    public_keys = GooglePublicKeys(http_client, auth.certs_endpoint, clock)
    return GoogleAuthenticator(
        settings=auth,
        oauth_client=GoogleOAuthClient(auth, http_transport, timeout=HTTP_TIMEOUT_SECONDS),
        verifier=IdTokenVerifier(public_keys, auth.client_id, clock),
        token_hash_key=settings.token_hash_key,
        clock=clock,
    )


def _add_route(app: FastAPI, path: str, method: str, pipeline: Handler) -> None:
    """Expose a composed pipeline as a FastAPI endpoint."""
    async def endpoint(request: Request) -> Response:
        form = {}
        if request.method == "POST":
            submitted = await request.form()
            form = {key: value for key, value in submitted.items() if isinstance(value, str)}
        ctx = RequestContext(request=request, form=form)
        return await run_in_threadpool(pipeline, ctx)

    app.add_api_route(path, endpoint, methods=[method], include_in_schema=False)


def run() -> None:
    """Load settings from the environment and serve with uvicorn."""
    settings = load_settings()
    configure_logging(level=settings.log_level, format_type=settings.log_format)
    app = create_app(settings)
    logger.info(f"Starting server on port {settings.port}")
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
