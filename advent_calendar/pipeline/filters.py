"""
Request filters.

Application order, outermost first:
    error_boundary -> transaction_filter -> forbidden_filter -> redirect_filter
    -> auth gate -> admin_filter -> impersonation filter -> display_error_filter
    -> handler

The auth gate and the impersonation filter live with the rest of their
feature in advent_calendar.auth.
"""
import dataclasses
import logging
from typing import Callable, Iterable

from fastapi.templating import Jinja2Templates
from sqlalchemy.orm import sessionmaker
from starlette.responses import RedirectResponse, Response

from advent_calendar.core.logging import LogContext

from .chain import Filter, Handler
from .context import RequestContext
from .outcomes import DisplayError, Forbidden, Redirect

logger = logging.getLogger(__name__)


def error_boundary(handler: Handler) -> Handler:
    """
    Outermost filter: always produces a Response.

    Unhandled exceptions and outcomes no inner filter translated become a
    generic 500. Hooks registered with RequestContext.after_response are
    applied to successful responses only. Records logged while the request
    is handled carry its method and path, plus the user id once the auth
    gate has bound it.
    """
    def handle(ctx: RequestContext) -> Response:
        request = ctx.request
        with LogContext(method=request.method, path=request.url.path):
            logger.info(f"Request received: {request.method} {request.url.path}")
            try:
                outcome = handler(ctx)
            except Exception:
                logger.exception(f"Unhandled error for {request.method} {request.url.path}")
                return Response(status_code=500)

            if not isinstance(outcome, Response):
                logger.error(f"Untranslated outcome {outcome!r} for {request.url.path}")
                return Response(status_code=500)
            return ctx.apply_response_hooks(outcome)

    return handle


def transaction_filter(session_factory: sessionmaker) -> Filter:
    """
    One database transaction per request.

    Commits whenever the inner handler returns, whatever it returns, so writes
    made before a Forbidden or Redirect are kept. Rolls back if it raises.
    """
    def wrap(handler: Handler) -> Handler:
        def handle(ctx: RequestContext):
            with session_factory() as db:
                with db.begin():
                    ctx.db = db
                    return handler(ctx)

        return handle

    return wrap


def forbidden_filter(handler: Handler) -> Handler:
    def handle(ctx: RequestContext):
        outcome = handler(ctx)
        if isinstance(outcome, Forbidden):
            return Response(status_code=403)
        return outcome

    return handle


def redirect_filter(handler: Handler) -> Handler:
    """Redirect -> 302, or 200 + HX-Redirect when the request came from HTMX."""
    def handle(ctx: RequestContext):
        outcome = handler(ctx)
        if isinstance(outcome, Redirect):
            return redirect_response(ctx, outcome.location)
        return outcome

    return handle


def redirect_response(ctx: RequestContext, location: str) -> Response:
    if ctx.is_htmx:
        return Response(status_code=200, headers={"HX-Redirect": location})
    return RedirectResponse(location, status_code=302)


def admin_filter(admin_emails: Iterable[str]) -> Filter:
    """Mark the signed-in user as admin when their email is on the allow-list."""
    admins = frozenset(admin_emails)

    def wrap(handler: Handler) -> Handler:
        def handle(ctx: RequestContext):
            if ctx.user is not None and ctx.user.email in admins:
                ctx.user = dataclasses.replace(ctx.user, is_admin=True)
            return handler(ctx)

        return handle

    return wrap


def display_error_filter(templates: Jinja2Templates) -> Filter:
    """Render DisplayError as the error fragment, swapped into #error."""
    def wrap(handler: Handler) -> Handler:
        def handle(ctx: RequestContext):
            outcome = handler(ctx)
            if isinstance(outcome, DisplayError):
                return templates.TemplateResponse(
                    ctx.request,
                    "_error.html",
                    {"message": outcome.message},
                    headers={"HX-Retarget": "#error", "HX-Reswap": "outerHTML"},
                )
            return outcome

        return handle

    return wrap


def require(predicate: Callable[[RequestContext], bool]) -> Filter:
    """Return Forbidden unless predicate holds for the request."""
    def wrap(handler: Handler) -> Handler:
        def handle(ctx: RequestContext):
            if not predicate(ctx):
                logger.info(f"Forbidden: {ctx.request.method} {ctx.request.url.path}")
                return Forbidden()
            return handler(ctx)

        return handle

    return wrap
