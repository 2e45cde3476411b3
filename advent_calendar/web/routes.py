"""
Calendar pages.

Handlers run inside the gated filter chain, so ctx.user is always set. Data is
read for the acting user (the impersonated user when an admin is
impersonating, else the signed-in user).
"""
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional

from fastapi.templating import Jinja2Templates
from starlette.responses import Response

from advent_calendar.auth.models import User
from advent_calendar.pipeline.context import RequestContext
from advent_calendar.pipeline.outcomes import DisplayError, Forbidden, Redirect

from .days import DaysRepository, MessageLoader, Month

logger = logging.getLogger(__name__)

PREVIOUS_DAYS_SHOWN = 20
PREVIOUS_DAYS_PAGE_SIZE = 10


class CalendarPages:
    """The month calendar, the page behind each day and the list of opened days."""

    def __init__(
        self,
        templates: Jinja2Templates,
        message_loader: MessageLoader,
        clock: Callable[[], datetime],
        earliest_date: date,
    ):
        self.templates = templates
        self.message_loader = message_loader
        self._clock = clock
        self.earliest_date = earliest_date

    def _today(self) -> date:
        return self._clock().date()

    # ========================================================================
    # GET /  and  GET /days
    # ========================================================================

    def index(self, ctx: RequestContext):
        """
        Render a month of the calendar.

        ?month=YYYY-MM picks the month (default: the current one). Only admins
        may look ahead; anyone else is sent back to the current month. HTMX
        navigation gets just the calendar fragment.
        """
        month = self._requested_month(ctx)
        if not isinstance(month, Month):
            return month
        template = "_calendar.html" if ctx.is_htmx else "index.html"
        return self.templates.TemplateResponse(ctx.request, template, self._month_context(ctx, month))

    def days(self, ctx: RequestContext):
        """Calendar fragment for ?month=YYYY-MM, swapped in by the day page's back link."""
        month = self._requested_month(ctx)
        if not isinstance(month, Month):
            return month
        return self.templates.TemplateResponse(ctx.request, "_calendar.html", self._month_context(ctx, month))

    def _requested_month(self, ctx: RequestContext):
        current = Month.of(self._today())
        month_param = ctx.request.query_params.get("month")
        try:
            month = Month.parse(month_param) if month_param else current
        except ValueError:
            return Response(status_code=400)

        if month > current and not ctx.user.is_admin:
            logger.info(f"User {ctx.user.id} asked for future month {month}")
            return Forbidden() if ctx.is_htmx else Redirect("/")
        return month

    def _month_context(self, ctx: RequestContext, month: Month) -> Dict:
        previous = month.plus(-1)
        return {
            "month_name": month.name,
            "year": month.year,
            "month_image_link": f"/assets/month-images/{month}.jpg",
            "previous_month_link": _month_link(previous) if previous >= Month.of(self.earliest_date) else None,
            "next_month_link": _month_link(month.plus(1)),
            "today_link": "/",
            "can_impersonate": ctx.user.is_admin,
            "impersonating_email": ctx.impersonated_user.email if ctx.impersonated_user else None,
            "calendar": self._calendar(ctx, month, ctx.acting_user),
        }

    def _calendar(self, ctx: RequestContext, month: Month, user: User) -> Dict:
        today = self._today()
        days_repo = DaysRepository(ctx.db, self._clock)
        opened = set(days_repo.opened_days_of_month(user, month))

        days = []
        for number in range(1, month.length + 1):
            day = date(month.year, month.month, number)
            days.append({
                "number": number,
                "link": f"/day/{day.isoformat()}",
                "opened": number in opened,
                "disabled": day > today,
                "today": day == today,
            })

        return {
            "leading_days": _leading_days(month),
            "days": days,
            "trailing_days": _trailing_days(month),
            "show_click_me_tooltip": not days_repo.has_opened_days(user),
            "previous_days": self._previous_days(days_repo, user, today, PREVIOUS_DAYS_SHOWN),
        }

    # ========================================================================
    # GET /previous-days
    # ========================================================================

    def previous_days(self, ctx: RequestContext):
        """
        One page of opened days, newest first, starting at ?from=YYYY-MM-DD
        (default: today). Each full page links to the next one.
        """
        from_param = ctx.request.query_params.get("from")
        try:
            from_date = date.fromisoformat(from_param) if from_param else self._today()
        except ValueError:
            return Response(status_code=400)

        days_repo = DaysRepository(ctx.db, self._clock)
        context = {
            "previous_days": self._previous_days(days_repo, ctx.acting_user, from_date, PREVIOUS_DAYS_PAGE_SIZE),
        }
        return self.templates.TemplateResponse(ctx.request, "_previous_days.html", context)

    def _previous_days(self, days_repo: DaysRepository, user: User, from_date: date, limit: int) -> Dict:
        opened = days_repo.opened_days_desc_from(user, from_date, limit)
        entries = []
        for day in opened:
            text = self.message_loader.get(day)
            if text is not None:
                entries.append({"date": _display_date(day), "text": text})

        next_link = None
        if len(opened) == limit:
            next_link = _previous_days_link(opened[-1])
        return {"entries": entries, "next_link": next_link}

    # ========================================================================
    # GET /day/{date}
    # ========================================================================

    def day(self, ctx: RequestContext):
        """
        Open a day: show its message and remember that it was opened.

        Future days are Forbidden. Opening while impersonating shows the
        message without recording anything for either user.
        """
        try:
            day = date.fromisoformat(ctx.request.path_params["date"])
        except ValueError:
            return Response(status_code=404)

        if day > self._today():
            logger.info(f"User {ctx.user.id} tried to open future day {day}")
            return Forbidden()

        message = self.message_loader.get(day)
        if message is None:
            logger.error(f"No message found for {day}")
            return DisplayError("error loading message")

        if ctx.impersonated_user is None:
            DaysRepository(ctx.db, self._clock).mark_day_as_opened(ctx.user, day)

        month = Month.of(day)
        context = {
            "text": message,
            "day_of_month": day.day,
            "back_link": f"/days?month={month}",
            "month_link": _month_link(month),
        }
        return self.templates.TemplateResponse(ctx.request, "day.html", context)


def _month_link(month: Month) -> str:
    return f"/?month={month}"


def _previous_days_link(last_shown: date) -> Optional[str]:
    if last_shown == date.min:
        return None
    return f"/previous-days?from={(last_shown - timedelta(days=1)).isoformat()}"


def _leading_days(month: Month) -> List[int]:
    """Day numbers of the previous month that fill the first week (weeks start Monday)."""
    count = month.first_day.weekday()
    previous_length = month.plus(-1).length
    return list(range(previous_length - count + 1, previous_length + 1))


def _trailing_days(month: Month) -> List[int]:
    count = 6 - month.last_day.weekday()
    return list(range(1, count + 1))


def _display_date(day: date) -> str:
    """e.g. Sun, 1 Dec 2024"""
    return f"{day:%a}, {day.day} {day:%b %Y}"
