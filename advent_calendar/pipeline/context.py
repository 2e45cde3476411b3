"""Per-request state threaded through the filter chain."""
from dataclasses import dataclass, field
from typing import Callable, List, Mapping, Optional

from sqlalchemy.orm import Session
from starlette.requests import Request
from starlette.responses import Response

from advent_calendar.auth.models import User

ResponseHook = Callable[[Response], None]


@dataclass
class RequestContext:
    """
    Everything a handler may know about the current request.

    Filters fill in db, user and impersonated_user as the request passes
    inward. Cookie changes that must reach the client whatever the handler
    returns are registered with after_response and applied to the final
    response.
    """
    request: Request
    form: Mapping[str, str] = field(default_factory=dict)
    db: Optional[Session] = None
    user: Optional[User] = None
    impersonated_user: Optional[User] = None
    response_hooks: List[ResponseHook] = field(default_factory=list)

    @property
    def acting_user(self) -> Optional[User]:
        """The user whose data the request reads: impersonated, else signed in."""
        return self.impersonated_user or self.user

    @property
    def is_htmx(self) -> bool:
        return self.request.headers.get("hx-request") == "true"

    def cookie(self, name: str) -> Optional[str]:
        return self.request.cookies.get(name)

    def after_response(self, hook: ResponseHook) -> None:
        self.response_hooks.append(hook)

    def apply_response_hooks(self, response: Response) -> Response:
        for hook in self.response_hooks:
            hook(response)
        return response
