"""
Control-flow outcomes.

Handlers and filters return either a finished Starlette Response or one of
these values. Each outcome type is turned into a response by exactly one
filter in the chain (see advent_calendar.pipeline.filters).
"""
from dataclasses import dataclass
from typing import Union

from starlette.responses import Response


@dataclass(frozen=True)
class Forbidden:
    """Opaque refusal: rendered as 403 with an empty body."""
    pass


@dataclass(frozen=True)
class Redirect:
    location: str


@dataclass(frozen=True)
class DisplayError:
    """A message to show inline in the page's error slot."""
    message: str


Outcome = Union[Response, Forbidden, Redirect, DisplayError]
