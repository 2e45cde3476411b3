"""
Filter composition.

A handler takes a RequestContext and returns an Outcome. A filter wraps a
handler and returns a new one. FilterChain fixes an ordered list of filters
once at startup; filters are listed outermost first.
"""
from typing import Callable, Iterable, List

from .context import RequestContext
from .outcomes import Outcome

Handler = Callable[[RequestContext], Outcome]
Filter = Callable[[Handler], Handler]


class FilterChain:
    """An ordered, immutable list of filters."""

    def __init__(self, filters: Iterable[Filter] = ()):
        self._filters: List[Filter] = list(filters)

    def __len__(self) -> int:
        return len(self._filters)

    def then(self, inner: "FilterChain") -> "FilterChain":
        """Return a chain running this chain's filters around inner's."""
        return FilterChain(self._filters + inner._filters)

    def wrap(self, handler: Handler) -> Handler:
        """Apply every filter to handler, the first filter ending up outermost."""
        for filter_ in reversed(self._filters):
            handler = filter_(handler)
        return handler
