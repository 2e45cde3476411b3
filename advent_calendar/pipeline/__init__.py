"""
Request filter pipeline.

Outcome values, the per-request context and the filters that turn outcomes
into HTTP responses.
"""
from .chain import FilterChain, Filter, Handler
from .context import RequestContext
from .outcomes import DisplayError, Forbidden, Outcome, Redirect

__all__ = [
    'FilterChain',
    'Filter',
    'Handler',
    'RequestContext',
    'DisplayError',
    'Forbidden',
    'Outcome',
    'Redirect',
]
