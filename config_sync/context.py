"""Utilities for context tracing.

Reconciliations of different ConfigSyncs interleave in one process, so the
stage being traced is kept in a context variable. `TraceFilter` adds it to
log records, including those emitted by git and API calls in worker threads
started with `asyncio.to_thread`, which copies the context.
"""

import contextvars
from contextlib import contextmanager
import logging
from time import perf_counter
from typing import Generator


_LOGGER = logging.getLogger(__name__)

__all__ = ["TraceFilter", "current_trace", "trace_context"]

TRACE_SEPARATOR = " > "

trace: contextvars.ContextVar[tuple[str, ...]] = contextvars.ContextVar(
    "trace", default=()
)


def current_trace() -> str:
    """Return the names of the active stages, outermost first."""
    return TRACE_SEPARATOR.join(trace.get())


@contextmanager
def trace_context(name: str) -> Generator[None, None, None]:
    """Trace a named stage, logging its duration and any failure at debug level."""
    token = trace.set(trace.get() + (name,))
    label = current_trace()
    t1 = perf_counter()
    _LOGGER.debug("[Trace] > %s", label)
    try:
        yield
    except BaseException as err:
        _LOGGER.debug(
            "[Trace] ! %s failed after %0.2fs: %s",
            label,
            perf_counter() - t1,
            type(err).__name__,
        )
        raise
    else:
        _LOGGER.debug("[Trace] < %s (%0.2fs)", label, perf_counter() - t1)
    finally:
        trace.reset(token)


class TraceFilter(logging.Filter):
    """Adds the active stages as the `trace` attribute of log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.trace = current_trace() or "-"
        return True
