"""
Per-request scope for deferred work and observations.

Cache writes and background refetches are fire-and-forget for the code that
starts them, but every one of them is registered on the current request's
scope. The HTTP layer hands scope.flush() to the response's background tasks,
so no deferred write is dropped when the response goes out.

Observations are key -> list of values, logged as one JSON line per request.
"""
import asyncio
import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Awaitable, Iterator

logger = logging.getLogger(__name__)

_current_scope: ContextVar["RequestScope | None"] = ContextVar("request_scope", default=None)

# Tasks deferred outside of any scope, referenced until they finish
_detached: set[asyncio.Future] = set()


class RequestScope:
    """Pending operations and observations of one request."""

    def __init__(self):
        self.observations: dict[str, list[Any]] = {}
        self.pending: set[asyncio.Future] = set()

    def observe(self, **data: Any) -> None:
        for key, value in data.items():
            self.observations.setdefault(key, []).append(value)

    def defer(self, aw: Awaitable) -> asyncio.Future:
        task = asyncio.ensure_future(aw)
        self.pending.add(task)
        return task

    async def flush(self) -> None:
        """
        Await every pending operation, including operations deferred while
        flushing (a background refetch schedules its own cache writes).
        Failures are logged, never raised.
        """
        while self.pending:
            batch = list(self.pending)
            self.pending.clear()
            results = await asyncio.gather(*batch, return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    logger.error("[RequestScope] Deferred operation failed: %r", result)

        try:
            logger.info("[Observability] %s", json.dumps(self.observations, default=str))
        except (TypeError, ValueError) as e:
            logger.error("[Observability] Failed to serialize observations: %s", e)


def current_scope() -> RequestScope | None:
    return _current_scope.get()


@contextmanager
def open_scope() -> Iterator[RequestScope]:
    """
    Install a fresh scope for the duration of the block.

    Usage:
        with open_scope() as scope:
            result = await lyrics_service.get_lyrics(...)
        background_tasks.add_task(scope.flush)
    """
    scope = RequestScope()
    token = _current_scope.set(scope)
    try:
        yield scope
    finally:
        _current_scope.reset(token)


def observe(**data: Any) -> None:
    """Record observations on the current scope (ignored outside a request)."""
    scope = _current_scope.get()
    if scope is None:
        logger.debug("[Observability] observe() outside of a request scope: %s", data)
        return
    scope.observe(**data)


def defer(aw: Awaitable) -> asyncio.Future:
    """Schedule aw in the background and register it on the current scope."""
    scope = _current_scope.get()
    if scope is not None:
        return scope.defer(aw)

    logger.warning("[RequestScope] defer() outside of a request scope, task is untracked")
    task = asyncio.ensure_future(aw)
    _detached.add(task)
    task.add_done_callback(_detached.discard)
    return task


async def race(task: asyncio.Future, timeout: float) -> Any | None:
    """
    Result of task if it completes within timeout, None otherwise.

    The task is never cancelled: on timeout it keeps running and its side
    effects (cache writes) still happen.
    """
    done, _ = await asyncio.wait({task}, timeout=timeout)
    if task not in done or task.cancelled():
        return None
    if task.exception() is not None:
        logger.warning("[RequestScope] Raced task failed: %r", task.exception())
        return None
    return task.result()
