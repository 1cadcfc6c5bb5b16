import asyncio
import logging
import time

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from app.core.responses import error_body

logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Request timeout - operation took too long"


class RequestTimingMiddleware:
    """
    Bound request latency and log slow requests.

    On timeout the client gets a 408 envelope while the handler keeps
    running to completion in the background (its late response is
    discarded), so store work is never cancelled halfway. Every response
    carries an ``X-Response-Time`` header.
    """

    def __init__(self, app: ASGIApp, timeout_seconds: float = 30.0, slow_request_ms: int = 500):
        self.app = app
        self.timeout_seconds = timeout_seconds
        self.slow_request_ms = slow_request_ms
        self._orphans: set[asyncio.Task] = set()

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        start = time.perf_counter()
        label = f"{scope['method']} {scope['path']}"
        timed_out = False
        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if timed_out:
                return
            if message["type"] == "http.response.start":
                response_started = True
                elapsed_ms = (time.perf_counter() - start) * 1000
                MutableHeaders(scope=message).append("X-Response-Time", f"{elapsed_ms:.0f}ms")
            await send(message)

        handler = asyncio.ensure_future(self.app(scope, receive, send_wrapper))
        done, _ = await asyncio.wait({handler}, timeout=self.timeout_seconds)

        if not done and response_started:
            # Already streaming; the client has its status line
            await handler
            done = {handler}

        if done:
            handler.result()
            elapsed_ms = (time.perf_counter() - start) * 1000
            if elapsed_ms > self.slow_request_ms:
                logger.warning(f"Slow request ({elapsed_ms:.0f}ms): {label}")
            else:
                logger.debug(f"Request completed in {elapsed_ms:.0f}ms: {label}")
            return

        timed_out = True
        self._orphans.add(handler)
        handler.add_done_callback(self._reap)
        logger.error(f"Request timeout after {self.timeout_seconds}s: {label}")

        response = JSONResponse(
            status_code=status.HTTP_408_REQUEST_TIMEOUT,
            content=error_body(TIMEOUT_MESSAGE),
        )
        await response(scope, receive, send)

    def _reap(self, task: asyncio.Task) -> None:
        self._orphans.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(f"Timed-out request failed after responding: {exc!r}")
