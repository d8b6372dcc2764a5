"""
AquilaGuard - ASGI middleware.

Dispatches failures raised by an ASGI application through a per-request
Dispatcher and turns them into a 500 response rendered by the handlers.
"""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional

from .engine import Dispatcher
from .output import BufferSink, OutputSink
from .security import reset_request_context, set_request_context


DispatcherFactory = Callable[[OutputSink, str], Dispatcher]

logger = logging.getLogger("aquila_guard.dispatch")


def default_dispatcher_factory(output: OutputSink, output_format: str) -> Dispatcher:
    return Dispatcher(output=output, default_format=output_format)


def _header(headers: list[tuple[bytes, bytes]], name: bytes) -> Optional[str]:
    for key, value in headers:
        if key.lower() == name:
            return value.decode("latin-1")
    return None


def _client_ip(scope: dict, headers: list[tuple[bytes, bytes]]) -> Optional[str]:
    forwarded = _header(headers, b"x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    real_ip = _header(headers, b"x-real-ip")
    if real_ip:
        return real_ip
    client = scope.get("client")
    if client:
        return str(client[0])
    return None


class FailureMiddleware:
    """
    ASGI middleware that dispatches unhandled application failures.

    For each failing HTTP request:
    1. Builds a Dispatcher writing into a BufferSink (HTML output when the
       client accepts ``text/html``, plain text otherwise)
    2. Dispatches the failure, then runs the shutdown phase
    3. Sends a 500 response with the buffered output

    If the response has already started the failure is still dispatched
    but the exception is re-raised to the server.

    Usage:
        app = FailureMiddleware(app)

        # with custom handlers
        def factory(output, output_format):
            dispatcher = Dispatcher(output=output, default_format=output_format)
            dispatcher.register(MailHandler())
            return dispatcher

        app = FailureMiddleware(app, dispatcher_factory=factory)
    """

    def __init__(self, app: Callable, *, dispatcher_factory: Optional[DispatcherFactory] = None):
        """
        Initialize middleware.

        Args:
            app: ASGI application callable
            dispatcher_factory: Builds the per-request Dispatcher from an
                output sink and an output format
        """
        self.app = app
        self.dispatcher_factory = dispatcher_factory or default_dispatcher_factory

    async def __call__(self, scope: dict, receive: Callable, send: Callable[[dict], Awaitable[None]]):
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        headers = list(scope.get("headers") or [])
        token = set_request_context(
            client_ip=_client_ip(scope, headers),
            user_agent=_header(headers, b"user-agent"),
            request_uri=scope.get("path"),
        )
        response_started = False

        async def send_wrapper(message: dict):
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as e:
            accept = _header(headers, b"accept") or ""
            output_format = "html" if "text/html" in accept else "text"
            body = self._dispatch(e, output_format)

            if response_started:
                logger.error(f"Failure after response start: {type(e).__name__}: {e}")
                raise

            await self._send_error(send, body, output_format)
        finally:
            reset_request_context(token)

    def _dispatch(self, error: Exception, output_format: str) -> str:
        sink = BufferSink()
        dispatcher = self.dispatcher_factory(sink, output_format)
        try:
            dispatcher.dispatch(error)
            body = sink.getvalue()
            # The shutdown phase clears the sink before shutdown handlers run.
            dispatcher.dispatch_shutdown()
            return body + sink.getvalue()
        finally:
            dispatcher.shutdown()

    async def _send_error(self, send: Callable[[dict], Awaitable[None]], body: str, output_format: str):
        content_type = "text/html" if output_format == "html" else "text/plain"
        payload = body.encode("utf-8")
        await send({
            "type": "http.response.start",
            "status": 500,
            "headers": [
                (b"content-type", f"{content_type}; charset=utf-8".encode("latin-1")),
                (b"content-length", str(len(payload)).encode("latin-1")),
            ],
        })
        await send({
            "type": "http.response.body",
            "body": payload,
        })
