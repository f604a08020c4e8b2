from __future__ import annotations

import logging
import math
import secrets
import typing as t

from starlette.responses import JSONResponse

from mantra_pair.cache.window import WindowCounter
from mantra_pair.errors import PayloadTooLargeError

Scope = t.Dict[str, t.Any]
Receive = t.Callable[[], t.Awaitable[t.Dict[str, t.Any]]]
Send = t.Callable[[t.Dict[str, t.Any]], t.Awaitable[None]]
ASGIApp = t.Callable[[Scope, Receive, Send], t.Awaitable[None]]

API_KEY_HEADER = "x-api-key"
CREATE_PATHS = frozenset({"/pair", "/api/pair"})
LIMITED_PREFIXES = ("/pair", "/api/")


def _header(scope: Scope, name: str) -> t.Optional[str]:
    wanted = name.encode("latin1")
    for key_bytes, val_bytes in scope.get("headers", []) or []:
        if key_bytes.lower() == wanted:
            return val_bytes.decode("latin1")
    return None


class ApiKeyGate:
    """Requires the shared API key on session-creation requests.

    Usage:
        app = ApiKeyGate(api_key).wrap(inner_app)

    With no key configured every request passes. Event streams are not gated
    here; they are authorized with the per-session stream key instead.
    """

    def __init__(self, api_key: t.Optional[str]) -> None:
        self._api_key = api_key
        self._logger = logging.getLogger(__name__)

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def wrap(self, app: ASGIApp) -> ASGIApp:
        async def gate(scope: Scope, receive: Receive, send: Send) -> None:
            if (
                scope.get("type") != "http"
                or not self._api_key
                or scope.get("method") != "POST"
                or scope.get("path") not in CREATE_PATHS
            ):
                await app(scope, receive, send)
                return

            presented = _header(scope, API_KEY_HEADER) or ""
            if not secrets.compare_digest(presented.encode(), self._api_key.encode()):
                self._logger.warning("Rejected pairing request with missing or wrong API key")
                response = JSONResponse({"ok": False, "error": "Unauthorized"}, status_code=401)
                await response(scope, receive, send)
                return
            await app(scope, receive, send)

        return gate


class RateLimiter:
    """Fixed-window rate limit per client address on the pairing endpoints.

    Adds ``RateLimit-Limit``, ``RateLimit-Remaining`` and ``RateLimit-Reset``
    headers to every limited response and answers 429 once the window is used up.
    """

    def __init__(self, max_requests: int, window_seconds: float, counter: t.Optional[WindowCounter] = None) -> None:
        self._max = max_requests
        self._counter = counter or WindowCounter(window_seconds)
        self._logger = logging.getLogger(__name__)

    def wrap(self, app: ASGIApp) -> ASGIApp:
        async def limiter(scope: Scope, receive: Receive, send: Send) -> None:
            path = scope.get("path") or ""
            if scope.get("type") != "http" or not path.startswith(LIMITED_PREFIXES):
                await app(scope, receive, send)
                return

            client = scope.get("client") or ("unknown", 0)
            count, reset_in = self._counter.hit(str(client[0]))
            headers = [
                (b"ratelimit-limit", str(self._max).encode()),
                (b"ratelimit-remaining", str(max(0, self._max - count)).encode()),
                (b"ratelimit-reset", str(math.ceil(reset_in)).encode()),
            ]

            if count > self._max:
                self._logger.warning("Rate limit exceeded for %s on %s", client[0], path)
                response = JSONResponse(
                    {"ok": False, "error": "Rate limit exceeded. Try again shortly."},
                    status_code=429,
                    headers={"Retry-After": str(math.ceil(reset_in))},
                )
                response.raw_headers.extend(headers)
                await response(scope, receive, send)
                return

            async def wrapped_send(message: t.Dict[str, t.Any]) -> None:
                if message.get("type") == "http.response.start":
                    message = dict(message)
                    message["headers"] = list(message.get("headers") or []) + headers
                await send(message)

            await app(scope, receive, wrapped_send)

        return limiter


class BodyLimit:
    """Answers 413 once a request body grows past ``max_bytes``.

    A declared ``Content-Length`` is checked before the app runs; chunked
    bodies are counted as they are received.
    """

    def __init__(self, max_bytes: int) -> None:
        self._max = max_bytes
        self._logger = logging.getLogger(__name__)

    def wrap(self, app: ASGIApp) -> ASGIApp:
        async def limited(scope: Scope, receive: Receive, send: Send) -> None:
            if scope.get("type") != "http":
                await app(scope, receive, send)
                return

            declared = _header(scope, "content-length")
            if declared is not None and declared.strip().isdigit() and int(declared) > self._max:
                self._logger.warning("Rejected %s byte body on %s", declared.strip(), scope.get("path"))
                response = JSONResponse(PayloadTooLargeError().to_payload(), status_code=413)
                await response(scope, receive, send)
                return

            received = 0

            async def counting_receive() -> t.Dict[str, t.Any]:
                nonlocal received
                message = await receive()
                if message.get("type") == "http.request":
                    received += len(message.get("body", b""))
                    if received > self._max:
                        raise PayloadTooLargeError()
                return message

            await app(scope, counting_receive, send)

        return limited


SECURITY_HEADERS = [
    (b"x-content-type-options", b"nosniff"),
    (b"x-frame-options", b"SAMEORIGIN"),
    (b"referrer-policy", b"no-referrer"),
    (b"cross-origin-resource-policy", b"same-origin"),
    (b"x-dns-prefetch-control", b"off"),
]


class SecurityHeaders:
    """Adds conservative browser security headers to every HTTP response."""

    def wrap(self, app: ASGIApp) -> ASGIApp:
        async def secured(scope: Scope, receive: Receive, send: Send) -> None:
            if scope.get("type") != "http":
                await app(scope, receive, send)
                return

            async def wrapped_send(message: t.Dict[str, t.Any]) -> None:
                if message.get("type") == "http.response.start":
                    message = dict(message)
                    present = {k.lower() for k, _ in message.get("headers") or []}
                    extra = [(k, v) for k, v in SECURITY_HEADERS if k not in present]
                    message["headers"] = list(message.get("headers") or []) + extra
                await send(message)

            await app(scope, receive, wrapped_send)

        return secured
