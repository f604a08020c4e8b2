from __future__ import annotations

import contextlib
import json
import logging
import secrets
import time
import typing as t

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response, StreamingResponse
from starlette.routing import Route

from mantra_pair.core.asgi_wrapper import ApiKeyGate, BodyLimit, RateLimiter, SecurityHeaders
from mantra_pair.core.clock import Clock
from mantra_pair.core.registry import SessionRegistry
from mantra_pair.errors import AuthError, MantraPairError, NotFoundError, ValidationError
from mantra_pair.event.sse import stream_events
from mantra_pair.monitoring import metrics
from mantra_pair.protocol.base import Connector
from mantra_pair.protocol.bridge import BridgeConnector
from mantra_pair.utils.config import Settings

logger = logging.getLogger(__name__)

SSE_HEADERS = {
    "Cache-Control": "no-cache, no-transform",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_app(
    settings: t.Optional[Settings] = None,
    *,
    connector: t.Optional[Connector] = None,
    registry: t.Optional[SessionRegistry] = None,
    clock: t.Optional[Clock] = None,
) -> Starlette:
    """Build the pairing service.

    `connector`, `registry` and `clock` are injectable so tests can run the
    whole HTTP surface against a fake protocol layer and virtual time.
    """
    settings = (settings or Settings()).validate()
    owns_connector = connector is None and registry is None
    if registry is None:
        connector = connector or BridgeConnector(
            settings.protocol.bridge_url, timeout_seconds=settings.protocol.timeout_seconds
        )
        registry = SessionRegistry(
            connector,
            session_config=settings.session,
            retry_config=settings.retry,
            export_config=settings.export,
            clock=clock,
        )
    api_key = settings.server.api_key
    started_at = time.monotonic()

    async def create_session(request: Request) -> Response:
        try:
            body = await request.json()
        except (json.JSONDecodeError, UnicodeDecodeError):
            raise ValidationError("Invalid JSON body") from None
        if not isinstance(body, dict):
            raise ValidationError("Request body must be a JSON object")

        session = await registry.create(body.get("method", "code"), body.get("phone"))
        payload: t.Dict[str, t.Any] = {
            "ok": True,
            "id": session.id,
            "method": session.method.value,
            "status": "starting",
        }
        if api_key:
            payload["streamKey"] = session.stream_key
        return JSONResponse(payload)

    async def pair_method_not_allowed(request: Request) -> Response:
        return JSONResponse({"ok": False, "error": "Method not allowed. Use POST /pair."}, status_code=405)

    async def session_events(request: Request) -> Response:
        session = registry.get(request.path_params["session_id"])
        if session is None:
            raise NotFoundError("Session not found")
        if api_key:
            key = request.query_params.get("key") or ""
            if not secrets.compare_digest(key.encode(), session.stream_key.encode()):
                raise AuthError("Invalid stream key")
        return StreamingResponse(
            stream_events(session, keepalive_seconds=settings.session.keepalive_seconds),
            media_type="text/event-stream",
            headers=SSE_HEADERS,
        )

    async def health(request: Request) -> Response:
        return JSONResponse(
            {
                "status": "healthy",
                "activeSessions": len(registry),
                "uptime": time.monotonic() - started_at,
                "metrics": metrics.snapshot(),
            }
        )

    async def handle_error(request: Request, exc: Exception) -> Response:
        assert isinstance(exc, MantraPairError)
        return JSONResponse(exc.to_payload(), status_code=exc.status_code)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette) -> t.AsyncIterator[None]:
        removed = await registry.purge_stale_dirs()
        if removed:
            logger.info("Removed %d stale session dir(s)", removed)
        registry.start()
        logger.info("Pairing service started")
        try:
            yield
        finally:
            logger.info("Shutting down, destroying %d session(s)", len(registry))
            await registry.close()
            if owns_connector and connector is not None:
                await connector.aclose()

    rate_limiter = RateLimiter(settings.rate_limit.max_requests, settings.rate_limit.window_seconds)
    api_gate = ApiKeyGate(api_key)

    app = Starlette(
        routes=[
            Route("/pair", create_session, methods=["POST"]),
            Route("/api/pair", create_session, methods=["POST"]),
            Route("/pair", pair_method_not_allowed, methods=["GET"]),
            Route("/pair/events/{session_id}", session_events, methods=["GET"]),
            Route("/api/sessions/{session_id}/events", session_events, methods=["GET"]),
            Route("/health", health, methods=["GET"]),
        ],
        middleware=[
            Middleware(SecurityHeaders().wrap),
            Middleware(
                CORSMiddleware,
                allow_origins=settings.server.cors_origins,
                allow_credentials=True,
                allow_methods=["GET", "POST"],
                allow_headers=["content-type", "x-api-key"],
            ),
            Middleware(rate_limiter.wrap),
            Middleware(api_gate.wrap),
            Middleware(BodyLimit(settings.server.max_body_bytes).wrap),
        ],
        exception_handlers={MantraPairError: handle_error},
        lifespan=lifespan,
    )
    app.state.registry = registry
    app.state.settings = settings
    return app
