"""FastAPI/Starlette glue - feeds request lifecycle events to the shipper.

Usage:
    app = FastAPI()
    shipper = instrument(app, token="...", tags=["api"])

    @app.get("/health")
    @exclude_route
    async def health():
        ...

    serve(app, host="0.0.0.0", port=8000)
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI
from starlette.datastructures import Headers, QueryParams
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from .config import BananasConfig
from .lifecycle import LifecycleCoordinator
from .records import RequestContext, now_msec
from .sender import TransportSender


logger = logging.getLogger(__name__)

# Per-route settings live on the endpoint under this attribute
ROUTE_SETTINGS_ATTR = "__bananas__"


def exclude_route(endpoint):
    """Mark a route endpoint so its responses produce no records."""
    settings = dict(getattr(endpoint, ROUTE_SETTINGS_ATTR, {}))
    settings["exclude"] = True
    setattr(endpoint, ROUTE_SETTINGS_ATTR, settings)
    return endpoint


def _route_settings(scope: Scope) -> dict:
    endpoint = scope.get("endpoint")
    return getattr(endpoint, ROUTE_SETTINGS_ATTR, None) or {}


def _decode_body(chunks: list[bytes], content_type: str) -> Any:
    raw = b"".join(chunks)
    if not raw:
        return None
    text = raw.decode("utf-8", errors="replace")
    if "json" in content_type:
        try:
            return json.loads(text)
        except ValueError:
            return text
    return text


def request_context(
    scope: Scope,
    received: int,
    status_code: int | None = None,
    response_body: Any = None,
) -> RequestContext:
    """Build a request context from an ASGI scope."""
    headers = Headers(scope=scope)
    route = scope.get("route")
    user = scope.get("user")
    client = scope.get("client")

    return RequestContext(
        path=scope.get("path", ""),
        method=scope.get("method", ""),
        received=received,
        route_path=getattr(route, "path", None),
        query=dict(QueryParams(scope.get("query_string", b""))),
        params=dict(scope.get("path_params") or {}),
        request_id=headers.get("x-request-id") or uuid.uuid4().hex,
        remote_address=headers.get("x-forwarded-for") or (client[0] if client else None),
        authenticated=bool(getattr(user, "is_authenticated", False)),
        credentials=user,
        status_code=status_code,
        response_body=response_body,
        excluded=bool(_route_settings(scope).get("exclude")),
    )


class BananasMiddleware:
    """
    Pure ASGI middleware reporting responses and request errors.

    Unhandled handler exceptions produce an error record and a 500
    response record, then propagate to the framework's error handling.
    """

    def __init__(self, app: ASGIApp, coordinator: LifecycleCoordinator):
        self.app = app
        self.coordinator = coordinator

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        received = now_msec()
        status: dict[str, Any] = {"code": None, "content_type": ""}
        body: list[bytes] = []

        async def send_wrapper(message: Message) -> None:
            if message["type"] == "http.response.start":
                status["code"] = message["status"]
                status["content_type"] = Headers(raw=message.get("headers", [])).get("content-type", "")
            elif message["type"] == "http.response.body" and (status["code"] or 0) >= 400:
                body.append(message.get("body", b""))
            await send(message)

        try:
            await self.app(scope, receive, send_wrapper)
        except Exception as exc:
            context = request_context(scope, received, 500, "Internal Server Error")
            self.coordinator.request_error(context, exc)
            self.coordinator.response(context)
            raise

        context = request_context(
            scope,
            received,
            status_code=status["code"],
            response_body=_decode_body(body, status["content_type"]),
        )
        self.coordinator.response(context)


def instrument(
    app: FastAPI,
    config: BananasConfig | None = None,
    *,
    sender: TransportSender | None = None,
    **options,
) -> LifecycleCoordinator:
    """
    Attach a shipper to ``app``.

    Either pass a ``BananasConfig`` or the options themselves. The shipper
    starts before the app's own lifespan and stops after it, and is
    available to handlers as ``request.app.state.bananas``.
    """
    if config is None:
        config = BananasConfig.from_dict(options)

    coordinator = LifecycleCoordinator(config=config, sender=sender)
    app.state.bananas = coordinator
    app.add_middleware(BananasMiddleware, coordinator=coordinator)

    inner = app.router.lifespan_context

    @asynccontextmanager
    async def lifespan(app_: Any):
        await coordinator.start()
        try:
            async with inner(app_) as state:
                yield state
        finally:
            await coordinator.stop()

    app.router.lifespan_context = lifespan
    return coordinator


class UvicornHost:
    """
    Stop-with-timeout for a uvicorn server.

    Asks uvicorn to exit, waits for the shipper's post-stop flush, and
    forces the exit once the timeout runs out.
    """

    def __init__(self, server: Any, coordinator: LifecycleCoordinator):
        self.server = server
        self.coordinator = coordinator

    async def stop(self, timeout: float) -> None:
        self.server.should_exit = True
        try:
            await asyncio.wait_for(self.coordinator.wait_stopped(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Server did not stop within {timeout}s, forcing exit")
            self.server.force_exit = True


def serve(app: FastAPI, **uvicorn_options) -> None:
    """Run an instrumented app under uvicorn."""
    import uvicorn

    coordinator = getattr(app.state, "bananas", None)
    if coordinator is None:
        raise RuntimeError("App is not instrumented, call instrument() first")

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    server = uvicorn.Server(uvicorn.Config(app, **uvicorn_options))
    coordinator.host = UvicornHost(server, coordinator)
    server.run()
