from __future__ import annotations

from typing import TYPE_CHECKING

from litestar import Litestar, MediaType, Request, Response
from litestar.exceptions import MethodNotAllowedException
from litestar.handlers import asgi
from litestar.plugins.prometheus import PrometheusConfig, PrometheusController

from .access_log import AccessLogMiddleware
from .errors import METHOD_NOT_ALLOWED_MESSAGE
from .keys import request_path
from .proxy import S3Gateway

if TYPE_CHECKING:
    from litestar.types import Receive, Scope, Send


HEALTH_PATH = "/health"


async def _send_health(send: Send) -> None:
    await send(
        {
            "type": "http.response.start",
            "status": 200,
            "headers": [(b"content-length", b"0")],
        }
    )
    await send({"type": "http.response.body", "body": b"", "more_body": False})


def _method_not_allowed(
    request: Request, exc: MethodNotAllowedException
) -> Response[str]:
    return Response(
        content=METHOD_NOT_ALLOWED_MESSAGE,
        status_code=405,
        media_type=MediaType.TEXT,
    )


def create_app(gateway: S3Gateway | None = None) -> Litestar:
    """Create the S3 gateway ASGI application."""
    if gateway is None:
        gateway = S3Gateway.from_env()

    logged_handle = AccessLogMiddleware(gateway.handle)

    @asgi(path="/", is_mount=True, copy_scope=True)
    async def proxy_handler(scope: Scope, receive: Receive, send: Send) -> None:
        # Liveness matches the exact path only; "/health/" is an object key.
        if request_path(scope) == HEALTH_PATH:
            await _send_health(send)
            return
        await logged_handle(scope, receive, send)

    async def startup(app: Litestar) -> None:
        await gateway.startup()

    async def shutdown(app: Litestar) -> None:
        await gateway.shutdown()

    route_handlers = [proxy_handler]
    middleware = []
    if gateway.settings.metrics_enabled:
        prometheus_config = PrometheusConfig(
            app_name="s3_gateway", prefix="s3_gateway"
        )
        route_handlers.append(PrometheusController)
        middleware.append(prometheus_config.middleware)

    return Litestar(
        route_handlers=route_handlers,
        on_startup=[startup],
        on_shutdown=[shutdown],
        middleware=middleware,
        exception_handlers={MethodNotAllowedException: _method_not_allowed},
        openapi_config=None,
    )
