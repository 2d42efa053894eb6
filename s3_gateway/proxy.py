from __future__ import annotations

import logging
from functools import partial
from typing import TYPE_CHECKING, Any

from anyio import create_task_group, to_thread
from boto3.session import Session
from botocore.config import Config as BotoConfig
from pydantic import AliasChoices, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .errors import (
    METHOD_NOT_ALLOWED_MESSAGE,
    NOT_FOUND_MESSAGE,
    BackendError,
    classify,
    inspect_error,
)
from .keys import request_path, resolve_object_key

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping

    from anyio import CancelScope
    from litestar.types import Receive, Scope, Send

LOG = logging.getLogger("s3_gateway.proxy")

CHUNK_SIZE = 1024 * 64

_LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}

# Response header -> GetObject result field
_PASSTHROUGH_HEADERS = {
    "cache-control": "CacheControl",
    "content-type": "ContentType",
    "content-length": "ContentLength",
}


async def _run_sync(func: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any:
    return await to_thread.run_sync(func, *args, **kwargs)


class GatewaySettings(BaseSettings):
    """Startup configuration for the gateway and its S3 client."""

    model_config = SettingsConfigDict(
        env_prefix="",
        case_sensitive=False,
        extra="ignore",
        env_ignore_empty=True,
        populate_by_name=True,
    )

    bucket: str = Field(
        default="",
        validation_alias="S3PROXY_BUCKET",
        validate_default=True,
    )
    region: str = Field(
        default="us-east-1",
        validation_alias=AliasChoices("S3PROXY_REGION", "AWS_REGION"),
    )
    host: str = Field(default="0.0.0.0", validation_alias="S3PROXY_HOST")
    port: int = Field(default=8080, validation_alias="S3PROXY_PORT")
    log_level: str = Field(default="info", validation_alias="S3PROXY_LOGLEVEL")
    endpoint: str | None = Field(
        default=None,
        validation_alias=AliasChoices("S3PROXY_ENDPOINT", "AWS_ENDPOINT_URL"),
    )
    use_path_style: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "S3PROXY_USE_PATH_STYLE",
            "AWS_S3_FORCE_PATH_STYLE",
        ),
    )
    connect_timeout: float = Field(
        default=10.0,
        validation_alias="S3PROXY_CONNECT_TIMEOUT",
    )
    read_timeout: float = Field(default=60.0, validation_alias="S3PROXY_READ_TIMEOUT")
    max_pool_connections: int = Field(
        default=50,
        validation_alias="S3PROXY_MAX_POOL_CONNECTIONS",
    )
    metrics_enabled: bool = Field(
        default=False,
        validation_alias="S3PROXY_METRICS_ENABLED",
    )

    @field_validator("bucket")
    @classmethod
    def _require_bucket(cls, value: str) -> str:
        value = value.strip()
        if not value:
            msg = "bucket name is required"
            raise ValueError(msg)
        return value

    @field_validator("endpoint")
    @classmethod
    def _blank_endpoint(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @property
    def logging_level(self) -> int:
        """Numeric logging level; unknown names fall back to INFO."""
        return _LOG_LEVELS.get(self.log_level.lower(), logging.INFO)


def build_s3_client(settings: GatewaySettings):
    session = Session(region_name=settings.region)
    return session.client(
        "s3",
        endpoint_url=settings.endpoint,
        config=BotoConfig(
            signature_version="s3v4",
            retries={"max_attempts": 3},
            connect_timeout=settings.connect_timeout,
            read_timeout=settings.read_timeout,
            max_pool_connections=settings.max_pool_connections,
            s3={"addressing_style": "path" if settings.use_path_style else "auto"},
        ),
    )


class ObjectBody:
    """Chunked async reader over a GetObject body that is released exactly once."""

    def __init__(self, stream: Any, chunk_size: int = CHUNK_SIZE) -> None:
        self._stream = stream
        self._chunk_size = chunk_size
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def __aiter__(self) -> ObjectBody:
        return self

    async def __anext__(self) -> bytes:
        if self._closed:
            raise StopAsyncIteration
        chunk = await _run_sync(self._stream.read, self._chunk_size)
        if not chunk:
            raise StopAsyncIteration
        return chunk

    def close(self) -> None:
        # Synchronous so it still runs inside a cancelled scope.
        if self._closed:
            return
        self._closed = True
        try:
            self._stream.close()
        except Exception:
            LOG.error("Error closing response body", exc_info=True)


async def send_text(send: Send, status_code: int, message: str) -> None:
    body = message.encode("utf-8")
    await send(
        {
            "type": "http.response.start",
            "status": status_code,
            "headers": [
                (b"content-type", b"text/plain; charset=utf-8"),
                (b"content-length", str(len(body)).encode("latin-1")),
            ],
        }
    )
    await send({"type": "http.response.body", "body": body, "more_body": False})


class S3Gateway:
    def __init__(self, settings: GatewaySettings, client: Any | None = None):
        self._settings = settings
        self._client = client if client is not None else build_s3_client(settings)

    @property
    def settings(self) -> GatewaySettings:
        return self._settings

    async def startup(self) -> None:
        LOG.info(
            "S3 gateway ready (bucket=%s, region=%s, endpoint=%s, path_style=%s)",
            self._settings.bucket,
            self._settings.region,
            self._settings.endpoint or "aws",
            self._settings.use_path_style,
        )

    async def shutdown(self) -> None:
        await _run_sync(self._client.close)

    async def handle(self, scope: Scope, receive: Receive, send: Send) -> None:
        """Serve one request: resolve the key, fetch the object, stream it back."""
        method = scope.get("method", "GET")
        path = request_path(scope)
        LOG.debug("handle method=%s path=%s", method, path)

        if method != "GET":
            await send_text(send, 405, METHOD_NOT_ALLOWED_MESSAGE)
            return

        key = resolve_object_key(path)
        if key is None:
            await send_text(send, 404, NOT_FOUND_MESSAGE)
            return

        bucket = self._settings.bucket
        LOG.debug("s3.get_object bucket=%s key=%s", bucket, key)
        try:
            result = await _run_sync(
                partial(self._client.get_object, Bucket=bucket, Key=key)
            )
        except Exception as error:
            await self._send_error(send, key, error)
            return

        body = ObjectBody(result["Body"])
        try:
            await send(
                {
                    "type": "http.response.start",
                    "status": 200,
                    "headers": self._object_headers(result),
                }
            )
            await self._stream_body(body, key, receive, send)
        except Exception:
            # Status is already committed, nothing left to tell the client.
            LOG.error("Error writing response for key %s", key, exc_info=True)
        finally:
            body.close()

    def _object_headers(self, result: Mapping[str, Any]) -> list[tuple[bytes, bytes]]:
        headers: list[tuple[bytes, bytes]] = []
        for header, field in _PASSTHROUGH_HEADERS.items():
            value = result.get(field)
            if value is None:
                continue
            headers.append((header.encode("latin-1"), str(value).encode("latin-1")))
        return headers

    async def _stream_body(
        self, body: ObjectBody, key: str, receive: Receive, send: Send
    ) -> None:
        completed = False
        disconnected = False

        async def watch_disconnect(cancel_scope: CancelScope) -> None:
            nonlocal disconnected
            while True:
                message = await receive()
                if message["type"] == "http.disconnect":
                    if not completed:
                        disconnected = True
                        cancel_scope.cancel()
                    return

        async with create_task_group() as task_group:
            task_group.start_soon(watch_disconnect, task_group.cancel_scope)
            async for chunk in body:
                await send(
                    {"type": "http.response.body", "body": chunk, "more_body": True}
                )
            await send({"type": "http.response.body", "body": b"", "more_body": False})
            completed = True
            task_group.cancel_scope.cancel()

        if disconnected:
            LOG.warning("client disconnected while streaming key %s", key)

    async def _send_error(self, send: Send, key: str, error: Exception) -> None:
        inspected = inspect_error(error)
        if isinstance(inspected, BackendError):
            LOG.error(
                "S3 error for key %s: code=%s message=%s",
                key,
                inspected.code,
                inspected.message,
            )
        else:
            LOG.error("Error fetching key %s: %s", key, error, exc_info=error)
        classification = classify(inspected)
        await send_text(send, classification.status_code, classification.message)

    @classmethod
    def from_env(cls) -> S3Gateway:
        """Create an S3Gateway configured from environment variables.

        Returns:
            S3Gateway bound to the bucket named by ``S3PROXY_BUCKET``.
        """
        return cls(GatewaySettings())
