from __future__ import annotations

import io
from typing import TYPE_CHECKING, Any

import pytest
from botocore.exceptions import ClientError
from litestar.testing import TestClient

from s3_gateway import GatewaySettings, S3Gateway, create_app

if TYPE_CHECKING:
    from collections.abc import Iterator

BUCKET = "test-bucket"

_ENV_VARS = (
    "S3PROXY_BUCKET",
    "S3PROXY_REGION",
    "S3PROXY_HOST",
    "S3PROXY_PORT",
    "S3PROXY_LOGLEVEL",
    "S3PROXY_ENDPOINT",
    "S3PROXY_USE_PATH_STYLE",
    "S3PROXY_CONNECT_TIMEOUT",
    "S3PROXY_READ_TIMEOUT",
    "S3PROXY_MAX_POOL_CONNECTIONS",
    "S3PROXY_METRICS_ENABLED",
    "AWS_REGION",
    "AWS_ENDPOINT_URL",
    "AWS_S3_FORCE_PATH_STYLE",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep the developer's shell configuration out of the tests."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)


def client_error(code: str, message: str = "", status: int = 400) -> ClientError:
    return ClientError(
        {
            "Error": {"Code": code, "Message": message},
            "ResponseMetadata": {"HTTPStatusCode": status},
        },
        "GetObject",
    )


class StubBody:
    """Stands in for botocore's StreamingBody and counts how it is used."""

    def __init__(self, data: bytes, fail_close: bool = False) -> None:
        self._buffer = io.BytesIO(data)
        self._fail_close = fail_close
        self.read_sizes: list[int | None] = []
        self.close_calls = 0

    def read(self, amt: int | None = None) -> bytes:
        self.read_sizes.append(amt)
        return self._buffer.read(amt)

    def close(self) -> None:
        self.close_calls += 1
        if self._fail_close:
            msg = "connection reset while releasing body"
            raise OSError(msg)


class StubS3Client:
    """In-memory replacement for a boto3 S3 client bound to one bucket."""

    def __init__(self) -> None:
        self.objects: dict[str, dict[str, Any]] = {}
        self.errors: dict[str, BaseException] = {}
        self.calls: list[tuple[str, str]] = []
        self.bodies: list[StubBody] = []
        self.closed = False

    def put(
        self,
        key: str,
        data: bytes,
        content_type: str | None = None,
        cache_control: str | None = None,
        fail_close: bool = False,
    ) -> None:
        self.objects[key] = {
            "data": data,
            "ContentType": content_type,
            "CacheControl": cache_control,
            "fail_close": fail_close,
        }

    def fail(self, key: str, error: BaseException) -> None:
        self.errors[key] = error

    def get_object(self, Bucket: str, Key: str) -> dict[str, Any]:
        self.calls.append((Bucket, Key))
        if Key in self.errors:
            raise self.errors[Key]
        if Key not in self.objects:
            raise client_error("NoSuchKey", "The specified key does not exist.", 404)

        stored = self.objects[Key]
        body = StubBody(stored["data"], fail_close=stored["fail_close"])
        self.bodies.append(body)
        result: dict[str, Any] = {"Body": body, "ContentLength": len(stored["data"])}
        for field in ("ContentType", "CacheControl"):
            if stored[field] is not None:
                result[field] = stored[field]
        return result

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def settings() -> GatewaySettings:
    return GatewaySettings(bucket=BUCKET)


@pytest.fixture
def s3_stub() -> StubS3Client:
    return StubS3Client()


@pytest.fixture
def gateway(settings: GatewaySettings, s3_stub: StubS3Client) -> S3Gateway:
    return S3Gateway(settings, client=s3_stub)


@pytest.fixture
def client(gateway: S3Gateway) -> Iterator[TestClient]:
    with TestClient(app=create_app(gateway)) as test_client:
        yield test_client
