from __future__ import annotations

import argparse
import logging
import sys
from typing import TYPE_CHECKING, Any

import uvicorn
from pydantic import ValidationError

from . import __version__
from .app import create_app
from .proxy import GatewaySettings, S3Gateway

if TYPE_CHECKING:
    from collections.abc import Sequence

LOG = logging.getLogger("s3_gateway.cli")

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="s3-gateway",
        description=(
            "HTTP server that proxies GET requests to objects in one S3 bucket, "
            "preserving cache headers and returning generic error messages."
        ),
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--bucket", default=None, help="S3 bucket name (required)")
    parser.add_argument("--region", default=None, help="AWS region (default: us-east-1)")
    parser.add_argument("--host", default=None, help="listen address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=None, help="HTTP port (default: 8080)")
    parser.add_argument(
        "--loglevel",
        dest="log_level",
        default=None,
        help="log level: debug, info, warn, error (default: info)",
    )
    parser.add_argument("--endpoint", default=None, help="custom S3 endpoint URL")
    parser.add_argument(
        "--use-path-style",
        dest="use_path_style",
        action="store_true",
        default=None,
        help="use path-style addressing for S3",
    )
    parser.add_argument(
        "--metrics",
        dest="metrics_enabled",
        action="store_true",
        default=None,
        help="expose Prometheus metrics on /metrics",
    )
    return parser


def load_settings(argv: Sequence[str] | None = None) -> GatewaySettings:
    """Merge command-line flags over environment configuration.

    Raises:
        ValidationError: if the merged configuration is invalid, e.g. no bucket.
    """
    args = build_parser().parse_args(argv)
    overrides: dict[str, Any] = {
        name: value for name, value in vars(args).items() if value is not None
    }
    return GatewaySettings(**overrides)


def configure_logging(level: int) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout, force=True)


def main(argv: Sequence[str] | None = None) -> int:
    try:
        settings = load_settings(argv)
    except ValidationError as exc:
        print(f"s3-gateway: invalid configuration: {exc}", file=sys.stderr)
        return 1

    configure_logging(settings.logging_level)
    app = create_app(S3Gateway(settings))

    LOG.info(
        "Starting S3 gateway (address=%s:%s, bucket=%s, region=%s, loglevel=%s%s%s)",
        settings.host,
        settings.port,
        settings.bucket,
        settings.region,
        settings.log_level,
        f", endpoint={settings.endpoint}" if settings.endpoint else "",
        ", use_path_style=True" if settings.use_path_style else "",
    )
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=logging.getLevelName(settings.logging_level).lower(),
        access_log=False,
    )
    return 0
