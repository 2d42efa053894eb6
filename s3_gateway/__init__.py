"""Read-only HTTP gateway in front of a single S3 bucket."""

__version__ = "0.1.0"

from .app import create_app  # noqa: E402
from .proxy import GatewaySettings, S3Gateway  # noqa: E402

__all__ = ["GatewaySettings", "S3Gateway", "__version__", "create_app"]
