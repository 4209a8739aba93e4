"""
proxy.main — Process bootstrap for the signing proxy.

    uvicorn src.proxy.main:app --host 0.0.0.0 --port 3000
    python -m src.proxy.main

Settings are resolved at import; a ConfigurationError aborts startup before
the server binds its port.
"""

import sys

import uvicorn
from aws_lambda_powertools import Logger

from src.proxy.app import create_app
from src.proxy.config import load_settings
from src.proxy.errors import ConfigurationError

logger = Logger(service="hmac-proxy")

try:
    settings = load_settings()
except ConfigurationError as exc:
    logger.error("Invalid configuration", extra={"error": str(exc)})
    raise SystemExit(1) from exc

app = create_app(settings)


def main() -> None:
    uvicorn.run(app, host="0.0.0.0", port=settings.port, log_level="info")  # nosec B104


if __name__ == "__main__":
    sys.exit(main())
