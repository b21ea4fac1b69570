"""
Process entry point: validate the environment, then serve with uvicorn.
"""

from __future__ import annotations

import argparse
import logging

import uvicorn

from betnad.app import configure_logging, create_app
from betnad.config import load_settings

logger = logging.getLogger(__name__)


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(description="Run the BetNad backend API.")
    parser.add_argument("--host", default=None, help="Override HOST.")
    parser.add_argument("--port", type=int, default=None, help="Override PORT.")
    args = parser.parse_args(argv)

    settings = load_settings()
    configure_logging(settings)

    host = args.host or settings.host
    port = args.port or settings.port
    logger.info("Server running on http://%s:%s", host, port)
    uvicorn.run(
        create_app(settings),
        host=host,
        port=port,
        log_level=settings.effective_log_level().lower(),
    )


if __name__ == "__main__":
    main()
