"""Relay process entry point."""

from __future__ import annotations

import logging

import uvicorn

from farmlink.config import get_settings
from farmlink.relay.app import create_app


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    logging.getLogger(__name__).info("stream server starting on ws://%s:%d", settings.relay_host, settings.relay_port)
    uvicorn.run(create_app(settings), host=settings.relay_host, port=settings.relay_port, log_config=None)


if __name__ == "__main__":
    main()
