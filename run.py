"""Entry point for the Directory API.

Launches the FastAPI application with Uvicorn.  It is intended to be
executed from the project root, for example under Docker, where you
only specify a single Python file to run.

Host and port are read from environment variables ``API_HOST`` and
``API_PORT``.  Defaults are ``0.0.0.0`` and ``8000``.  Other settings
(``DATABASE_URL``, ``SECRET_KEY``, ``REDIS_URL``...) are described in
``directory_api/app/core/config.py``.

Usage:
    python run.py
"""
import asyncio
import logging
import os

from uvicorn import Config, Server

from directory_api.app.main import app


async def main() -> None:
    """Serve the API until interrupted."""
    host = os.getenv("API_HOST", "0.0.0.0")
    port = int(os.getenv("API_PORT", "8000"))
    config = Config(app=app, host=host, port=port, reload=False, log_level="info")
    server = Server(config)
    logging.getLogger(__name__).info("Starting Directory API on %s:%s", host, port)
    await server.serve()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except (KeyboardInterrupt, SystemExit):
        pass
