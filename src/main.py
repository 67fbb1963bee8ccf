"""Application bootstrap for the survey analytics server.

This module starts the Flask development server when executed as a
script. Keeping the runtime bootstrap here (instead of in ``src/app.py``)
ensures the app module can be safely imported by unit tests and tooling
without side-effects.
"""
from __future__ import annotations

import os
import sys
from contextlib import suppress

from src.app import create_app, logger, shutdown_executor


def main() -> None:  # pragma: no cover – manual run path
    """Serve the analytics API until the process is interrupted.

    On shutdown it triggers graceful cleanup of the background scheduler
    defined in ``src.app``.
    """
    host = os.getenv("HOST", "127.0.0.1")
    raw_port = os.getenv("PORT", "3000")
    try:
        port = int(raw_port)
    except ValueError:
        logger.error("Environment variable PORT must be an integer, got %r.", raw_port)
        sys.exit(1)

    app = create_app()
    logger.info("Serving analytics API on http://%s:%d", host, port)
    try:
        app.run(host=host, port=port)
    except KeyboardInterrupt:  # pragma: no cover
        logger.info("Shutdown requested (KeyboardInterrupt). Exiting…")
    finally:
        # Ensure thread pool and scheduler shut down gracefully
        with suppress(Exception):
            shutdown_executor()
        logger.info("Goodbye.")


if __name__ == "__main__":  # pragma: no cover
    main()
