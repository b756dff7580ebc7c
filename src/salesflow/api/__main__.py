"""
salesflow.api.__main__

Entrypoint for running the FastAPI application via `python -m salesflow.api`.

Responsibilities:
- Load settings; `--host`/`--port` override the configured bind address.
- Create the app.
- Start uvicorn with structlog-compatible logging config.
"""

from __future__ import annotations

import argparse

import uvicorn

from salesflow.api.app import create_app
from salesflow.settings import get_settings


def main() -> None:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="SalesFlow API server")
    parser.add_argument("--host", default=settings.api_host)
    parser.add_argument("--port", type=int, default=settings.api_port)
    args = parser.parse_args()

    uvicorn.run(
        create_app(settings=settings),
        host=args.host,
        port=args.port,
        log_config=None,  # structlog
    )


if __name__ == "__main__":
    main()


# --- Module Notes -----------------------------------------------------------
# Cron-style tasks (abandoned carts, delayed actions, workflow resumes) run
# separately through `python -m salesflow.jobs`.
