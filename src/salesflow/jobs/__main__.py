"""
salesflow.jobs.__main__

Entrypoint for `python -m salesflow.jobs [task]`, meant to be run from cron.
"""

from __future__ import annotations

import argparse
import asyncio

from salesflow.api.app import create_app
from salesflow.jobs.runner import TASKS, run_tasks
from salesflow.settings import get_settings


async def _run(tasks: list[str]) -> dict[str, int]:
    app = create_app(settings=get_settings())
    # The lifespan owns the engine and HTTP clients.
    async with app.router.lifespan_context(app):
        return await run_tasks(app, tasks)


def main() -> None:
    parser = argparse.ArgumentParser(description="SalesFlow periodic tasks")
    parser.add_argument("task", nargs="?", default="all", choices=[*TASKS, "all"])
    args = parser.parse_args()

    tasks = list(TASKS) if args.task == "all" else [args.task]
    asyncio.run(_run(tasks))


if __name__ == "__main__":
    main()
