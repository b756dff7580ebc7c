"""
salesflow.db.init_db

Table bootstrap for `env` dev/test. Production schemas go through Alembic.
"""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine

from salesflow.db import models  # noqa: F401  # registers funnels, orders, workflows, ... on Base.metadata
from salesflow.db.base import Base

log = structlog.get_logger(__name__)


async def init_db(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("db_tables_ready", tables=len(Base.metadata.tables), url=engine.url.render_as_string(hide_password=True))
