"""Script to create every table on a fresh database without Alembic."""

import asyncio

from sqlalchemy import text

from app.database import engine
from app.models import ALL_METADATA


async def init_db() -> None:
    """Create all tables of every model module."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(text('CREATE EXTENSION IF NOT EXISTS "pgcrypto"'))

        for metadata in ALL_METADATA:
            await conn.run_sync(metadata.create_all)

    print("✓ Database initialized successfully!")


if __name__ == "__main__":
    asyncio.run(init_db())
