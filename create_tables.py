"""
Script to create all database tables.

Creates the jobs and quota_records tables directly from the models, for
local development. Production schemas are managed with Alembic.

Usage:
    python create_tables.py           # create missing tables
    python create_tables.py --reset   # drop and recreate everything
"""
import asyncio
import sys

from docai.database import create_all_tables, drop_all_tables, engine


async def main(reset: bool = False):
    """Main entry point."""
    if reset:
        print("Dropping database tables...")
        await drop_all_tables()
    print("Creating database tables...")
    await create_all_tables()
    await engine.dispose()
    print("Done!")


if __name__ == "__main__":
    asyncio.run(main(reset="--reset" in sys.argv[1:]))
