"""
Initialize database tables
Run this once to create tables: python -m wa_outreach.db.init_db
"""

import asyncio
import logging

from wa_outreach.db.database import engine, init_db


async def main():
    await init_db()
    await engine.dispose()


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
    asyncio.run(main())
