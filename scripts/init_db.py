import asyncio
import logging
import sys
import os

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.database import engine, init_models
from core.logging import setup_logging

setup_logging()
logger = logging.getLogger(__name__)


async def init_database():
    logger.info("Connecting to database...")
    try:
        # Creates categories, catalog_items, sync_runs and sync_batches
        await init_models()
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(init_database())
