"""
Main entry point for the FindBook offline worker.
Installs and activates the worker once, optionally preloading the URLs given
on the command line, and logs the resulting cache usage.
"""

import asyncio
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from utilities.config import config
from utilities.logger import setup_logging, get_logger
from worker.service_worker import create_worker


async def main(preload_urls):
    """Install, activate and optionally preload."""
    # Set up logging
    setup_logging(
        log_level=config.log_level,
        log_format=config.log_format,
        log_file=config.get_log_file_path(),
        debug=config.debug
    )

    logger = get_logger(__name__)
    logger.info("Starting FindBook offline worker", version=config.cache_version)

    worker = None
    try:
        worker = await create_worker(config)

        await worker.install()
        deleted = await worker.activate()
        logger.info("Worker activated", deleted_partitions=deleted)

        if preload_urls:
            stored = await worker.lifecycle.preload(preload_urls)
            logger.info("Preload completed", requested=len(preload_urls), stored=stored)

        estimate = await worker.storage.estimate()
        for name, usage in estimate.items():
            logger.info("Cache partition", name=name, **usage)

    except Exception as e:
        logger.error("Fatal error occurred", error=str(e))
        sys.exit(1)

    finally:
        # Clean up
        if worker is not None:
            await worker.close()


if __name__ == "__main__":
    # Remaining arguments are URLs to preload
    asyncio.run(main(sys.argv[1:]))
