#!/usr/bin/env python3
"""
Script to run the FindBook offline worker API server.
"""

import uvicorn
import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent
sys.path.insert(0, str(project_root))

from api.config import config
from utilities.config import config as worker_config
from utilities.logger import setup_logging


def main():
    """Run the API server."""
    setup_logging(
        log_level=worker_config.log_level,
        log_format=worker_config.log_format,
        log_file=worker_config.get_log_file_path(),
        debug=worker_config.debug
    )

    print("🚀 Starting FindBook Offline Worker")
    print(f"📡 Host: {config.host}")
    print(f"🔌 Port: {config.port}")
    print(f"🌐 Origin: {worker_config.origin}")
    print(f"🗄️  Sync store: {worker_config.sync_store}")
    print("=" * 50)

    uvicorn.run(
        "api.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level=config.log_level.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
