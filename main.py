"""
Flipbook Service: Main Entry Point
==================================
Starts the Flask-based flipbook microservice.

Usage:
    python main.py                    # Default: 0.0.0.0:$PORT (5000)
    python main.py --port 8000        # Custom port
    python main.py --debug            # Debug mode
"""

import argparse
import logging
import os

from flipbook.config import LOG_DATEFMT, LOG_FORMAT, ServiceConfig
from flipbook.server import create_app

logging.basicConfig(
    level=logging.INFO,
    format=LOG_FORMAT,
    datefmt=LOG_DATEFMT,
)
logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Flipbook Service")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host")
    parser.add_argument(
        "--port", type=int, default=int(os.environ.get("PORT", 5000)),
        help="Bind port",
    )
    parser.add_argument("--debug", action="store_true", help="Debug mode")
    args = parser.parse_args()

    config = ServiceConfig.from_env()
    logger.info("Creating Flask app (initializes record store + blob store)...")
    app = create_app(config)

    logger.info(f"Database path: {config.db_path}")
    logger.info(f"Starting server on {args.host}:{args.port}")
    app.run(host=args.host, port=args.port, debug=args.debug, threaded=True)


if __name__ == "__main__":
    main()
