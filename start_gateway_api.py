"""
Start HyperDash Gateway API Server

Runs the REST proxy and the WebSocket stream gateway (default port 3000).
"""

import uvicorn
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

from hyperdash.config import GatewayConfig

# Ensure logs directory exists before the file handler opens it
Path("logs").mkdir(exist_ok=True)

# Configure logging
logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
        logging.FileHandler('logs/gateway_api.log')
    ]
)

logger = logging.getLogger(__name__)


def main():
    """Start HyperDash gateway server"""
    config = GatewayConfig.from_env()
    host, port = config.host, config.port

    logger.info("=" * 80)
    logger.info("HYPERDASH GATEWAY")
    logger.info("=" * 80)
    logger.info(f"Starting server on http://{host}:{port}")
    logger.info(f"WebSocket stream: ws://{host}:{port}/ws")
    logger.info(f"Swagger UI: http://{host}:{port}/docs")
    logger.info("=" * 80)

    try:
        uvicorn.run(
            "hyperdash.api:app",
            host=host,
            port=port,
            log_level="info",
            reload=False
        )
    except KeyboardInterrupt:
        logger.info("\nShutting down HyperDash gateway...")
    except Exception as e:
        logger.error(f"Failed to start server: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
