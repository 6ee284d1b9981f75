"""Process entry point for s3drive.

Configuration comes from the environment only: ``S3DRIVE_CONFIG`` names an
optional YAML file and ``PORT`` overrides the listening port. There are no
command-line flags.
"""

import logging
import sys

import uvicorn
import yaml
from pydantic import ValidationError

from s3drive.config import load_settings
from s3drive.logging_config import configure_logging
from s3drive.server import create_app


def main() -> None:
    """Load configuration and serve the application with uvicorn."""
    # Use a basic stderr logger for config-loading errors
    logging.basicConfig(level=logging.INFO, stream=sys.stderr)
    logger = logging.getLogger("s3drive")

    try:
        config = load_settings()
    except FileNotFoundError as exc:
        logger.error("Config file not found: %s", exc.filename)
        sys.exit(1)
    except (ValueError, ValidationError, yaml.YAMLError) as exc:
        logger.error("Failed to load config: %s", exc)
        sys.exit(1)

    # Configure structured logging (replaces basicConfig)
    configure_logging(
        level=config.server.log_level,
        fmt=config.server.log_format,
    )

    logger.info(
        "Starting s3drive on %s:%d (backend=%s, bucket=%s)",
        config.server.host,
        config.server.port,
        config.storage.backend,
        config.storage.bucket or "-",
    )

    app = create_app(config)

    # log_config=None keeps the handlers installed by configure_logging()
    uvicorn.run(
        app,
        host=config.server.host,
        port=config.server.port,
        log_level=config.server.log_level.lower(),
        log_config=None,
        timeout_graceful_shutdown=config.server.shutdown_timeout,
        timeout_keep_alive=5,
    )


if __name__ == "__main__":
    main()
