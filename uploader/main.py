"""Uploader CLI entry point."""

import os
import sys

from common.logging_config import setup_logging
from uploader.repl import repl_loop


def main() -> None:
    """Entry point for CLI."""
    log_level = 'DEBUG' if '--debug' in sys.argv else os.getenv('LOG_LEVEL', 'WARNING')

    logger = setup_logging('uploader', log_level=log_level)

    if '--debug' in sys.argv:
        logger.info("Debug logging enabled")
        sys.argv.remove('--debug')

    logger.info("Uploader starting...")
    try:
        repl_loop()
    except Exception as e:
        logger.error(f"Uploader error: {e}", exc_info=True)
        raise
    finally:
        logger.info("Uploader exiting")


if __name__ == "__main__":
    main()
