#!/usr/bin/env python3
"""
Main entry point for the Garage Bootstrap service.

All configuration comes from environment variables; see
garage_bootstrap.config for the full list.
"""

import logging
import os
import sys

from garage_bootstrap.bootstrap import EXIT_UNEXPECTED, run_bootstrap

logger = logging.getLogger(__name__)


def main():
    """Main entry point."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    try:
        exit_code = run_bootstrap(os.environ)
    except Exception:
        logger.exception("Bootstrap failed with an unexpected error")
        exit_code = EXIT_UNEXPECTED

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
