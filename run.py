#!/usr/bin/env python3
"""
Loan Back Office Entry Point

Starts the FastAPI server with the configured storage backend.
"""

import sys

import uvicorn

from loan_backoffice.config import get_config
from loan_backoffice.logging_config import setup_logging
from loan_backoffice.system import LoanBackOffice
from loan_backoffice.api import create_app


def main() -> int:
    config = get_config()
    logger = setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)

    try:
        backoffice = LoanBackOffice.from_config(config)
    except Exception:
        logger.exception("Could not open storage at %s", config.database_url)
        return 1

    logger.info("Starting loan back office API on %s:%s", config.api_host, config.api_port)
    try:
        uvicorn.run(create_app(backoffice), host=config.api_host, port=config.api_port, log_level="info")
    except KeyboardInterrupt:
        logger.info("Shutting down loan back office")
    finally:
        backoffice.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
