#!/usr/bin/env python3
"""
Summit Ledger Entry Point

Starts the FastAPI server with the ledger and trading core.
"""

import sys

import uvicorn

from summit_ledger.config import get_config
from summit_ledger.logging_config import setup_logging


if __name__ == "__main__":
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)

    print("Starting Summit Ledger...")
    print("Audit trail active")
    print("All money arithmetic uses Decimal precision")
    print(f"API available at: http://localhost:{config.api_port}")
    print(f"Documentation at: http://localhost:{config.api_port}/docs")
    print()

    try:
        uvicorn.run("summit_ledger.api:app", host=config.api_host, port=config.api_port)
    except KeyboardInterrupt:
        print("\nShutting down Summit Ledger...")
    except Exception as e:
        print(f"Error starting server: {e}")
        sys.exit(1)
