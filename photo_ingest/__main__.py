"""
Main entry point for running the package as a module.

Usage:
    python -m photo_ingest init-db
    python -m photo_ingest worker --concurrency 4
    python -m photo_ingest health
"""

import sys
from .cli import main

if __name__ == '__main__':
    sys.exit(main())
