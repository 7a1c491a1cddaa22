#!/usr/bin/env python3
"""
Run a single full refresh of every active sub-account and exit.
Run this from the project root: python scripts/run_once.py
"""
import asyncio
import os
import sys

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from spending_oracle.config import settings
from spending_oracle.main import run_once
from spending_oracle.utils.logging import setup_logging


def main():
    setup_logging(settings.log_level, chain_id=settings.chain_id, oracle_module=settings.module_address)
    updated = asyncio.run(run_once())
    print(f"Updated {updated} sub-account(s)")


if __name__ == "__main__":
    main()
