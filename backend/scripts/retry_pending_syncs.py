"""
Re-deliver stock mutations still pending in the primary (POS) system.

Meant for cron:
  python scripts/retry_pending_syncs.py

Optional env vars:
- RETRY_BATCH (default: 200)
"""

import asyncio
import logging
import os
import sys
from pathlib import Path

BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from core.config import settings
from db.database import async_session_maker
from services.stock_mutations import StockMutationService


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, str(default)).strip())
    except Exception:
        return default


async def main() -> None:
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    service = StockMutationService(async_session_maker)
    result = await service.retry_pending(limit=_env_int("RETRY_BATCH", 200))
    print(f"attempted={result['attempted']} synced={result['synced']} pending={result['pending']}")


if __name__ == "__main__":
    asyncio.run(main())
