#!/usr/bin/env python3
"""
Clear the VIN evaluation cache.

Every entry is deleted, fresh or not, so the next evaluation for any VIN
goes back to the listings API. Pass --expired to only drop entries past
the cache TTL.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import delete, func, select

from market_intel.config import settings
from market_intel.db.models import VinEvaluationCache
from market_intel.db.session import AsyncSessionLocal
from market_intel.market.evaluation import VinEvaluationService


async def clear_vin_cache(expired_only: bool = False):
    async with AsyncSessionLocal() as db:
        count = (await db.execute(select(func.count(VinEvaluationCache.id)))).scalar()
        print(f"VIN evaluation cache entries: {count}")

        if expired_only:
            removed = await VinEvaluationService(db).purge_expired()
            print(f"Removed {removed} entries older than {settings.vin_cache_ttl_days} days")
            return

        if count == 0:
            print("Cache is already empty.")
            return

        result = await db.execute(delete(VinEvaluationCache))
        await db.commit()
        print(f"Removed {result.rowcount} entries")


def main():
    parser = argparse.ArgumentParser(description="Clear the VIN evaluation cache")
    parser.add_argument("--expired", action="store_true", help="Only remove expired entries")
    args = parser.parse_args()

    try:
        asyncio.run(clear_vin_cache(expired_only=args.expired))
    except Exception as e:
        print(f"Error clearing cache: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
