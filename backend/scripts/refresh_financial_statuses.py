"""
Recompute the cached financial status of every client now (same work as the daily job).

Usage (from backend/):
  python -m scripts.refresh_financial_statuses
  python -m scripts.refresh_financial_statuses --as-of 2026-01-31
"""
import asyncio
import argparse
import sys
from datetime import date
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from database import database


async def run(as_of: date = None) -> int:
    from job_runner import run_financial_status_refresh

    result = await run_financial_status_refresh(today=as_of)
    print(result["message"])
    return result["count"]


def main():
    parser = argparse.ArgumentParser(description="Refresh cached client financial statuses")
    parser.add_argument("--as-of", type=date.fromisoformat, help="Reference day (YYYY-MM-DD), default today UTC")
    args = parser.parse_args()

    async def _():
        await database.connect()
        try:
            return await run(as_of=args.as_of)
        finally:
            await database.close()

    asyncio.run(_())
    return 0


if __name__ == "__main__":
    sys.exit(main())
