#!/usr/bin/env python3
"""Expire live-class subscriptions whose paid period has run out.

Meant to run from cron. Each due subscription moves ACTIVE -> EXPIRED and
loses its access flags; rows locked by a concurrent run are skipped and
picked up next time.

    python scripts/expire_subscriptions.py
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Sequence

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from liveclass.db import pool  # noqa: E402
from liveclass.dependencies import get_subscription_service  # noqa: E402
from liveclass.logging_utils import setup_logging  # noqa: E402


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Expire overdue live-class subscriptions.")
    parser.add_argument(
        "--json",
        action="store_true",
        help="Print the expired subscription ids as JSON",
    )
    return parser.parse_args(argv)


async def _run() -> dict:
    await pool.open(wait=True)
    try:
        result = await get_subscription_service().expire_due()
    finally:
        await pool.close()
    return result.model_dump()


def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging()
    result = asyncio.run(_run())
    if args.json:
        print(json.dumps(result))
    else:
        print(f"Expired {result['expired']} subscriptions.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
