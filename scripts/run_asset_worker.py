#!/usr/bin/env python3
from __future__ import annotations

import argparse
import logging
import sys
import time
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from storyloom.config import settings
from storyloom.logging_setup import configure_logging
from storyloom.modules.assets.worker import drain_asset_jobs

logger = logging.getLogger("storyloom.asset_worker")


def run(*, limit: int | None, watch: bool, interval_s: float, max_rounds: int | None = None) -> int:
    total = 0
    rounds = 0
    while True:
        processed = drain_asset_jobs(limit)
        total += processed
        rounds += 1
        if not watch or (max_rounds is not None and rounds >= max_rounds):
            return total
        if processed == 0:
            time.sleep(interval_s)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Drain queued illustration and narration jobs.")
    parser.add_argument("--limit", type=int, default=None, help="Maximum jobs per drain pass.")
    parser.add_argument("--watch", action="store_true", help="Keep polling the queue until interrupted.")
    parser.add_argument("--interval", type=float, default=2.0, help="Seconds between polls when idle.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(settings.log_level)
    try:
        total = run(limit=args.limit, watch=bool(args.watch), interval_s=float(args.interval))
    except KeyboardInterrupt:
        logger.info("asset worker stopped")
        return 0
    print(f"processed {total} asset job(s)")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
