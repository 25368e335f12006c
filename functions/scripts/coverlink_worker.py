"""
Daemon that drains the cover-linking queue.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from coverlink.dependencies import get_cover_linking_service, get_queue_client
from coverlink.worker import process_next, run_loop

logger = logging.getLogger(__name__)


def main() -> int:
    parser = argparse.ArgumentParser(description="Cover-linking queue worker")
    parser.add_argument(
        "--poll-interval-seconds",
        type=float,
        default=2.0,
        help="Seconds to block on the queue before polling again",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Drain the queue once and exit",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(name)s %(levelname)s %(asctime)s %(message)s",
        datefmt="%m/%d/%Y %I:%M:%S %p",
    )

    if not args.once:
        run_loop(poll_interval_seconds=args.poll_interval_seconds)
        return 0

    service = get_cover_linking_service()
    queue = get_queue_client()
    handled = 0
    while process_next(service=service, queue=queue, block=False):
        handled += 1
    logger.info("Handled %d queued messages", handled)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
