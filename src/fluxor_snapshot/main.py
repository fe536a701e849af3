"""Entrypoint for the group snapshot refresher."""

from __future__ import annotations

import argparse
import json
import time
from typing import List, Optional

from .config.settings import get_app_config
from .ingestion.feeds import fetch_feed_map
from .monitoring import bootstrap_observability
from .monitoring.logger import get_logger
from .pipeline import PipelineContext, refresh_group
from .store.cache import read_group_snapshot

logger = get_logger(__name__)


def run_once(context: PipelineContext, group: Optional[str], banks: Optional[List[str]]) -> None:
    refresh_group(context, group, banks)


def run_loop(
    context: PipelineContext,
    group: Optional[str],
    banks: Optional[List[str]],
    interval_seconds: float,
    max_cycles: Optional[int] = None,
) -> None:
    cycle = 0
    while True:
        cycle += 1
        try:
            refresh_group(context, group, banks)
        except Exception as exc:  # noqa: BLE001
            logger.error("Loop iteration %d failed: %s", cycle, exc, extra={"cycle": cycle})
        if max_cycles is not None and cycle >= max_cycles:
            break
        time.sleep(max(interval_seconds, 0.0))


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Refresh a lending group's snapshot in the shared cache")
    parser.add_argument("--group", default=None, help="Group address (default: configured group)")
    parser.add_argument(
        "--bank",
        action="append",
        dest="banks",
        default=None,
        help="Explicit bank address; repeat to refresh only these banks.",
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Refresh continuously with the supplied interval.",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=30.0,
        help="Seconds to wait between refreshes when --loop is enabled (default: 30)",
    )
    parser.add_argument(
        "--max-cycles",
        type=int,
        default=None,
        help="Optional limit to the number of loop iterations to execute.",
    )
    parser.add_argument(
        "--feed-map",
        action="store_true",
        help="Print the group's bank -> oracle account map and exit.",
    )
    parser.add_argument(
        "--show",
        action="store_true",
        help="Print the snapshot currently cached for the group and exit.",
    )
    args = parser.parse_args(argv)

    config = get_app_config()
    bootstrap_observability(config)
    context = PipelineContext.from_config(config)
    group = args.group or config.group.group_address

    if args.feed_map:
        print(json.dumps(fetch_feed_map(context, group), indent=2))
    elif args.show:
        print(json.dumps(read_group_snapshot(context.cache, group, key_prefix=config.cache.key_prefix), indent=2))
    elif args.loop:
        run_loop(context, group, args.banks, args.interval, args.max_cycles)
    else:
        run_once(context, group, args.banks)


if __name__ == "__main__":
    main()
