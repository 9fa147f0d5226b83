#!/usr/bin/env python3
"""Follow a node's latest block number from the command line.

Polls ``eth_blockNumber`` through pyblocktracker and prints every new block
as it is observed.  Tracker options are read from ``BLOCKTRACKER_*``
environment variables and can be overridden with flags.

Examples::

    scripts/watch_blocks.py https://rpc.example.org --interval 4
    BLOCKTRACKER_BYPASS_CACHE=1 scripts/watch_blocks.py http://localhost:8545 --count 3
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import os
import sys
from pathlib import Path
from typing import Any

# Allow running from repo root without installing the package.
_repo = Path(__file__).resolve().parent.parent
_src = _repo / "src"
if _src.is_dir():
    sys.path.insert(0, str(_src))

from pyblocktracker import (  # noqa: E402
    BlockFetchError,
    BlockTracker,
    JsonRpcProvider,
    SyncEvent,
    TrackerConfig,
)
from pyblocktracker._cache import parse_block_number  # noqa: E402


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    parser.add_argument("url", nargs="?", default=os.environ.get("BLOCKTRACKER_RPC_URL"), help="JSON-RPC endpoint")
    parser.add_argument("--interval", type=float, default=None, help="Polling interval in seconds")
    parser.add_argument("--count", type=int, default=0, help="Stop after this many new blocks (0 = forever)")
    parser.add_argument("--once", action="store_true", help="Print the latest block and exit")
    parser.add_argument("--debug", action="store_true", help="Enable DEBUG logging")
    args = parser.parse_args()
    if not args.url:
        parser.error("url is required (or set BLOCKTRACKER_RPC_URL)")
    return args


async def _watch(args: argparse.Namespace) -> int:
    overrides: dict[str, Any] = {}
    if args.interval is not None:
        overrides["polling_interval"] = args.interval
    config = TrackerConfig.from_env(**overrides)

    async with JsonRpcProvider(args.url) as provider, BlockTracker(provider, config) as tracker:
        if args.once:
            latest = await tracker.get_latest(raise_on_error=True)
            print(f"{latest} ({parse_block_number(latest)})")
            return 0

        seen = 0
        done = asyncio.Event()

        def on_sync(event: SyncEvent) -> None:
            nonlocal seen
            seen += 1
            number = parse_block_number(event.new_value)
            gap = ""
            if event.old_value is not None:
                gap = f" (+{number - parse_block_number(event.old_value)})"
            print(f"block {number}{gap}", flush=True)
            if args.count and seen >= args.count:
                done.set()

        def on_error(error: BlockFetchError) -> None:
            print(f"fetch failed: {error.__cause__!r}", file=sys.stderr, flush=True)

        tracker.subscribe("error", on_error)
        tracker.subscribe("sync", on_sync)
        await done.wait()
    return 0


def main() -> int:
    args = _parse_args()
    logging.basicConfig(
        level=logging.DEBUG if args.debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        return asyncio.run(_watch(args))
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
