#!/usr/bin/env python3
"""
Watch Lichess rating-capped arenas and report likely sandbaggers to Zulip.

Configuration comes from environment variables or a .env file (see
sandbag_watch/config.py).

Usage:
    python scripts/watch_arenas.py
    python scripts/watch_arenas.py --once --dry-run
    python scripts/watch_arenas.py --sleep 300 --debug
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from sandbag_watch.config import ConfigError, Settings
from sandbag_watch.lichess import LichessClient
from sandbag_watch.logs import setup_logging
from sandbag_watch.scoring import SandbagClassifier
from sandbag_watch.transport import BasicAuth, build_session
from sandbag_watch.watcher import ArenaWatcher
from sandbag_watch.zulip import DryRunNotifier, Notifier, ZulipClient


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(
        description="Report likely sandbaggers in Lichess rating-capped arenas",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    python scripts/watch_arenas.py
    python scripts/watch_arenas.py --once --dry-run
        """,
    )
    parser.add_argument("--once", action="store_true",
                        help="Run a single scan and exit")
    parser.add_argument("--dry-run", action="store_true",
                        help="Log reports instead of posting them to Zulip")
    parser.add_argument("--sleep", type=float, default=None,
                        help="Seconds between scans (default: SANDBAG_SLEEP_SECONDS or 600)")
    parser.add_argument("--debug", action="store_true",
                        help="Debug logging")

    args = parser.parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    logger = setup_logging(settings.debug or args.debug)
    logger.debug("%r", settings)

    session = build_session()
    lichess = LichessClient(session, token=settings.lichess_token, root=settings.lichess_root)
    if args.dry_run:
        notifier = DryRunNotifier(settings.zulip_channel, settings.zulip_topic, settings.lichess_root)
    else:
        zulip = ZulipClient(session, settings.zulip_site, BasicAuth(settings.zulip_email, settings.zulip_key))
        notifier = Notifier(zulip, settings.zulip_channel, settings.zulip_topic, settings.lichess_root)

    watcher = ArenaWatcher(
        lichess,
        SandbagClassifier(settings.thresholds),
        notifier,
        sleep_seconds=args.sleep if args.sleep is not None else settings.sleep_seconds,
    )

    try:
        watcher.run(cycles=1 if args.once else None)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
    return 0


if __name__ == "__main__":
    sys.exit(main())
