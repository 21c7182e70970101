#!/usr/bin/env python3
"""
Main entry point for the FTP watcher agent.

Logs into the homeserver, keeps the event stream running in the background
and polls every configured directory listing on a fixed interval, posting
new entries into the rooms that asked for them with `!watch`.

Usage:
    python main.py                           # Run forever
    python main.py --once                    # Catch up, poll once and exit
    python main.py --settings my.yaml -v     # Custom settings, debug logging
"""

import argparse
import logging
import signal
import sys

from utils.exceptions import AuthRejectedError, ConfigurationError, TransportError
from core.registry import SourceRegistry
from core.sync_driver import SyncStopped
from core.watcher import Watcher
from utils.logger import setup_logging_from_settings


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description='FTP watcher - relays new directory listing entries into chat rooms'
    )
    parser.add_argument(
        '--config',
        type=str,
        help='Path to sources.yaml (default: config/sources.yaml)'
    )
    parser.add_argument(
        '--settings',
        type=str,
        help='Path to settings.yaml (default: config/settings.yaml)'
    )
    parser.add_argument(
        '--once',
        action='store_true',
        help='Run a single polling tick after connecting, then exit'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    registry = SourceRegistry(args.config, args.settings)
    setup_logging_from_settings(registry.get_settings(), verbose=args.verbose)
    logger = logging.getLogger('main')

    watcher = Watcher(registry=registry)

    def handle_sigterm(signum, frame):
        watcher.stop_event.set()

    signal.signal(signal.SIGTERM, handle_sigterm)

    try:
        watcher.connect()
        if args.once:
            watcher.check_all_sources()
        else:
            watcher.run_forever()
    except ConfigurationError as e:
        logger.critical(f"Configuration error: {e}")
        return 1
    except AuthRejectedError as e:
        logger.critical(f"Login rejected: {e}")
        return 1
    except TransportError as e:
        logger.critical(f"Could not connect: {e}")
        return 1
    except (KeyboardInterrupt, SyncStopped):
        pass
    finally:
        watcher.stop()

    return 0


if __name__ == '__main__':
    sys.exit(main())
