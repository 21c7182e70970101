#!/usr/bin/env python3
"""
CLI script to poll sources without connecting to a homeserver.

Each selected source is polled twice: the first poll records the baseline,
the second shows what changed in between (usually nothing).

Usage:
    python run_check.py                              # Check all sources
    python run_check.py --source firefox/releases    # Check one source
    python run_check.py --list                       # List configured sources
"""

import argparse
import json
import sys
import os
import time

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.change_detector import ChangeDetector
from core.registry import SourceRegistry
from utils.logger import setup_logging


def main():
    parser = argparse.ArgumentParser(
        description='FTP watcher - one-shot listing check'
    )
    parser.add_argument(
        '--source',
        type=str,
        help='Specific source key to check (checks all if not specified)'
    )
    parser.add_argument(
        '--list',
        action='store_true',
        help='List all configured sources'
    )
    parser.add_argument(
        '--pause',
        type=float,
        default=0,
        help='Seconds to wait between the baseline and the second poll'
    )
    parser.add_argument(
        '--json',
        action='store_true',
        help='Print results as JSON'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()
    setup_logging(level='DEBUG' if args.verbose else 'WARNING')

    registry = SourceRegistry()

    if args.list:
        print("\nConfigured Sources:")
        print("-" * 50)
        for source in registry.get_all_sources():
            print(f"  {source.key}")
            print(f"    URL:     {source.url}")
            print(f"    Method:  {source.method}")
            print(f"    Filter:  {source.name_filter or '-'}")
            print(f"    Recurse: {source.recurse}")
            print()
        return 0

    if args.source:
        source = registry.get_source(args.source)
        if source is None:
            print(f"Unknown source: {args.source}")
            return 1
        sources = [source]
    else:
        sources = registry.get_all_sources()

    detector = ChangeDetector(registry.get_handler)

    baselines = [detector.check_source(source) for source in sources]
    if args.pause:
        time.sleep(args.pause)
    results = [detector.check_source(source) for source in sources]

    if args.json:
        print(json.dumps({
            'baseline': [r.to_dict() for r in baselines],
            'changes': [r.to_dict() for r in results],
        }, indent=2))
    else:
        print("\nResults:")
        print("-" * 70)
        for baseline, result in zip(baselines, results):
            print(baseline)
            if result.changed or not result.is_success:
                print(result)

    errors = sum(1 for r in baselines + results if not r.is_success)
    changed = sum(1 for r in results if r.changed)
    print(f"\nSummary: {changed} changed, {len(results) - changed} unchanged, {errors} errors")
    return 1 if errors else 0


if __name__ == '__main__':
    sys.exit(main())
