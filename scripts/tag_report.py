#!/usr/bin/env python3
"""
Print tag popularity reports.

Shows:
- Global tag ranking (every tag call counts)
- Optionally a user's or an item's tag ranking
- Optionally items similar to an item

Usage:
    python scripts/tag_report.py [--limit N] [--user ID] [--item ID] [--watch]

Options:
    --limit N     Number of tags per ranking (default: 20)
    --user ID     Also show this user's tag ranking
    --item ID     Also show this item's tag ranking and similar items
    --watch       Continuously update the report
"""

import argparse
import sys
import time
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from src.services import ResourceKind, TaggingService, TaggingSettings


def print_ranking(title: str, ranking: list) -> None:
    """Print a (tag, score) ranking with a bar per tag."""
    print(title)
    print("-" * 40)
    if not ranking:
        print("  (no tags)")
        print()
        return

    top_score = max(score for _, score in ranking)
    bar_width = 20
    for name, score in ranking:
        filled = int(bar_width * score / top_score) if top_score > 0 else 0
        bar = "█" * filled + "░" * (bar_width - filled)
        print(f"  {name:<20} {int(score):>6}  {bar}")
    print()


def print_report(service: TaggingService, args) -> None:
    """Print the tag report."""
    print()
    print("=" * 60)
    print("  Tag Popularity Report")
    print(f"  Generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    print("=" * 60)
    print()

    print_ranking("GLOBAL TAGS", service.get_all(ResourceKind.TAG, limit=args.limit))

    if args.user:
        user = service.resource(ResourceKind.USER, args.user)
        print_ranking(f"USER {user.identifier} TAGS", service.get_for(user, ResourceKind.TAG, limit=args.limit))

    if args.item:
        item = service.resource(ResourceKind.ITEM, args.item)
        print_ranking(f"ITEM {item.identifier} TAGS", service.get_for(item, ResourceKind.TAG, limit=args.limit))

        similar = service.get_for(item, ResourceKind.ITEM, similar=True, limit=args.limit)
        print(f"SIMILAR TO ITEM {item.identifier}")
        print("-" * 40)
        print(f"  {', '.join(similar) if similar else '(none)'}")
        print()


def main():
    parser = argparse.ArgumentParser(
        description="Generate tag popularity report"
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Number of tags per ranking (default: 20)"
    )
    parser.add_argument("--user", help="Also show this user's tag ranking")
    parser.add_argument("--item", help="Also show this item's tags and similar items")
    parser.add_argument(
        "--watch",
        action="store_true",
        help="Continuously update the report"
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=30,
        help="Update interval in seconds (default: 30)"
    )

    args = parser.parse_args()

    service = TaggingService.from_settings(TaggingSettings.from_env())

    if args.watch:
        print("Watching tag popularity (Ctrl+C to stop)...")
        try:
            while True:
                # Clear screen
                print("\033[2J\033[H", end="")
                print_report(service, args)
                print(f"(Refreshing every {args.interval} seconds, Ctrl+C to stop)")
                time.sleep(args.interval)
        except KeyboardInterrupt:
            print("\nStopped watching.")
    else:
        print_report(service, args)


if __name__ == "__main__":
    main()
