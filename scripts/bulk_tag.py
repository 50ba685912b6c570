#!/usr/bin/env python3
"""
Apply (or remove) taggings in bulk from a CSV file.

The CSV needs a header row with user, item and tag columns:

    user,item,tag
    1,5,ruby
    1,5,git

Usage:
    python scripts/bulk_tag.py taggings.csv [--untag] [--dry-run] [--limit N]

Options:
    --untag        Remove the listed taggings instead of adding them
    --dry-run      Show what would be applied without writing to Redis
    --limit N      Only process the first N rows (for testing)
    --verbose      Show detailed output
"""

import argparse
import csv
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from dotenv import load_dotenv
load_dotenv()

from src.services import ResourceKind, TaggingError, TaggingService, TaggingSettings

REQUIRED_COLUMNS = ("user", "item", "tag")


def read_rows(path: Path, limit: int | None = None) -> list[dict]:
    """
    Read tagging rows from a CSV file.

    Args:
        path: CSV file with user, item and tag columns
        limit: Optional limit on number of rows

    Returns:
        List of row dicts
    """
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = [c for c in REQUIRED_COLUMNS if c not in (reader.fieldnames or [])]
        if missing:
            raise ValueError(f"CSV is missing columns: {', '.join(missing)}")

        rows = []
        for row in reader:
            rows.append(row)
            if limit and len(rows) >= limit:
                break
        return rows


def main():
    parser = argparse.ArgumentParser(
        description="Apply or remove taggings listed in a CSV file"
    )
    parser.add_argument("csv_path", type=Path, help="CSV file with user,item,tag columns")
    parser.add_argument(
        "--untag",
        action="store_true",
        help="Remove the listed taggings instead of adding them"
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be applied without writing to Redis"
    )
    parser.add_argument(
        "--limit",
        type=int,
        help="Only process first N rows (for testing)"
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show detailed output"
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    if not args.csv_path.exists():
        print(f"ERROR: {args.csv_path} not found")
        sys.exit(1)

    settings = TaggingSettings.from_env()
    service = TaggingService.from_settings(settings)

    rows = read_rows(args.csv_path, limit=args.limit)
    action = "Untagging" if args.untag else "Tagging"
    print(f"{action} {len(rows)} rows from {args.csv_path} (redis: {settings.redis_url})")

    # Track statistics
    changed = 0
    unchanged = 0
    skipped = 0

    for line_no, row in enumerate(rows, start=2):
        values = {c: (row.get(c) or "").strip() for c in REQUIRED_COLUMNS}
        if not all(values.values()):
            skipped += 1
            if args.verbose:
                print(f"  Skipped line {line_no}: empty field")
            continue

        try:
            user = service.resource(ResourceKind.USER, values["user"])
            item = service.resource(ResourceKind.ITEM, values["item"])
            tag = service.resource(ResourceKind.TAG, values["tag"])
        except TaggingError as e:
            skipped += 1
            print(f"  Skipped line {line_no}: {e}")
            continue

        if args.verbose:
            print(f"  {action} user={user.identifier} item={item.identifier} tag={tag.identifier}")

        if args.dry_run:
            changed += 1
            continue

        if args.untag:
            result = service.untag(user, item, tag)
        else:
            result = service.tag(user, item, tag)

        if result:
            changed += 1
        else:
            unchanged += 1

    # Summary
    print()
    print("=" * 50)
    print(f"Bulk {action} Summary")
    print("=" * 50)
    print(f"Rows read:        {len(rows)}")
    print(f"Changed:          {changed}")
    print(f"Already applied:  {unchanged}")
    print(f"Skipped:          {skipped}")
    print()

    if args.dry_run:
        print("DRY RUN - nothing was written")


if __name__ == "__main__":
    main()
