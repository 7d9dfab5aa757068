#!/usr/bin/env python3
"""
Migrate resolution hints from the JSON hint store to SQLite.

Usage:
    python scripts/migrate_hints_to_db.py --json data/hints.json --db data/hints.db
"""

import argparse
from pathlib import Path
import sys

from clinicresolve.cache import JsonHintCache, SqlHintCache
from clinicresolve.models import ENTITY_KINDS


def _valid_key(hint_key: str) -> bool:
    kind, sep, value = hint_key.partition(":")
    return bool(sep) and kind in ENTITY_KINDS and bool(value.strip())


def migrate(json_path: Path, db_path: Path, dry_run: bool = False) -> bool:
    """
    Copy hints from a JSON hint store into a SQLite hint store.

    Existing database hints with the same key are overwritten, since the JSON
    store is treated as the newer source.

    Args:
        json_path: Path to JSON hint store
        db_path: Path to SQLite database file
        dry_run: If True, don't write to database
    """
    print(f"Loading hints from {json_path}...")
    hints = JsonHintCache(json_path).items()
    print(f"Found {len(hints)} hints in JSON store")

    if dry_run:
        print("\n[DRY RUN] Would migrate the following hints:")
        for i, (key, resolved) in enumerate(hints[:5], 1):
            print(f"  {i}. {key} -> {resolved}")
        if len(hints) > 5:
            print(f"  ... and {len(hints) - 5} more")
        return True

    print(f"\nOpening database at {db_path}...")
    target = SqlHintCache(db_path)

    migrated = 0
    skipped = 0
    for key, resolved in hints:
        if not _valid_key(key) or not resolved.strip():
            print(f"Skipping malformed hint {key!r}")
            skipped += 1
            continue
        target.set(key, resolved)
        migrated += 1

    print("\nMigration complete!")
    print(f"   Migrated: {migrated}")
    print(f"   Skipped:  {skipped}")
    return True


def main():
    parser = argparse.ArgumentParser(description="Migrate resolution hints from JSON to SQLite")
    parser.add_argument("--json", type=Path, default=Path("data/hints.json"),
                       help="Path to JSON hint store")
    parser.add_argument("--db", type=Path, default=Path("data/hints.db"),
                       help="Path to SQLite database file")
    parser.add_argument("--dry-run", action="store_true",
                       help="Show what would be migrated without writing")

    args = parser.parse_args()

    if not args.json.exists():
        print(f"JSON file not found: {args.json}")
        sys.exit(1)

    migrate(args.json, args.db, dry_run=args.dry_run)


if __name__ == "__main__":
    main()
