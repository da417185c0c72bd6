#!/usr/bin/env python3

import argparse
import glob
import os
import sqlite3
import sys
from datetime import datetime
from pathlib import Path

# Default place to look for .db files
PROJECT_ROOT = Path(__file__).resolve().parent.parent  # ../scripts → project root
DB_DIR = PROJECT_ROOT / "local" / "state"


def get_db_files(db_dir: Path) -> list[str]:
    """Return list of .db files in the target directory."""
    return sorted(glob.glob(str(db_dir / "*.db")))


def get_latest_jobs(db_path: str, limit: int = 15) -> list[tuple]:
    """
    Fetch the latest `limit` rows from the jobs table, newest insert first.
    Returns list of (date, score, company, title, work_mode, url)
    """
    try:
        conn = sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)
    except sqlite3.Error as e:
        print(f"Error opening {db_path}: {e}", file=sys.stderr)
        return []
    try:
        cur = conn.execute(
            """
            SELECT date, score, company, title, work_mode, url
            FROM jobs
            ORDER BY id DESC
            LIMIT ?
            """,
            (limit,),
        )
        return cur.fetchall()
    except sqlite3.Error as e:
        print(f"Error reading {db_path}: {e}", file=sys.stderr)
        return []
    finally:
        conn.close()


def format_timestamp(iso_str: str) -> str:
    """Convert an RFC3339 timestamp to readable local format."""
    try:
        dt = datetime.fromisoformat((iso_str or "").replace("Z", "+00:00"))
    except ValueError:
        return iso_str or "?"
    return dt.astimezone().strftime("%Y-%m-%d %H:%M:%S %Z")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Print the most recently stored job leads",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument("limit", nargs="?", type=int, default=15, help="Rows per database")
    parser.add_argument("--db", help="A specific SQLite file (default: every *.db under local/state)")
    parser.add_argument("--db-dir", type=Path, default=DB_DIR, help="Directory to scan for *.db")
    return parser.parse_args()


def main():
    args = parse_args()
    if args.limit <= 0:
        print(f"Invalid limit: {args.limit}. Using default (15).", file=sys.stderr)
        args.limit = 15

    if args.db:
        db_files = [args.db]
    else:
        if not os.path.exists(args.db_dir):
            print(f"Directory not found: {args.db_dir}")
            sys.exit(1)
        db_files = get_db_files(args.db_dir)
    if not db_files:
        print(f"No .db files found in {args.db_dir}")
        return

    print(f"Found {len(db_files)} database(s). Showing last {args.limit} jobs per DB.\n")

    for db_path in db_files:
        print("=" * 80)
        print(f"DATABASE: {os.path.basename(db_path)}")
        print(f"PATH: {db_path}")
        print("-" * 80)

        rows = get_latest_jobs(db_path, args.limit)
        if not rows:
            print("  No jobs found or error accessing database.")
            continue

        for i, (date, score, company, title, work_mode, url) in enumerate(rows, 1):
            print(f"{i:2d}. [{format_timestamp(date)}] score={score} {work_mode}")
            print(f"     {company} | {title}")
            print(f"     URL:   {url}")
            print()

        print()


if __name__ == "__main__":
    main()
