#!/usr/bin/env python3
"""Revoke every live token issued to a subject.

Usage:
    python scripts/revoke_subject.py alice
    python scripts/revoke_subject.py dev-42 --dry-run

Environment Variables:
    DATABASE_TYPE: file (default) or postgres
    STORAGE_PATH: root of the file token ledger
    DATABASE_URL: PostgreSQL connection string when DATABASE_TYPE=postgres
"""
from __future__ import annotations

import argparse
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def revoke_subject(subject: str, dry_run: bool = False) -> int:
    """Revoke the subject's tokens and return how many records changed."""
    # Import here to avoid loading config before argument parsing
    from nekolc.service.runtime import get_runtime, shutdown_runtime

    runtime = get_runtime()
    try:
        if dry_run:
            print(
                f"[DRY RUN] Would revoke all tokens for {subject} "
                f"in the {runtime.settings.storage_backend.value} store"
            )
            return 0
        return runtime.auth.revoke_all_for_subject(subject)
    finally:
        shutdown_runtime()


def main():
    parser = argparse.ArgumentParser(
        description="Revoke all issued tokens for one subject",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("subject", help="Username or device identifier")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be done without making changes",
    )
    args = parser.parse_args()

    if not args.subject.strip():
        print("Error: subject must not be empty")
        sys.exit(1)

    try:
        count = revoke_subject(args.subject, args.dry_run)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)

    if not args.dry_run:
        print(f"Revoked {count} token(s) for {args.subject}")


if __name__ == "__main__":
    main()
