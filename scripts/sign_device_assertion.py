#!/usr/bin/env python3
"""Print a signed device login body for launcher integration testing.

Usage:
    JWT_SECRET=... python scripts/sign_device_assertion.py dev-42
    python scripts/sign_device_assertion.py dev-42 --timestamp 1700000000

The output is a JSON body for POST /v0/api/auth/login. It is valid for
REPLAY_WINDOW_SECONDS around its timestamp.
"""
from __future__ import annotations

import argparse
import json
import sys
import time
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


def build_login_body(identifier: str, timestamp: int) -> dict:
    from nekolc.config import get_settings
    from nekolc.service.replay import ReplayGuard

    settings = get_settings()
    guard = ReplayGuard(
        settings.jwt_secret, window_seconds=settings.replay_window_seconds
    )
    return {
        "auth": {
            "identifier": identifier,
            "timestamp": timestamp,
            "signature": guard.expected_signature(identifier, timestamp),
        }
    }


def main():
    parser = argparse.ArgumentParser(
        description="Sign a device identifier with the configured secret",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("identifier", help="Device identifier to sign")
    parser.add_argument(
        "--timestamp",
        type=int,
        default=None,
        help="Unix seconds to sign (defaults to now)",
    )
    args = parser.parse_args()

    if not args.identifier:
        print("Error: identifier must not be empty")
        sys.exit(1)

    timestamp = args.timestamp if args.timestamp is not None else int(time.time())
    try:
        body = build_login_body(args.identifier, timestamp)
    except Exception as e:
        print(f"Error: {e}")
        sys.exit(1)
    print(json.dumps(body, indent=2))


if __name__ == "__main__":
    main()
