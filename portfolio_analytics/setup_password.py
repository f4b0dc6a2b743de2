"""
Generate the bcrypt hash for the dashboard admin password.

Usage:
    portfolio-analytics-hash-password <password> [--rounds 12]
"""
import argparse
import logging
import sys
from typing import List, Optional

from portfolio_analytics.services.credentials import hash_password

logger = logging.getLogger("AnalyticsAPI.SetupPassword")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="portfolio-analytics-hash-password",
        description="Print a bcrypt hash for ANALYTICS_ADMIN_PASSWORD_HASH.",
    )
    parser.add_argument("password", help="The admin password to hash")
    parser.add_argument("--rounds", type=int, default=12, help="bcrypt cost factor (default: 12)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    if len(args.password) < 8:
        logger.warning("Password is shorter than 8 characters.")

    try:
        password_hash = hash_password(args.password, rounds=args.rounds)
    except ValueError as e:
        print(f"Error generating hash: {e}", file=sys.stderr)
        return 1

    print("Add these to your .env file:")
    print(f"ANALYTICS_ADMIN_PASSWORD_HASH={password_hash}")
    print("ANALYTICS_ADMIN_EMAIL=<admin email>")
    print("ANALYTICS_JWT_SECRET=<long random string>")
    print("ANALYTICS_IP_SALT=<another long random string>")
    return 0


if __name__ == "__main__":
    sys.exit(main())
