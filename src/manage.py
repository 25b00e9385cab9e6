"""Courier database management CLI.

Usage:
    python src/manage.py setup-db   # Create all tables
    python src/manage.py drop-db    # Drop all tables
"""

import argparse
import sys

from courier.utils.logging import configure_logging


def setup_database():
    from courier.domain import courier
    from courier.utils.db import setup_db

    print("Initializing courier domain...")
    courier.init()
    print("Creating courier database schema...")
    providers = setup_db(courier)
    if not providers:
        print("  No SQL providers configured (set PROTEAN_ENV=production); nothing to create.")
    else:
        print(f"  Schema ready on: {', '.join(providers)}.")
    print("Done.")


def drop_database():
    from courier.domain import courier
    from courier.utils.db import drop_db

    print("Initializing courier domain...")
    courier.init()
    print("Dropping courier database schema...")
    providers = drop_db(courier)
    print(f"  Schema dropped on: {', '.join(providers) or 'none'}.")
    print("Done.")


def main():
    parser = argparse.ArgumentParser(description="Courier database management")
    subparsers = parser.add_subparsers(dest="command", required=True)
    subparsers.add_parser("setup-db", help="Create all database tables")
    subparsers.add_parser("drop-db", help="Drop all database tables")

    args = parser.parse_args()
    configure_logging()

    if args.command == "setup-db":
        setup_database()
    elif args.command == "drop-db":
        drop_database()
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
