#!/usr/bin/env python3
"""Assign the owner of a reserved space (space3, space8). Reserved spaces never enter the rental pool.
Run from backend: python scripts/set_reserved_owner.py space3 <wallet> <username>
"""
import argparse
import sys
from pathlib import Path

# Ensure backend is on path when run as script
backend_dir = Path(__file__).resolve().parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from spacerent.core.constants import RESERVED_SPACE_IDS
from spacerent.db.session import SessionLocal
from spacerent.services.space_store import SpaceStore


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("space_id", choices=RESERVED_SPACE_IDS)
    parser.add_argument("wallet")
    parser.add_argument("username")
    args = parser.parse_args()

    store = SpaceStore(SessionLocal)
    store.initialize_spaces()
    if not store.set_reserved_owner(args.space_id, args.wallet.strip(), args.username.strip()):
        print(f"Error: {args.space_id} is not a reserved space in the database", file=sys.stderr)
        sys.exit(1)
    print(f"{args.space_id} now owned by {args.username} ({args.wallet[:8]}...)")


if __name__ == "__main__":
    main()
