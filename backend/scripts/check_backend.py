#!/usr/bin/env python3
"""
Quick checks so the backend can start. Run from repo root or backend/:
  python scripts/check_backend.py
  # or from repo root:
  cd backend && python scripts/check_backend.py
"""
import os
import sys
from pathlib import Path

# Run from backend/
backend_dir = Path(__file__).resolve().parent.parent
os.chdir(backend_dir)
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))


def main():
    errors = []

    # 1) .env
    env_file = backend_dir / ".env"
    if not env_file.exists():
        errors.append("backend/.env missing. Set DATABASE_URL, RENT_WALLET_ADDRESS, PAYMENT_VERIFIER_URL, etc.")
    else:
        print("OK  .env exists")

    # 2) Settings that have no usable default
    from spacerent.config import settings

    if not settings.rent_wallet_address:
        errors.append("RENT_WALLET_ADDRESS is empty: rent payments cannot be verified.")
        print("FAIL RENT_WALLET_ADDRESS not set")
    else:
        print("OK  Rent wallet", settings.rent_wallet_address[:8] + "...")

    # 3) DB connection and tables
    try:
        from sqlalchemy import inspect, text

        from spacerent.db.session import engine
        from spacerent.db.tables import ALL_TABLE_NAMES

        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("OK  Database connection (DATABASE_URL)")
        missing = set(ALL_TABLE_NAMES) - set(inspect(engine).get_table_names())
        if missing:
            errors.append(f"Missing tables {sorted(missing)}. Run: alembic upgrade head")
            print("FAIL Missing tables:", ", ".join(sorted(missing)))
        else:
            print("OK  Tables present")
    except Exception as e:
        errors.append(f"Database: {e}")
        print("FAIL Database:", e)

    # 4) Payment verifier reachable
    try:
        import httpx

        httpx.get(settings.payment_verifier_url, timeout=5.0)
        print("OK  Payment verifier reachable", settings.payment_verifier_url)
    except httpx.HTTPError as e:
        errors.append(f"Payment verifier at {settings.payment_verifier_url}: {e}")
        print("FAIL Payment verifier:", e)

    # 5) App import (catches missing deps, bad imports)
    try:
        from spacerent.main import app  # noqa: F401
        print("OK  App import (spacerent.main)")
    except Exception as e:
        errors.append(f"App import: {e}")
        print("FAIL App import:", e)

    # 6) Port 8000
    try:
        import socket
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
            s.bind(("127.0.0.1", 8000))
        print("OK  Port 8000 is free")
    except OSError:
        errors.append("Port 8000 is in use. Stop the other process or use another port (e.g. --port 8001).")
        print("FAIL Port 8000 is in use")

    if errors:
        print("\n---")
        for e in errors:
            print("•", e)
        print("\nThen start backend: cd backend && uvicorn spacerent.main:app --reload --port 8000")
        return 1

    print("\nAll checks passed. Start with: cd backend && uvicorn spacerent.main:app --reload --port 8000")
    return 0


if __name__ == "__main__":
    sys.exit(main())
