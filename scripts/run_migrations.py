"""
Apply the Alembic migrations for projects, messages and fragments.

Migrations always go through the DIRECT connection (port 5432), never the
Supavisor pooler the API uses.

Usage:
    python scripts/run_migrations.py            # upgrade to head
    python scripts/run_migrations.py 0001       # upgrade to a revision
"""
import os
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from db.config import get_db_settings


def main():
    target = sys.argv[1] if len(sys.argv) > 1 else "head"

    print("=" * 60)
    print("Running Database Migrations")
    print("=" * 60)

    settings = get_db_settings()
    try:
        direct_url = settings.get_connection_url(use_direct=True)
    except ValueError as e:
        print(f"❌ {e}")
        print("Set DIRECT_DATABASE_URL (or DB_HOST/DB_NAME/DB_USER/DB_PASSWORD) in .env")
        sys.exit(1)

    # alembic/env.py picks this up ahead of .env
    os.environ["ALEMBIC_DATABASE_URL"] = direct_url
    print("✓ Using direct connection for migrations")
    print()

    command = f"alembic -c {project_root / 'alembic.ini'} upgrade {target}"
    print(f"Running: {command}")
    print("-" * 60)
    exit_code = os.system(command)

    print("-" * 60)
    if exit_code == 0:
        print(f"✅ Database is at revision {target}")
    else:
        print(f"❌ Migration failed with exit code: {exit_code}")
        sys.exit(1)


if __name__ == "__main__":
    main()
