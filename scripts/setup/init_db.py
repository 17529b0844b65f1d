# scripts/setup/init_db.py
"""
Initialize local storage — creates the key-value table and seeds the registry.
Run once before first launch, or to check an existing database.
Usage: python scripts/setup/init_db.py
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", ".."))

from app.database import create_tables, engine
from app.config import settings
from sqlalchemy import text


def main():
    print("🗄️  AutoTrack Storage Initialization")
    print("=" * 40)
    print(f"📡 Database: {settings.DATABASE_URL}")

    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")
    except Exception as e:
        print(f"❌ Cannot connect to database: {e}")
        sys.exit(1)

    print("\n📋 Creating tables...")
    create_tables()
    print("✅ kv_store table ready")

    # Loading the store seeds the default vehicles when autotrack_data is absent
    from app.dependencies import get_record_store
    store = get_record_store()
    print(f"\n🚗 Registry holds {len(store.list())} vehicles:")
    for v in store.list():
        print(f"   ✓ {v.plate:<10} {v.type.value:<11} {v.model}")

    print("\n🎉 Storage ready! You can now start the backend:")
    print(f"   uvicorn app.main:app --host {settings.BACKEND_HOST} --port {settings.BACKEND_PORT} --reload")


if __name__ == "__main__":
    main()
