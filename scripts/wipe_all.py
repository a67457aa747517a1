#!/usr/bin/env python3
"""
Delete every report, access request, role, profile and user, plus stored photos.
CAUTION: destructive, for development and testing only.

Usage: python scripts/wipe_all.py --confirm DELETE_ALL
"""
import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import Database
from database.models import (
    AccessRequest, PasswordResetCode, Profile, RefreshToken, Report, RoleAssignment, Session, User
)
from storage.local_store import LocalObjectStore
from core.logger import logger
import config

CONFIRM_PHRASE = "DELETE_ALL"

# Dependency order: children before users
WIPE_ORDER = [Report, AccessRequest, RoleAssignment, Profile, PasswordResetCode, RefreshToken, Session, User]


def wipe(db, store=None) -> dict:
    """Delete all rows in WIPE_ORDER in one transaction, then stored objects."""
    counts = {}
    for model in WIPE_ORDER:
        counts[model.__tablename__] = db.query(model).delete(synchronize_session=False)
    db.commit()
    if store is not None:
        counts["objects"] = store.delete_objects(store.list_objects())
    logger.warning(f"Wiped all data: {counts}")
    return counts


def main(argv=None):
    parser = argparse.ArgumentParser(description="Wipe all development data")
    parser.add_argument("--confirm", required=True, help=f"Must be {CONFIRM_PHRASE}")
    args = parser.parse_args(argv)
    if args.confirm != CONFIRM_PHRASE:
        print(f"Error: confirm with --confirm {CONFIRM_PHRASE}")
        sys.exit(1)
    if config.ENVIRONMENT == "production":
        print("Error: refusing to wipe a production database")
        sys.exit(1)

    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    if config.USE_S3:
        from storage.s3_client import S3Client
        store = S3Client(
            bucket_name=config.S3_BUCKET_NAME,
            aws_access_key_id=config.S3_ACCESS_KEY_ID,
            aws_secret_access_key=config.S3_SECRET_ACCESS_KEY,
            region_name=config.S3_REGION,
            endpoint_url=config.S3_ENDPOINT_URL,
            auto_create_bucket=False,
        )
    else:
        store = LocalObjectStore(config.UPLOADS_DIR, public_url=config.PUBLIC_UPLOADS_URL)

    with config.db.get_session() as db:
        counts = wipe(db, store)

    for name, count in counts.items():
        print(f"✓ {name}: {count}")


if __name__ == "__main__":
    main()
