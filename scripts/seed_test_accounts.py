#!/usr/bin/env python3
"""
Seed development accounts: one official and one student.

Usage: python scripts/seed_test_accounts.py --confirm SEED_ACCOUNTS
"""
import argparse
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from database.connection import Database
from database.models import RoleName, User
from core.exceptions import StateError
from services.auth_service import AuthService
from services.role_service import RoleService
from core.logger import logger
import config

CONFIRM_PHRASE = "SEED_ACCOUNTS"

TEST_ACCOUNTS = [
    {
        "email": "official@campus.test",
        "password": "Official@123",
        "full_name": "Test Official",
        "role": RoleName.OFFICIAL,
        "register_no": None,
    },
    {
        "email": "student@campus.test",
        "password": "Student@123",
        "full_name": "Test Student",
        "role": RoleName.STUDENT,
        "register_no": "41110000",
    },
]


def seed_accounts(db) -> list:
    """Create missing test accounts. Existing emails are skipped."""
    created = []
    for account in TEST_ACCOUNTS:
        try:
            user = AuthService.register_user(
                db,
                email=account["email"],
                password=account["password"],
                full_name=account["full_name"],
                register_no=account["register_no"],
            )
        except StateError as e:
            logger.info(f"Skipping {account['email']}: {e.message}")
            continue
        if account["role"] != RoleName.STUDENT:
            RoleService.assign_role(db, user.id, account["role"])
            db.commit()
        created.append({"email": user.email, "password": account["password"], "role": account["role"].value})
    return created


def main(argv=None):
    parser = argparse.ArgumentParser(description="Seed development accounts")
    parser.add_argument("--confirm", required=True, help=f"Must be {CONFIRM_PHRASE}")
    args = parser.parse_args(argv)
    if args.confirm != CONFIRM_PHRASE:
        print(f"Error: confirm with --confirm {CONFIRM_PHRASE}")
        sys.exit(1)
    if config.ENVIRONMENT == "production":
        print("Error: refusing to seed test accounts in production")
        sys.exit(1)

    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    config.db.create_tables()

    with config.db.get_session() as db:
        created = seed_accounts(db)
        total = db.query(User).count()

    for account in created:
        print(f"✓ {account['role']:<8} {account['email']} / {account['password']}")
    print(f"\nCreated {len(created)} account(s); {total} user(s) in the database")


if __name__ == "__main__":
    main()
