#!/usr/bin/env python3
"""
Script to create an official, or promote an existing account to official.
"""
import sys
from getpass import getpass
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy.exc import SQLAlchemyError

from database.connection import Database
from database.models import RoleName, User
from core.exceptions import CampusReportsError
from core.validators import normalize_email
from services.auth_service import AuthService
from services.role_service import RoleService
import config


def create_official():
    """Create or promote an official."""
    config.db = Database(
        database_url=config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW
    )
    config.db.create_tables()

    print("Creating official account...")
    print("=" * 50)

    email = input("Email: ").strip()
    if not email:
        print("Error: Email is required")
        sys.exit(1)

    try:
        with config.db.get_session() as db:
            user = db.query(User).filter(User.email == normalize_email(email)).first()
            if user:
                print(f"Account exists (id {user.id}); promoting to official.")
            else:
                full_name = input("Full name: ").strip()
                password = getpass("Password: ")
                user = AuthService.register_user(db, email=email, password=password, full_name=full_name)

            RoleService.assign_role(db, user.id, RoleName.OFFICIAL)
            db.commit()
            print(f"\n✓ Official ready!")
            print(f"  Email: {user.email}")
            print(f"  Role: {RoleService.resolve_role(db, user.id).value}")
            print(f"\nSign in with persona 'official' at: POST /api/auth/login")
    except CampusReportsError as e:
        print(f"\n✗ Error: {e.message}")
        sys.exit(1)
    except SQLAlchemyError as e:
        print(f"\n✗ Database error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    create_official()
