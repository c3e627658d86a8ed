#!/usr/bin/env python3
"""
AdminHub -- administrative commands for a fresh or existing install.

Usage:
  python manage.py seed
  python manage.py create-admin --name "Ana Souza" --email ana@example.com --password "s3nha-forte"

Commands:
  seed          Create the built-in modules, their CRUD permissions and the
                Administrador role/profile. Safe to run repeatedly.
  create-admin  Create a user on the Administrador profile, or move an
                existing user (matched by email) onto it and reactivate them.

Environment variables:
  DATABASE_URL  SQLAlchemy URL of the database to operate on.
  JWT_SECRET    Required unless DEBUG=true (settings are validated on load).
"""

import argparse
import sys
from typing import Optional

from api.models import email_error, nome_error, senha_error
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings
from rbac.store import RbacStore


def seed(rbac_store: RbacStore) -> None:
    profile = rbac_store.ensure_defaults()
    print(f"Defaults ready. Profile '{profile.name}' has id {profile.id}.")


def create_admin(user_store: UserStore, rbac_store: RbacStore, name: str, email: str, password: str) -> int:
    """Create or promote ``email`` onto the Administrador profile. Returns the user id."""
    for problem in (nome_error(name), email_error(email), senha_error(password)):
        if problem:
            raise ValueError(problem)

    profile = rbac_store.ensure_defaults()
    existing = user_store.get_by_email(email)
    if existing is not None:
        user_store.update_user(existing.id, profile_id=profile.id, is_active=True)
        print(f"User {existing.email} (id {existing.id}) moved to profile '{profile.name}'.")
        return existing.id

    user_id = user_store.create_user(
        User(
            name=name.strip(),
            email=email,
            hashed_password=hash_password(password),
            profile_id=profile.id,
        )
    )
    print(f"Created {email.strip().lower()} (id {user_id}) on profile '{profile.name}'.")
    return user_id


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="manage.py",
        description="AdminHub administrative commands.",
        epilog=__doc__,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", required=True)
    sub.add_parser("seed", help="Seed default modules, permissions and the Administrador profile.")
    admin = sub.add_parser("create-admin", help="Create or promote a user to Administrador.")
    admin.add_argument("--name", required=True, help="Display name of the user.")
    admin.add_argument("--email", required=True, help="Login email (matched case-insensitively).")
    admin.add_argument("--password", required=True, help="Password, at least 8 characters.")
    args = parser.parse_args(argv)

    settings = get_settings()
    rbac_store = RbacStore(settings.database_url)
    user_store = UserStore(settings.database_url)
    try:
        if args.command == "seed":
            seed(rbac_store)
        else:
            try:
                create_admin(user_store, rbac_store, args.name, args.email, args.password)
            except ValueError as e:
                print(f"  [!] {e}")
                return 1
    finally:
        user_store.close()
        rbac_store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
