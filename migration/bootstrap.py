"""
Bootstrap a shop database
- Creates any missing tables
- Seeds the static roles ('user', 'admin')
- Optionally creates an admin account (or grants 'admin' to an existing one)

Usage:
  python -m migration.bootstrap --db sqlite:///./shop.db [--admin NAME --password PWD --email ADDR]
"""
import argparse
import logging
from typing import Optional

from shop.config import configure_logging, get_settings
from shop.db import Database
from shop.errors import InvalidArgument
from shop.users import ADMIN_ROLE, DEFAULT_ROLES, USER_ROLE, CredentialStore, RoleStore

logger = logging.getLogger("shop.bootstrap")


def bootstrap(
    database_url: str,
    admin: Optional[str] = None,
    password: Optional[str] = None,
    email: Optional[str] = None,
) -> Optional[int]:
    """Prepare the schema and reference data; returns the admin user id when one was requested."""
    if admin and not password:
        raise InvalidArgument("an admin account needs a password")

    database = Database(database_url).open()
    try:
        database.create_all()
        roles = RoleStore(database)
        roles.ensure_roles(*DEFAULT_ROLES)
        if not admin:
            return None

        credentials = CredentialStore(database)
        existing = credentials.get_user(admin)
        if existing:
            admin_id = existing.id
            logger.info("granting admin to existing user %s", admin)
        else:
            admin_id = credentials.create_user(admin, email, password)
        roles.grant_role(admin_id, USER_ROLE)
        roles.grant_role(admin_id, ADMIN_ROLE)
        return admin_id
    finally:
        database.close()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--db", default=get_settings().database_url, help="SQLAlchemy database URL")
    parser.add_argument("--admin", help="username of an admin account to create or promote")
    parser.add_argument("--password", help="password for a newly created admin account")
    parser.add_argument("--email", help="email for a newly created admin account")
    args = parser.parse_args()
    configure_logging("INFO")
    bootstrap(args.db, admin=args.admin, password=args.password, email=args.email)

if __name__ == "__main__":
    main()
