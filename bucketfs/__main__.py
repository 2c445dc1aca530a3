"""
bucketfs command line
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional

from bucketfs.config import Settings, get_settings
from bucketfs.errors import ValidationError
from bucketfs.services import Database, IdentityService


async def seed_admin(args, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    email = args.email or settings.admin_email
    password = args.password or settings.admin_password
    full_name = args.name or settings.admin_name
    if not email or not password:
        logging.error("Set ADMIN_EMAIL and ADMIN_PASSWORD, or use --email and --password")
        sys.exit(1)
    database = Database(settings.database_url)
    try:
        user, created = await IdentityService(database).seed_admin(email, password, full_name)
    except ValidationError as e:
        logging.error(str(e))
        sys.exit(1)
    finally:
        await database.close()
    print(f"{'Created' if created else 'Updated'} admin user {user.email}")


async def list_users(_args, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    database = Database(settings.database_url)
    try:
        users = await IdentityService(database).list_users()
    finally:
        await database.close()
    for user in users:
        print(f"{user.role}: {user.email}")
    if not users:
        print("(No users defined yet, use seed-admin to add the first admin)")


async def purge_sessions(_args, settings: Optional[Settings] = None) -> None:
    settings = settings or get_settings()
    database = Database(settings.database_url)
    try:
        purged = await IdentityService(database).purge_expired_sessions()
    finally:
        await database.close()
    logging.info(f"Purged {purged} expired session(s)")


def main(argv=None):
    parser = argparse.ArgumentParser(description=__doc__, prog="bucketfs")

    subparsers = parser.add_subparsers(dest="action", title="action", help="Action to perform:", required=True)
    p = subparsers.add_parser("seed-admin", help="Create the admin user, or reset its password")
    p.add_argument("--email", help="The email address of the admin user, defaults to ADMIN_EMAIL")
    p.add_argument("--password", help="The password of the admin user, defaults to ADMIN_PASSWORD")
    p.add_argument("--name", help="The full name of the admin user, defaults to ADMIN_NAME")
    p.set_defaults(func=seed_admin)

    p = subparsers.add_parser("list-users", help="List the users")
    p.set_defaults(func=list_users)

    p = subparsers.add_parser("purge-sessions", help="Delete the expired sessions")
    p.set_defaults(func=purge_sessions)

    args = parser.parse_args(argv)

    logging.basicConfig(format="[%(levelname)-7s:%(name)-15s] %(message)s", level=logging.INFO)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)

    asyncio.run(args.func(args))


if __name__ == "__main__":
    main()
