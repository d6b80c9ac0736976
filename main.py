#!/usr/bin/env python3
"""
permgate -- Administration CLI for the auth store.

Usage:
  python main.py init
  python main.py user add alice --name "Alice A" --email alice@example.com
  python main.py user passwd alice
  python main.py user disable alice
  python main.py group add analysts
  python main.py perm add reports.read
  python main.py perm grant analysts reports.read
  python main.py group add-user analysts alice
  python main.py login alice

Storage comes from DB_DRIVER / DB_URL (see core/config.py) unless
--db-driver / --db-url are given. Passwords are prompted for when --password
is omitted.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from auth.bootstrap import ROOT_USERNAME, bootstrap
from auth.errors import AuthError
from auth.identity import IdentityManager
from auth.models import User
from auth.sessions import SessionAuthority
from auth.store import CredentialStore, build_db_url
from core.config import get_settings

logger = logging.getLogger("permgate.cli")


def _read_password(given: Optional[str], confirm: bool = True) -> str:
    """Return --password if given, otherwise prompt (twice when confirm=True)."""
    if given is not None:
        return given
    password = getpass.getpass("Password: ")
    if confirm and getpass.getpass("Repeat password: ") != password:
        raise ValueError("passwords do not match")
    return password


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="permgate",
        description="Manage users, groups and permissions in the permgate auth store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init
  python main.py user passwd root
  python main.py group add-user Root alice
  DB_DRIVER=sqlserver DB_URL='sqlserver://sa:pw@db:1433/auth?driver=ODBC+Driver+18+for+SQL+Server' python main.py user list
        """,
    )
    parser.add_argument("--db-driver", metavar="DRIVER", help="Storage backend: sqlite, sqlserver or postgresql")
    parser.add_argument("--db-url", metavar="URL", help="File path (sqlite) or connection string")
    parser.add_argument("-v", "--verbose", action="store_true", help="Log every change at INFO level")
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    sub.add_parser("init", help="Seed the '*' permission, the Root group and the root user")

    # user
    user = sub.add_parser("user", help="Manage users").add_subparsers(dest="action", metavar="ACTION")
    p = user.add_parser("add", help="Create a user")
    p.add_argument("username")
    p.add_argument("--name", default="")
    p.add_argument("--email", default="")
    p.add_argument("--password", help="Initial password (prompted if omitted)")
    p.add_argument("--disabled", action="store_true", help="Create the account disabled")
    p = user.add_parser("passwd", help="Rotate a user's password")
    p.add_argument("username")
    p.add_argument("--password", help="New password (prompted if omitted)")
    for action, text in (("enable", "Enable a user"), ("disable", "Disable a user"), ("rm", "Delete a user")):
        user.add_parser(action, help=text).add_argument("username")
    user.add_parser("list", help="List users")

    # group
    group = sub.add_parser("group", help="Manage groups").add_subparsers(dest="action", metavar="ACTION")
    for action, text in (("add", "Create a group"), ("rm", "Delete a group"), ("members", "List group members")):
        group.add_parser(action, help=text).add_argument("group")
    group.add_parser("list", help="List groups with their permissions")
    for action, text in (("add-user", "Add a user to a group"), ("rm-user", "Remove a user from a group")):
        p = group.add_parser(action, help=text)
        p.add_argument("group")
        p.add_argument("username")

    # perm
    perm = sub.add_parser("perm", help="Manage permissions").add_subparsers(dest="action", metavar="ACTION")
    for action, text in (("add", "Create a permission"), ("rm", "Delete a permission")):
        perm.add_parser(action, help=text).add_argument("permission")
    perm.add_parser("list", help="List permissions")
    for action, text in (("grant", "Grant a permission to a group"), ("revoke", "Revoke a permission from a group")):
        p = perm.add_parser(action, help=text)
        p.add_argument("group")
        p.add_argument("permission")

    p = sub.add_parser("login", help="Authenticate and print a new session token")
    p.add_argument("username")
    p.add_argument("--password", help="Password (prompted if omitted)")
    return parser


def _run(args: argparse.Namespace, manager: IdentityManager, authority: SessionAuthority) -> None:
    command, action = args.command, getattr(args, "action", None)

    if command == "init":
        bootstrap(manager)
        print(f"  Created user '{ROOT_USERNAME}' with the default password.")
        print(f"  [!] Rotate it now: python main.py user passwd {ROOT_USERNAME}")

    elif command == "user":
        if action == "add":
            password = _read_password(args.password)
            user = User(username=args.username, enabled=not args.disabled, name=args.name, email=args.email)
            manager.create_user(user, password=password)
            print(f"  User '{args.username}' created.")
        elif action == "passwd":
            manager.rotate_password(args.username, _read_password(args.password))
            print(f"  Password updated for '{args.username}'.")
        elif action in ("enable", "disable"):
            manager.set_enabled(args.username, action == "enable")
            print(f"  User '{args.username}' {action}d.")
        elif action == "rm":
            manager.remove_user(args.username)
            print(f"  User '{args.username}' removed.")
        elif action == "list":
            for u in manager.list_users():
                state = "disabled" if u.enabled is False else "enabled"
                print(f"  {u.username:<24} {state:<9} {u.name} {u.email}".rstrip())

    elif command == "group":
        if action == "add":
            manager.create_group(args.group)
            print(f"  Group '{args.group}' created.")
        elif action == "rm":
            manager.remove_group(args.group)
            print(f"  Group '{args.group}' removed.")
        elif action == "members":
            for username in manager.list_group_members(args.group):
                print(f"  {username}")
        elif action == "list":
            for g in manager.list_groups():
                perms = ", ".join(p.name for p in manager.get_group(g.name).permissions)
                print(f"  {g.name:<24} {perms}".rstrip())
        elif action == "add-user":
            manager.add_user_to_group(args.username, args.group)
            print(f"  '{args.username}' added to '{args.group}'.")
        elif action == "rm-user":
            manager.remove_user_from_group(args.username, args.group)
            print(f"  '{args.username}' removed from '{args.group}'.")

    elif command == "perm":
        if action == "add":
            manager.create_permission(args.permission)
            print(f"  Permission '{args.permission}' created.")
        elif action == "rm":
            manager.remove_permission(args.permission)
            print(f"  Permission '{args.permission}' removed.")
        elif action == "list":
            for p in manager.list_permissions():
                print(f"  {p.name}")
        elif action == "grant":
            manager.add_permission_to_group(args.group, args.permission)
            print(f"  '{args.permission}' granted to '{args.group}'.")
        elif action == "revoke":
            manager.remove_permission_from_group(args.group, args.permission)
            print(f"  '{args.permission}' revoked from '{args.group}'.")

    elif command == "login":
        token = authority.authenticate(args.username, _read_password(args.password, confirm=False))
        print(token)


def main(argv: Optional[list[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    if not args.command or (args.command in ("user", "group", "perm") and not args.action):
        parser.print_help()
        return 2

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    settings = get_settings()
    try:
        db_url = build_db_url(args.db_driver or settings.db_driver, args.db_url or settings.db_url)
    except ValueError as e:
        print(f"  [!] {e}")
        return 1

    try:
        store = CredentialStore(db_url)
    except AuthError as e:
        print(f"  [!] {e}")
        return 1
    manager = IdentityManager(store, bcrypt_rounds=settings.bcrypt_rounds)
    authority = SessionAuthority(
        store,
        token_length=settings.session_token_length,
        bcrypt_rounds=settings.bcrypt_rounds,
    )
    logger.info("Running %s %s", args.command, getattr(args, "action", None) or "")
    try:
        _run(args, manager, authority)
    except (AuthError, ValueError) as e:
        print(f"  [!] {e}")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
