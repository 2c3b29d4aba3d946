import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from siteadmin.config import load_admin_settings, resolve_config_path
from siteadmin.database import Database, resolve_database_path


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a user record in the admin database")
    parser.add_argument("name", help="Display name for the user")
    parser.add_argument("email", help="Unique email address")
    parser.add_argument("--phone", default=None, help="Optional unique phone number")
    parser.add_argument(
        "--role",
        dest="roles",
        action="append",
        default=None,
        help="Role identifier to assign (repeatable, defaults to 'user')",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to SITEADMIN_DB_PATH or data/siteadmin.sqlite3)",
    )
    return parser.parse_args()


def main() -> int:
    args = parse_args()

    settings = load_admin_settings(resolve_config_path(os.getenv("SITEADMIN_CONFIG")))
    roles = args.roles or ["user"]
    unknown = [role for role in roles if role not in settings.role_set]
    if unknown:
        print(f"Error: unknown role(s): {', '.join(unknown)}", file=sys.stderr)
        return 1

    db_env = args.db_path or os.getenv("SITEADMIN_DB_PATH")
    database = Database(resolve_database_path(db_env))
    database.initialize()

    try:
        user = database.create_user(args.name, args.email, phone=args.phone, roles=roles)
    except ValueError as exc:  # duplicates, blank names
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Created user #{user.id}: {user.name} <{user.email}> roles={','.join(user.roles)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
