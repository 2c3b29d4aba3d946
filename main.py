"""Command-line interface for the site administration service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from typing import Dict, List, Sequence

import httpx

from siteadmin.database import Database, resolve_database_path

logger = logging.getLogger("siteadmin.main")

_DEFAULT_SERVICE_URL = "http://localhost:8000"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Site administration utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the admin database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP admin service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the service")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP service (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    users_parser = subparsers.add_parser(
        "users", help="Search the user directory of a running service"
    )
    users_parser.add_argument("search", nargs="?", default=None, help="Name, email or phone fragment")
    users_parser.add_argument("--page", type=int, default=1, help="Page number (default: 1)")
    users_parser.add_argument(
        "--service-url",
        default=None,
        help=f"Base URL of a running admin service (default: {_DEFAULT_SERVICE_URL})",
    )
    users_parser.add_argument(
        "--token",
        default=None,
        help="Admin bearer token. Defaults to the SITEADMIN_CLI_TOKEN environment variable.",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "init-db", "users"}

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args(args_list)


def _initialise_database() -> Database:
    db_path = resolve_database_path(os.getenv("SITEADMIN_DB_PATH"))
    database = Database(db_path)
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return database


def _serve(
    *,
    database: Database,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from siteadmin.management import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting admin service on %s://%s:%s", protocol, host, port)

    app = create_app(database=database)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _format_users(payload: Dict[str, object]) -> List[str]:
    users = payload.get("data") or []
    lines = [
        f"Page {payload.get('current_page', 1)} of {payload.get('last_page', 1)} "
        f"({payload.get('total', 0)} user(s) total)",
        f"{'ID':>4}  {'Name':<24}  {'Email':<32}  {'Phone':<16}  Roles",
        "-" * 96,
    ]
    for user in users:  # type: ignore[union-attr]
        phone = user.get("phone") or "-"
        roles = ", ".join(user.get("roles") or [])
        banned = " [banned]" if user.get("is_banned") else ""
        lines.append(
            f"{user['id']:>4}  {user['name']:<24}  {user['email']:<32}  {phone:<16}  {roles}{banned}"
        )
    return lines


def _search_users(
    search: str | None,
    *,
    page: int,
    service_url: str | None,
    token: str | None,
) -> int:
    base_url = (service_url or _DEFAULT_SERVICE_URL).rstrip("/")
    token = token or os.getenv("SITEADMIN_CLI_TOKEN")
    if not token:
        print(
            "No admin token configured. Pass --token or set the SITEADMIN_CLI_TOKEN "
            "environment variable."
        )
        return 1

    params: Dict[str, object] = {"page": page}
    if search:
        params["search"] = search

    try:
        response = httpx.get(
            f"{base_url}/admin/users/search",
            params=params,
            headers={"Authorization": f"Bearer {token}"},
            timeout=10.0,
        )
    except httpx.HTTPError as exc:
        print(f"Failed to contact admin service: {exc}")
        return 1

    if response.status_code in (401, 403):
        print("Authentication failed when querying the admin service. Verify the token.")
        return 1
    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}")
        return 1

    try:
        payload = response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return 1

    if not payload.get("data"):
        print("No users matched." if search else "No users are currently registered.")
        return 0

    for line in _format_users(payload):
        print(line)
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)

    if args.command == "users":
        return _search_users(
            args.search,
            page=args.page,
            service_url=args.service_url,
            token=args.token,
        )

    database = _initialise_database()

    if args.command == "serve":
        _serve(
            database=database,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "init-db":
        print("Database initialisation complete.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
