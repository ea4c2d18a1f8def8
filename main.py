"""Command-line interface for the identity store."""

from __future__ import annotations

import argparse
import getpass
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Sequence

from identity_store.application import build_database, build_store, create_application
from identity_store.config import StoreConfig, load_config_from_env, load_store_config
from identity_store.errors import IdentityStoreError
from identity_store.models import IdentityRecord
from identity_store.store import IdentityStore

logger = logging.getLogger("identity_store.main")

_KNOWN_COMMANDS = {"serve", "init-db", "create-user", "list-users"}

_GLOBAL_OPTIONS = ("--config", "--db")


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Identity store utilities")
    parser.add_argument(
        "--config",
        default=None,
        help="Path to a YAML configuration file (defaults to IDENTITY_STORE_CONFIG or config/identity_store.yaml)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to IDENTITY_STORE_DB_PATH or data/identities.sqlite3)",
    )
    subparsers = parser.add_subparsers(dest="command")
    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the identity database")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP identity service")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Bind address for the API")
    serve_parser.add_argument("--port", type=int, default=8080, help="Port for the API (default: 8080)")

    create_parser = subparsers.add_parser("create-user", help="Create a user, prompting for the password")
    create_parser.add_argument("user_name", help="Unique lower-case user name")
    create_parser.add_argument("email", help="Primary email address")
    create_parser.add_argument("given_name", help="Given name")
    create_parser.add_argument("family_name", help="Family name")
    create_parser.add_argument("--phone", default=None, help="Optional phone number")

    list_parser = subparsers.add_parser("list-users", help="Print stored users, oldest first")
    list_parser.add_argument("--filter", dest="filter_text", default=None, help="Filter expression")

    args_list = list(argv) if argv is not None else sys.argv[1:]
    leading = _leading_global_options(args_list)
    rest = args_list[len(leading) :]
    if not rest or rest[0] not in (*_KNOWN_COMMANDS, "-h", "--help"):
        args_list = [*leading, "serve", *rest]

    return parser.parse_args(args_list)


def _leading_global_options(args: Sequence[str]) -> list[str]:
    leading: list[str] = []
    index = 0
    while index < len(args):
        token = args[index]
        if token in _GLOBAL_OPTIONS:
            leading.extend(args[index : index + 2])
            index += 2
        elif token.partition("=")[0] in _GLOBAL_OPTIONS and "=" in token:
            leading.append(token)
            index += 1
        else:
            break
    return leading


def _load_config(args: argparse.Namespace) -> StoreConfig:
    config = load_store_config(Path(args.config)) if args.config else load_config_from_env()
    if args.db_path:
        config = replace(config, database_path=Path(args.db_path).expanduser().resolve(strict=False))
    return config


def prompt_for_password(min_length: int) -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < min_length:
            print(f"Password must be at least {min_length} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def _create_user(store: IdentityStore, args: argparse.Namespace, min_length: int) -> int:
    password = prompt_for_password(min_length)
    record = IdentityRecord.new(
        args.user_name.strip(),
        args.email.strip(),
        args.given_name.strip(),
        args.family_name.strip(),
        phone_number=args.phone,
    )
    try:
        user = store.create(record, password)
    except IdentityStoreError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    print(f"Created user {user.id}: {user.user_name} <{user.primary_email}>")
    return 0


def _list_users(store: IdentityStore, filter_text: str | None) -> int:
    try:
        results = store.search(filter_text) if filter_text else store.list()
        for user in results:
            state = "active" if user.active else "inactive"
            print(f"{user.id}\t{user.user_name}\t{user.primary_email}\tv{user.version}\t{state}")
    except IdentityStoreError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


def _serve(config: StoreConfig, *, host: str, port: int) -> None:
    import uvicorn

    logger.info("Starting identity API on http://%s:%s", host, port)
    app = create_application(config=config)
    uvicorn.run(app, host=host, port=port, log_level="info")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    config = _load_config(args)

    if args.command == "serve":
        _serve(config, host=args.host, port=args.port)
        return 0

    database = build_database(config)
    if args.command == "init-db":
        print("Database initialisation complete.")
        return 0

    store = build_store(config, database=database)
    if args.command == "create-user":
        return _create_user(store, args, config.password_min_length)
    if args.command == "list-users":
        return _list_users(store, args.filter_text)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
