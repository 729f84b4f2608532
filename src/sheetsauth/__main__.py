"""CLI entry point for sheetsauth.

Usage:
    python -m sheetsauth status
    python -m sheetsauth set-mode <mode>
    python -m sheetsauth import-key <service_account.json>
    python -m sheetsauth set-oauth-client --client-id ID --client-secret SECRET
    python -m sheetsauth auth-url --redirect-uri URI
    python -m sheetsauth headers [--show-token]
    python -m sheetsauth clear
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
from pathlib import Path

from sheetsauth.broker import TokenBroker
from sheetsauth.config import Settings, get_settings
from sheetsauth.exceptions import SheetsAuthError
from sheetsauth.logging import configure_logging
from sheetsauth.models import AuthMode, UseUrlKey
from sheetsauth.retry import get_auth_headers_with_retry
from sheetsauth.store import CredentialStore


def _open_broker(settings: Settings) -> tuple[TokenBroker, CredentialStore]:
    store = CredentialStore(settings.keyring_service, settings.keyring_username)
    return TokenBroker.from_store(store, settings=settings), store


def cmd_status(broker: TokenBroker, _args: argparse.Namespace) -> int:
    """Print the current authentication status."""
    summary = broker.get_status_summary()
    print(f"Mode:        {summary.mode_name} ({summary.mode.value})")
    print(f"Can write:   {'yes' if summary.can_write else 'no'}")
    print(f"Configured:  {'yes' if summary.is_configured else 'no'}")
    print(f"Token valid: {'yes' if summary.is_token_valid else 'no'}")
    return 0


def cmd_set_mode(broker: TokenBroker, args: argparse.Namespace) -> int:
    """Switch the active authentication mode."""
    broker.set_mode(args.mode)
    print(f"Auth mode set to {args.mode}")
    return 0


def cmd_import_key(broker: TokenBroker, args: argparse.Namespace) -> int:
    """Import a service account JSON key file."""
    path = Path(args.path)
    if not path.exists():
        print(f"Error: File not found: {path}", file=sys.stderr)
        return 1

    try:
        text = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        print(f"Error: Could not read key file: {e}", file=sys.stderr)
        return 1

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        print(f"Error: Could not parse key file: {e}", file=sys.stderr)
        return 1

    broker.set_credentials(AuthMode.DELEGATED_IDENTITY, data)
    print(f"Imported service account: {data['client_email']}")
    return 0


def cmd_set_oauth_client(broker: TokenBroker, args: argparse.Namespace) -> int:
    """Save the OAuth client used for the authorization-code flow."""
    broker.set_credentials(
        AuthMode.AUTHORIZATION_CODE,
        {"clientId": args.client_id, "clientSecret": args.client_secret},
    )
    print("OAuth client saved")
    return 0


def cmd_auth_url(broker: TokenBroker, args: argparse.Namespace) -> int:
    """Print the consent URL for the configured OAuth client."""
    print(broker.authorization_url(args.redirect_uri, state=args.state))
    return 0


async def cmd_headers(broker: TokenBroker, args: argparse.Namespace, settings: Settings) -> int:
    """Print the headers a Sheets request would carry."""
    try:
        result = await get_auth_headers_with_retry(broker, attempts=settings.retry_attempts)
    finally:
        await broker.close()

    if isinstance(result, UseUrlKey):
        print(f"No headers needed: append '{result.param}=<api key>' to the request URL")
        return 0

    for name, value in result.items():
        if name == "Authorization" and not args.show_token:
            value = "Bearer <hidden, use --show-token>"
        print(f"{name}: {value}")
    return 0


def cmd_clear(broker: TokenBroker, store: CredentialStore) -> int:
    """Forget stored credentials and cached tokens."""
    broker.logout()
    store.clear()
    print("Stored credentials cleared")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog="sheetsauth",
        description="Manage Google Sheets authentication",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("status", help="Show the active mode and token status")

    mode_parser = subparsers.add_parser("set-mode", help="Switch authentication mode")
    mode_parser.add_argument("mode", choices=[m.value for m in AuthMode])

    key_parser = subparsers.add_parser("import-key", help="Import a service account key file")
    key_parser.add_argument("path", help="Path to the service account JSON key")

    oauth_parser = subparsers.add_parser("set-oauth-client", help="Save an OAuth client ID/secret")
    oauth_parser.add_argument("--client-id", required=True)
    oauth_parser.add_argument("--client-secret", required=True)

    url_parser = subparsers.add_parser("auth-url", help="Print the OAuth consent URL")
    url_parser.add_argument("--redirect-uri", required=True)
    url_parser.add_argument("--state", default=None)

    headers_parser = subparsers.add_parser("headers", help="Print request auth headers")
    headers_parser.add_argument(
        "--show-token",
        action="store_true",
        help="Print the bearer token instead of hiding it",
    )

    subparsers.add_parser("clear", help="Remove stored credentials")

    args = parser.parse_args(argv)

    settings = get_settings()
    configure_logging(is_production=settings.is_production, log_level=settings.log_level)
    broker, store = _open_broker(settings)

    try:
        if args.command == "status":
            return cmd_status(broker, args)
        if args.command == "set-mode":
            return cmd_set_mode(broker, args)
        if args.command == "import-key":
            return cmd_import_key(broker, args)
        if args.command == "set-oauth-client":
            return cmd_set_oauth_client(broker, args)
        if args.command == "auth-url":
            return cmd_auth_url(broker, args)
        if args.command == "headers":
            return asyncio.run(cmd_headers(broker, args, settings))
        if args.command == "clear":
            return cmd_clear(broker, store)
    except SheetsAuthError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
