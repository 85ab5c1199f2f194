"""Command-line interface for Pedaru Google Drive authorization."""

from __future__ import annotations

import argparse
import sys

from typing import TYPE_CHECKING

from . import log
from .exceptions import NotConfigured, PedaruException


if TYPE_CHECKING:
    from .auth import DriveAuth


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser.

    Returns
    -------
    argparse.ArgumentParser
        Parser with one subcommand per auth operation.
    """
    parser = argparse.ArgumentParser(
        prog="pedaru-auth",
        description="Manage Pedaru's Google Drive authorization",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    configure_parser = subparsers.add_parser(
        "configure",
        help="Store the OAuth2 client ID and secret",
    )
    configure_parser.add_argument("--client-id", required=True, help="OAuth2 client ID")
    configure_parser.add_argument("--client-secret", required=True, help="OAuth2 client secret")

    login_parser = subparsers.add_parser(
        "login",
        help="Sign in with Google in the browser",
    )
    login_parser.add_argument(
        "--no-browser",
        action="store_true",
        help="Print the authorization URL instead of opening a browser",
    )
    login_parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for the sign-in (uses config default)",
    )

    subparsers.add_parser("status", help="Show whether Pedaru is configured and signed in")
    subparsers.add_parser("token", help="Print a valid access token, refreshing if needed")
    subparsers.add_parser("logout", help="Remove stored tokens")
    subparsers.add_parser("forget", help="Remove client credentials and tokens")
    subparsers.add_parser("config", help="Show the effective configuration")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    from .config import get_settings

    settings = get_settings()
    log.configure(settings.log.level, settings.log.format)
    if args.debug:
        log.enable_debug()

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "config":
        print(settings.show())
        return 0

    from .auth import DriveAuth

    log.debug(f"Running command: {args.command}")
    try:
        with DriveAuth(settings) as auth:
            return _dispatch(auth, args)
    except NotConfigured:
        log.debug(f"{args.command} failed: client credentials are not set")
        print(
            "Error: OAuth client credentials are not set. "
            "Run 'pedaru-auth configure' first.",
            file=sys.stderr,
        )
        return 2
    except (PedaruException, ValueError) as exc:
        log.debug(f"{args.command} failed: {exc!r}")
        print(f"Error: {exc}", file=sys.stderr)
        return 1


def _dispatch(auth: DriveAuth, args: argparse.Namespace) -> int:
    """Run one subcommand against ``auth``."""
    if args.command == "configure":
        auth.save_credentials(args.client_id, args.client_secret)
        print("Credentials saved.")
    elif args.command == "login":
        auth.login(
            open_browser=False if args.no_browser else None,
            on_url=lambda url: print(f"Open this URL to sign in:\n{url}"),
            timeout=args.timeout,
        )
        print("Signed in.")
    elif args.command == "status":
        status = auth.get_auth_status()
        print(f"configured:    {'yes' if status.configured else 'no'}")
        print(f"authenticated: {'yes' if status.authenticated else 'no'}")
    elif args.command == "token":
        print(auth.get_valid_access_token())
    elif args.command == "logout":
        auth.logout()
        print("Signed out.")
    elif args.command == "forget":
        auth.forget_credentials()
        print("Credentials removed.")
    return 0
