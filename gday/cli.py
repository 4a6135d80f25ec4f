"""Command-line entry point for gday authentication commands."""

import argparse
import json
import logging
import sys
from typing import List, Optional

from gday import auth
from gday.config import load_config
from gday.errors import AuthError

logger = logging.getLogger(__name__)

SETUP_INSTRUCTIONS = """OAuth2 Credentials Setup
========================

You need OAuth2 credentials from Google Cloud Console.

Quick setup steps:
  1. Go to: https://console.cloud.google.com/apis/credentials
  2. Create a project (or select existing)
  3. Enable Gmail API and Google Calendar API
  4. Configure OAuth consent screen (External, add your email as test user)
  5. Create OAuth 2.0 Client ID (Desktop application)
  6. Download the JSON file

Paste the contents of the credentials JSON file below,
then press Enter twice (empty line) to finish:
"""


def _read_pasted_json() -> str:
    lines: List[str] = []
    for line in sys.stdin:
        line = line.rstrip("\r\n")
        if not line and lines:
            break
        lines.append(line)
    return "\n".join(lines)


def _emit(args: argparse.Namespace, message: str, **data) -> None:
    if args.json:
        print(json.dumps({"message": message, **data}, indent=2))
    else:
        print(message)


def _fail(args: argparse.Namespace, message: str) -> int:
    if args.json:
        print(json.dumps({"error": message}, indent=2))
    else:
        print(f"Error: {message}", file=sys.stderr)
    return 1


def cmd_setup(args: argparse.Namespace) -> int:
    if args.file:
        with open(args.file, "r") as f:
            raw = f.read()
    else:
        print(SETUP_INSTRUCTIONS)
        raw = _read_pasted_json()

    store = auth.setup(raw, args.config)
    _emit(
        args,
        f"Credentials saved to {store.credentials_path}\n\n"
        "Next, run 'gday auth login' to authenticate with Google.",
        path=str(store.credentials_path),
    )
    return 0


def cmd_login(args: argparse.Namespace) -> int:
    if args.device:
        token = auth.login_device(args.config)
    else:
        token = auth.login(args.config)
    expiry = token.expiry.isoformat() if token.expiry else None
    _emit(args, "Authentication successful!", expiry=expiry)
    return 0


def cmd_logout(args: argparse.Namespace) -> int:
    if not auth.logout(args.config):
        logger.debug("No cached token to remove")
    _emit(args, "Logged out successfully")
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    result = auth.status(args.config)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2))
    else:
        print(f"Status: {result.message}")
        if result.email:
            print(f"Email: {result.email}")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gday", description="Gmail and Google Calendar CLI"
    )
    parser.add_argument(
        "--json", action="store_true", help="Output in JSON format"
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        help="Path to a YAML config file (default: ~/.gday/config.yaml)",
        default=None,
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    commands = parser.add_subparsers(dest="command", required=True)
    auth_parser = commands.add_parser("auth", help="Manage Google authentication")
    auth_commands = auth_parser.add_subparsers(dest="auth_command", required=True)

    setup_parser = auth_commands.add_parser("setup", help="Configure OAuth credentials")
    setup_parser.add_argument(
        "--file",
        help="Path to the OAuth2 client credentials JSON downloaded from Google Cloud Console",
    )
    setup_parser.set_defaults(func=cmd_setup)

    login_parser = auth_commands.add_parser("login", help="Login with Google account")
    login_parser.add_argument(
        "--device",
        action="store_true",
        help="Use device flow for headless environments (SSH, containers)",
    )
    login_parser.set_defaults(func=cmd_login)

    logout_parser = auth_commands.add_parser(
        "logout", help="Logout and clear cached tokens"
    )
    logout_parser.set_defaults(func=cmd_logout)

    status_parser = auth_commands.add_parser(
        "status", help="Show authentication status"
    )
    status_parser.set_defaults(func=cmd_status)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Run the gday CLI and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        args.config = load_config(args.config_path)
        return args.func(args)
    except AuthError as e:
        return _fail(args, str(e))
    except (OSError, ValueError) as e:
        return _fail(args, str(e))
    except KeyboardInterrupt:
        print("\nInterrupted", file=sys.stderr)
        return 130
