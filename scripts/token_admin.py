#!/usr/bin/env python3
"""Issue, inspect and verify identifier-bound tokens from the command line.

Usage:
    # Issue a token for user 42 that expires in an hour:
    python scripts/token_admin.py create 42 --expire 3600

    # Resolve a token back to its identifier:
    python scripts/token_admin.py verify 3f786850e387550fdab836ed7e6dc881de23001b

    # Show the current token for an identifier:
    python scripts/token_admin.py get 42

Environment Variables:
    REDIS_URL: Redis connection string
    TOKEN_NAMESPACE: Key prefix (overridable with --namespace)
    TOKEN_EXPIRE_SECONDS: Default expiry for create
    USE_MEMORY_STORE: Use an in-process store (tokens vanish on exit)
"""
from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

# Add project root to path for imports
ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))


async def run_command(args: argparse.Namespace) -> str:
    # Import here to avoid loading config before env vars are set
    from idtoken.service.runtime import Runtime
    from idtoken.config import get_settings
    from idtoken.logging import bind_invocation

    # One correlation id per invocation, carried by every log line it emits
    bind_invocation(args.command, args.correlation_id)

    overrides = {}
    if args.namespace:
        overrides["token_namespace"] = args.namespace
    if args.repeatable:
        overrides["token_repeatable"] = True
    if args.disposable:
        overrides["token_disposable"] = True
    settings = get_settings().model_copy(update=overrides)

    runtime = Runtime(settings)
    try:
        if args.command == "create":
            return await runtime.tokens.create(args.identifier, args.expire)
        if args.command == "verify":
            return await runtime.tokens.verify(args.token)
        return await runtime.tokens.get(args.identifier)
    finally:
        await runtime.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Manage identifier-bound tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--namespace", help="Key prefix (or set TOKEN_NAMESPACE)")
    parser.add_argument(
        "--correlation-id",
        help="Tag this run's log lines with an existing id instead of a fresh one",
    )
    parser.add_argument(
        "--repeatable",
        action="store_true",
        help="Keep earlier tokens valid when creating a new one",
    )
    parser.add_argument(
        "--disposable",
        action="store_true",
        help="Consume the token on successful verification",
    )

    sub = parser.add_subparsers(dest="command", required=True)
    create = sub.add_parser("create", help="Issue a new token")
    create.add_argument("identifier")
    create.add_argument(
        "--expire",
        type=int,
        default=0,
        help="Expiry in seconds (0 uses TOKEN_EXPIRE_SECONDS)",
    )
    verify = sub.add_parser("verify", help="Resolve a token to its identifier")
    verify.add_argument("token")
    get = sub.add_parser("get", help="Show the current token for an identifier")
    get.add_argument("identifier")
    return parser


def main(argv: list[str] | None = None) -> int:
    from idtoken.service.errors import TokenError

    args = build_parser().parse_args(argv)
    try:
        result = asyncio.run(run_command(args))
    except TokenError as exc:
        print(f"Error [{exc.code}] {exc.error_code}: {exc.message}")
        return 1
    print(result)
    return 0


if __name__ == "__main__":
    sys.exit(main())
