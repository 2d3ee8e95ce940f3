"""Command-line interface for easyauth configuration and diagnostics."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pathlib import Path
from typing import TYPE_CHECKING

from .exceptions import ConfigurationError


if TYPE_CHECKING:
    from collections.abc import Sequence

    from .config import AuthSettings


def main(argv: Sequence[str] | None = None) -> int:
    """Run the main CLI entry point.

    Returns
    -------
    int
        Exit code.
    """
    parser = argparse.ArgumentParser(
        prog="easyauth",
        description="easyauth configuration and diagnostics",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # config command
    config_parser = subparsers.add_parser(
        "config",
        help="Show or export configuration",
    )
    config_group = config_parser.add_mutually_exclusive_group()
    config_group.add_argument(
        "--show",
        action="store_true",
        help="Show current configuration (secrets redacted)",
    )
    config_group.add_argument(
        "--toml",
        action="store_true",
        help="Export configuration as TOML",
    )
    config_parser.add_argument(
        "--output",
        "-o",
        type=str,
        help="Output file path (default: stdout)",
    )

    # providers command
    subparsers.add_parser(
        "providers",
        help="List enabled providers and their capabilities",
    )

    # health command
    subparsers.add_parser(
        "health",
        help="Probe every enabled provider and the backend API",
    )

    # login-url command
    login_parser = subparsers.add_parser(
        "login-url",
        help="Build an authorization URL to check a provider configuration",
    )
    login_parser.add_argument(
        "--provider",
        "-p",
        type=str,
        default=None,
        help="Provider name (uses default_provider when omitted)",
    )
    login_parser.add_argument(
        "--return-url",
        "-r",
        type=str,
        required=True,
        help="Absolute URL the provider redirects back to",
    )

    args = parser.parse_args(argv)

    if args.debug:
        from .log import enable_debug

        enable_debug()

    handlers = {
        "config": handle_config,
        "providers": handle_providers,
        "health": handle_health,
        "login-url": handle_login_url,
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 0
    try:
        return handler(args)
    except ConfigurationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 2


def _load() -> AuthSettings:
    from .config import load_settings
    from .log import get_logger, set_format, set_level

    settings = load_settings()
    if get_logger().level != logging.DEBUG:
        set_level(settings.log.level)
    set_format(settings.log.format)
    return settings


def handle_config(args: argparse.Namespace) -> int:
    """Handle the config command.

    Parameters
    ----------
    args : argparse.Namespace
        Parsed command line arguments.

    Returns
    -------
    int
        Exit code.
    """
    settings = _load()
    output = settings.to_toml() if args.toml else settings.show()

    if args.output:
        Path(args.output).write_text(output, encoding="utf-8")
        print(f"Configuration written to {args.output}")
    else:
        print(output)

    return 0


def handle_providers(args: argparse.Namespace) -> int:  # noqa: ARG001
    """List enabled providers, in declared order."""
    from .registry import ProviderRegistry

    registry = ProviderRegistry(_load())
    providers = registry.get_available_providers()
    if not providers:
        print("No providers enabled")
        return 1
    for info in providers:
        caps = ", ".join(sorted(c.value for c in info.capabilities))
        print(f"{info.name:16} {info.display_name:16} {caps}")
    return 0


def handle_health(args: argparse.Namespace) -> int:  # noqa: ARG001
    """Probe providers and the backend; exit 1 if any is unhealthy."""
    from .client import AuthClient
    from .storage import MemoryStorage

    async def _probe() -> int:
        async with AuthClient(_load(), storage=MemoryStorage()) as client:
            statuses = await client.get_health_status()
        failures = 0
        for name, status in statuses.items():
            marker = "ok" if status.is_healthy else "FAIL"
            detail = f"  {status.error}" if status.error else ""
            print(f"{name:16} {marker:5} {status.response_time:8.1f} ms{detail}")
            failures += not status.is_healthy
        return 1 if failures else 0

    return asyncio.run(_probe())


def handle_login_url(args: argparse.Namespace) -> int:
    """Print an authorization URL for the chosen provider."""
    from .client import AuthClient
    from .storage import MemoryStorage

    async def _build() -> int:
        async with AuthClient(_load(), storage=MemoryStorage()) as client:
            result = await client.initiate_login(
                {"provider": args.provider, "return_url": args.return_url}
            )
        if not result.success:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
        print(result.auth_url)
        return 0

    return asyncio.run(_build())


if __name__ == "__main__":
    sys.exit(main())
