"""Square Sync Command Line Interface.

Provides operational tools for:
- Gateway configuration checks
- Cadence lookups
- Manual subscription reconciliation
- Signing test webhook payloads

Usage:
    python -m square_sync.cli check-config
    python -m square_sync.cli resolve-cadence --unit month --step 3
    python -m square_sync.cli sync-subscription SUBSCRIPTION_ID
    python -m square_sync.cli sign-webhook --body-file event.json
"""

from __future__ import annotations

import argparse
import sys
from pathlib import Path
from typing import Callable, TextIO

from square_sync.bridge import SquareBridge
from square_sync.config import GatewayConfig, validate_production_config
from square_sync.errors import SquareSyncError, UnsupportedCadenceError
from square_sync.services.plan_resolver import resolve_cadence
from square_sync.services.webhook_receiver import compute_signature


def _default_bridge() -> SquareBridge:
    from square_sync.database import init_db
    from square_sync.repositories.sql import sql_repositories

    _, session_factory = init_db()
    return SquareBridge(sql_repositories(session_factory))


class SquareSyncCli:
    """Square Sync Command Line Interface."""

    def __init__(
        self,
        bridge_factory: Callable[[], SquareBridge] = _default_bridge,
        config_provider: Callable[[], GatewayConfig] = GatewayConfig.from_env,
        out: TextIO | None = None,
        err: TextIO | None = None,
    ) -> None:
        self.bridge_factory = bridge_factory
        self.config_provider = config_provider
        self.out = out or sys.stdout
        self.err = err or sys.stderr
        self.parser = self._build_parser()

    def _build_parser(self) -> argparse.ArgumentParser:
        """Build argument parser."""
        parser = argparse.ArgumentParser(
            prog="python -m square_sync.cli",
            description="Square sync operational tools",
        )
        subparsers = parser.add_subparsers(dest="command", help="Commands")

        check = subparsers.add_parser(
            "check-config",
            help="Validate gateway configuration and make a test call",
        )
        check.add_argument(
            "--offline",
            action="store_true",
            help="Only validate settings; do not call the gateway",
        )

        cadence = subparsers.add_parser(
            "resolve-cadence",
            help="Map a CRM frequency to a gateway cadence",
        )
        cadence.add_argument("--unit", required=True, help="day, week, month or year")
        cadence.add_argument("--step", type=int, default=1, help="Frequency interval (default: 1)")

        sync = subparsers.add_parser(
            "sync-subscription",
            help="Pull a subscription from the gateway and reconcile it locally",
        )
        sync.add_argument("subscription_id", help="Gateway subscription ID")

        sign = subparsers.add_parser(
            "sign-webhook",
            help="Compute the signature header for a webhook body",
        )
        sign.add_argument("--body-file", type=Path, required=True, help="File with the raw JSON body")
        sign.add_argument("--url", help="Notification URL (default: configured)")
        sign.add_argument("--key", help="Signature key (default: configured)")

        return parser

    def run(self, args: list[str] | None = None) -> int:
        """Run the CLI with given arguments."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help(self.out)
            return 1

        # Dispatch to command handler
        handlers: dict[str, Callable[[argparse.Namespace], int]] = {
            "check-config": self._cmd_check_config,
            "resolve-cadence": self._cmd_resolve_cadence,
            "sync-subscription": self._cmd_sync_subscription,
            "sign-webhook": self._cmd_sign_webhook,
        }

        handler = handlers.get(parsed.command)
        if handler:
            return handler(parsed)

        print(f"Unknown command: {parsed.command}", file=self.err)
        return 1

    def _cmd_check_config(self, args: argparse.Namespace) -> int:
        """Validate configuration."""
        config = self.config_provider()
        print(f"Square Sync Config Check ({config.mode_label})", file=self.out)
        print("=" * 40, file=self.out)
        print(f"  Base URL:    {config.base_url}", file=self.out)
        print(f"  API version: {config.api_version}", file=self.out)
        print(f"  Location:    {config.location_id or '-'}", file=self.out)

        issues = validate_production_config(config)
        critical = [i for i in issues if i.startswith("CRITICAL")]
        for issue in issues:
            print(f"  {issue}", file=self.out)

        if not args.offline:
            failure = self.bridge_factory().check_config()
            if failure:
                print(f"\n{failure}", file=self.out)
                return 1
            print("\nGateway call: OK", file=self.out)

        return 1 if critical else 0

    def _cmd_resolve_cadence(self, args: argparse.Namespace) -> int:
        """Resolve a cadence."""
        try:
            cadence = resolve_cadence(args.unit, args.step)
        except UnsupportedCadenceError as e:
            print(f"ERROR: {e}", file=self.err)
            return 1
        print(cadence.value, file=self.out)
        return 0

    def _cmd_sync_subscription(self, args: argparse.Namespace) -> int:
        """Reconcile one subscription."""
        try:
            result = self.bridge_factory().sync_subscription(args.subscription_id)
        except SquareSyncError as e:
            print(f"ERROR: {e}", file=self.err)
            return 1
        line = f"{args.subscription_id}: {result.outcome.value}"
        if result.record_id is not None:
            line += f" (recurring {result.record_id})"
        if result.reason:
            line += f" - {result.reason}"
        print(line, file=self.out)
        return 0

    def _cmd_sign_webhook(self, args: argparse.Namespace) -> int:
        """Sign a webhook body."""
        config = self.config_provider()
        key = args.key or config.webhook_signature_key
        url = args.url if args.url is not None else config.notification_url
        if not key:
            print("ERROR: no signature key configured", file=self.err)
            return 1
        body = args.body_file.read_bytes()
        print(compute_signature(url, body, key), file=self.out)
        return 0


def main() -> int:
    """CLI entry point."""
    cli = SquareSyncCli()
    return cli.run()


if __name__ == "__main__":
    sys.exit(main())
