#!/usr/bin/env python3
"""
Land Registry CLI

Operator command-line interface for the land registry workflow engine.

Usage:
    python -m landreg <command> [subcommand] [options]

Commands:
    config      Show, query, validate or document configuration
    account     Generate signing accounts
    sign        Sign a message with an account key
    verify      Check a message signature against an account
    evidence    Compute content references for documents
    demo        Run a verification and a transfer end to end in memory

Copyright (c) 2026 Momentum. All rights reserved.
"""

from __future__ import annotations

import argparse
import json
import sys
from enum import Enum
from pathlib import Path
from typing import Any, List, Optional

import yaml

from landreg import __version__
from landreg.errors import WorkflowError
from landreg.observability import EngineLayer, configure_logging, get_logger

log = get_logger("cli", EngineLayer.CLI)


class OutputFormat(Enum):
    """Output format options."""
    JSON = "json"
    YAML = "yaml"
    TABLE = "table"
    TEXT = "text"


class CLIError(Exception):
    """CLI error with exit code."""
    def __init__(self, message: str, exit_code: int = 1):
        super().__init__(message)
        self.exit_code = exit_code


def format_output(data: Any, fmt: OutputFormat = OutputFormat.JSON) -> str:
    """Format data for output."""
    if fmt == OutputFormat.JSON:
        return json.dumps(data, indent=2, default=str)
    if fmt == OutputFormat.YAML:
        return yaml.safe_dump(json.loads(json.dumps(data, default=str)), default_flow_style=False)
    if fmt == OutputFormat.TABLE:
        return _format_table(data)
    return str(data)


def _format_table(data: Any) -> str:
    """Format data as an ASCII table."""
    if isinstance(data, list) and data and isinstance(data[0], dict):
        headers = list(data[0].keys())
        rows = [[str(row.get(h, ""))[:40] for h in headers] for row in data]
        widths = [max(len(h), max(len(r[i]) for r in rows)) for i, h in enumerate(headers)]
        lines = [" | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))]
        lines.append("-+-".join("-" * w for w in widths))
        for row in rows:
            lines.append(" | ".join(c.ljust(widths[i]) for i, c in enumerate(row)))
        return "\n".join(lines)
    if isinstance(data, dict):
        return "\n".join(f"{k}: {v}" for k, v in data.items())
    return str(data)


class LandregCLI:
    """Main CLI application."""

    def __init__(self):
        self.parser = argparse.ArgumentParser(
            prog="landreg",
            description="Land asset verification and transfer workflow engine",
            formatter_class=argparse.RawDescriptionHelpFormatter,
        )
        self.parser.add_argument("--version", "-V", action="version", version=f"landreg {__version__}")
        self.parser.add_argument(
            "--format", "-f",
            choices=[f.value for f in OutputFormat],
            default="json",
            help="Output format (default: json)",
        )
        self.parser.add_argument("--config", "-c", help="YAML configuration file to load")
        self.parser.add_argument("--quiet", "-q", action="store_true", help="Suppress error output")

        self.subparsers = self.parser.add_subparsers(dest="command", help="Commands")
        self._register_commands()

    def _register_commands(self) -> None:
        config = self.subparsers.add_parser("config", help="Configuration management")
        config_sub = config.add_subparsers(dest="subcommand")
        config_sub.add_parser("show", help="Show effective configuration")
        config_sub.add_parser("validate", help="Validate configuration")
        config_sub.add_parser("schema", help="Export configuration schema")
        get = config_sub.add_parser("get", help="Get a value by dotted path")
        get.add_argument("path", help="e.g. ledger.max_retry_attempts")

        account = self.subparsers.add_parser("account", help="Signing accounts")
        account_sub = account.add_subparsers(dest="subcommand")
        account_sub.add_parser("new", help="Generate a new account keypair")

        sign = self.subparsers.add_parser("sign", help="Sign a message")
        sign.add_argument("--key", "-k", required=True, help="Hex private key")
        sign.add_argument("--message", "-m", required=True, help="Message text")

        verify = self.subparsers.add_parser("verify", help="Verify a message signature")
        verify.add_argument("--account", "-a", required=True, help="Claimed account")
        verify.add_argument("--message", "-m", required=True, help="Message text")
        verify.add_argument("--signature", "-s", required=True, help="Signature hex")

        evidence = self.subparsers.add_parser("evidence", help="Evidence references")
        evidence_sub = evidence.add_subparsers(dest="subcommand")
        hash_cmd = evidence_sub.add_parser("hash", help="Compute the content reference of files")
        hash_cmd.add_argument("files", nargs="+", help="Files to hash")

        self.subparsers.add_parser("demo", help="Run an in-memory verification and transfer")

    def run(self, args: Optional[List[str]] = None) -> int:
        """Run the CLI."""
        parsed = self.parser.parse_args(args)

        if not parsed.command:
            self.parser.print_help()
            return 0

        try:
            self._setup(parsed)
            fmt = OutputFormat(parsed.format)
            result = self._dispatch(parsed)
            if result is not None:
                print(format_output(result, fmt))
            return 0

        except WorkflowError as e:
            if not parsed.quiet:
                print(format_output(e.to_dict(), OutputFormat.JSON), file=sys.stderr)
            return 2

        except CLIError as e:
            if not parsed.quiet:
                print(f"Error: {e}", file=sys.stderr)
            return e.exit_code

    def _setup(self, parsed: argparse.Namespace) -> None:
        from landreg.config import ConfigError, get_config_manager

        mgr = get_config_manager()
        try:
            if parsed.config:
                mgr.load_from_file(parsed.config)
            else:
                mgr.load_defaults()
        except ConfigError as e:
            raise CLIError(str(e), exit_code=3) from e
        obs = mgr.config.observability
        configure_logging(obs.log_level.get(), obs.log_format.get())

    def _dispatch(self, args: argparse.Namespace) -> Any:
        cmd = args.command
        subcmd = getattr(args, "subcommand", None)
        handler_name = f"_handle_{cmd}_{subcmd}" if subcmd else f"_handle_{cmd}"
        handler = getattr(self, handler_name, None)
        if handler is None:
            raise CLIError(f"Unknown command: {cmd} {subcmd or ''}".strip())
        log.debug("Dispatching command", operation=handler_name)
        return handler(args)

    # Config handlers
    def _handle_config_show(self, args: argparse.Namespace) -> Any:
        from landreg.config import get_config_manager
        return get_config_manager().config.to_dict()

    def _handle_config_validate(self, args: argparse.Namespace) -> Any:
        from landreg.config import get_config_manager
        errors = get_config_manager().validate()
        if errors:
            raise CLIError("; ".join(errors), exit_code=3)
        return {"valid": True, "errors": []}

    def _handle_config_schema(self, args: argparse.Namespace) -> Any:
        from landreg.config import get_config_manager
        return get_config_manager().export_schema()

    def _handle_config_get(self, args: argparse.Namespace) -> Any:
        from landreg.config import ConfigError, get_config_manager
        try:
            return {"path": args.path, "value": get_config_manager().get(args.path)}
        except ConfigError as e:
            raise CLIError(str(e)) from e

    # Identity handlers
    def _handle_account_new(self, args: argparse.Namespace) -> Any:
        from landreg.identity import Wallet
        wallet = Wallet.generate()
        return {
            "account": wallet.account,
            "public_key": wallet.public_key_hex,
            "private_key": wallet.private_key_hex,
        }

    def _handle_sign(self, args: argparse.Namespace) -> Any:
        from landreg.identity import Wallet
        try:
            wallet = Wallet.from_private_hex(args.key)
        except ValueError as e:
            raise CLIError(f"Invalid private key: {e}") from e
        return {"account": wallet.account, "message": args.message, "signature": wallet.sign(args.message)}

    def _handle_verify(self, args: argparse.Namespace) -> Any:
        from landreg.identity import IdentityVerifier
        result = IdentityVerifier().check(args.message, args.signature, args.account)
        if not result.ok:
            raise CLIError(f"Signature does not match {args.account}", exit_code=4)
        return {"valid": True, "account": result.recovered, "matched": result.variant}

    # Evidence handlers
    def _handle_evidence_hash(self, args: argparse.Namespace) -> Any:
        from landreg.evidence import content_hash
        out = []
        for name in args.files:
            path = Path(name)
            if not path.is_file():
                raise CLIError(f"Not a file: {name}")
            data = path.read_bytes()
            out.append({"file": name, "content_hash": content_hash(data), "size": len(data)})
        return out

    # Demo
    def _handle_demo(self, args: argparse.Namespace) -> Any:
        from landreg.demo import run_demo
        return run_demo()


def main() -> int:
    """CLI entry point."""
    return LandregCLI().run()


if __name__ == "__main__":
    sys.exit(main())
