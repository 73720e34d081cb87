"""
Command-line interface for paying for a resource and running a facilitator.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Iterable, Sequence, Tuple

from .api import create_payment_flow
from .core.config import (
    FACILITATOR_MODES,
    FACILITATOR_VERIFIERS,
    ConfigError,
    load_facilitator_settings,
    load_flow_config,
)
from .facilitator.transport import serve


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(message)s",
    )


def _env_override(value: str) -> Tuple[str, str]:
    if "=" not in value:
        raise argparse.ArgumentTypeError("Overrides must look like KEY=VALUE")
    key, val = value.split("=", 1)
    key = key.strip()
    if not key:
        raise argparse.ArgumentTypeError("Override key must not be empty")
    return key, val


def _collect_overrides(pairs: Iterable[Tuple[str, str]]) -> dict[str, str]:
    return {key: value for key, value in pairs}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="x402-flow",
        description="Pay for x402-protected resources and run a facilitator",
    )
    parser.add_argument(
        "--env-file",
        default=".env",
        help="Path to the .env file containing X402_* settings (default: .env)",
    )
    parser.add_argument(
        "--set",
        action="append",
        type=_env_override,
        metavar="KEY=VALUE",
        default=None,
        help="Override an environment variable without editing the .env file",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    pay = commands.add_parser("pay", help="Run one payment flow against a resource URL")
    pay.add_argument("url", help="Resource URL to request")
    pay.add_argument("--facilitator-url", help="Facilitator base URL (default: http://localhost:3001)")
    pay.add_argument("--timeout-seconds", type=float, help="Timeout for every HTTP call")

    facilitator = commands.add_parser("facilitator", help="Run the facilitator service")
    facilitator.add_argument("--host", help="Listen address (default: 127.0.0.1)")
    facilitator.add_argument("--port", type=int, help="Listen port (default: 3001)")
    facilitator.add_argument("--network", help="Network identifier served (default: testnet)")
    facilitator.add_argument("--mode", choices=FACILITATOR_MODES, help="Backend mode (default: canned)")
    facilitator.add_argument("--verifier", choices=FACILITATOR_VERIFIERS, help="Verifier for local mode")
    return parser


def _run_pay(args: argparse.Namespace, overrides: dict[str, str]) -> int:
    try:
        config = load_flow_config(
            env_file=args.env_file,
            overrides=overrides,
            facilitator_url=args.facilitator_url,
            timeout_seconds=args.timeout_seconds,
        )
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    report = create_payment_flow(config=config).run(args.url)
    print(json.dumps(report.summary(), indent=2))
    if report.text and report.ok:
        print(report.text)
    return 0 if report.ok else 1


def _run_facilitator(args: argparse.Namespace, overrides: dict[str, str]) -> int:
    try:
        settings = load_facilitator_settings(
            env_file=args.env_file,
            overrides=overrides,
            host=args.host,
            port=args.port,
            network=args.network,
            mode=args.mode,
            verifier=args.verifier,
        )
    except ConfigError as exc:
        logging.error("Invalid configuration: %s", exc)
        return 1

    serve(settings)
    return 0


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    _configure_logging(args.log_level)
    overrides = _collect_overrides(args.set or ())

    if args.command == "pay":
        return _run_pay(args, overrides)
    return _run_facilitator(args, overrides)


def main() -> None:
    sys.exit(run_cli())
