"""
Command-line interface for the bundle relayer.

Provides commands for running the relayer and dry-running a bundle build.
"""

import argparse
import asyncio
import json
import logging
import signal
import sys
from decimal import Decimal, InvalidOperation
from typing import Optional

import structlog

from bundler import __version__
from bundler.config import BundlerConfig, NodeProvider, set_config
from bundler.core.orchestrator import Orchestrator
from bundler.node.interface import NodeConnectionError
from bundler.tx.signer import SigningKeyError

EXIT_INCLUDED = 0
EXIT_STARTUP_FAILURE = 1
EXIT_INTERRUPTED = 130

logger = structlog.get_logger(__name__)


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if json_format
            else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, level.upper()),
        stream=sys.stdout,
    )


def parse_token_amount(value: str, decimals: int) -> int:
    """Convert a decimal token amount to its smallest unit."""
    try:
        amount = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Invalid token amount: {value}")

    scaled = amount * (Decimal(10) ** decimals)
    if amount < 0 or scaled != scaled.to_integral_value():
        raise ValueError(f"Token amount {value} not representable with {decimals} decimals")
    return int(scaled)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--rpc-url",
        help="Chain JSON-RPC endpoint (default: from BUNDLER_RPC_URL)",
    )
    parser.add_argument(
        "--payload",
        help="Hex calldata of the claim call (default: from BUNDLER_CLAIM_PAYLOAD)",
    )
    parser.add_argument(
        "--amount",
        help="Token amount to forward, in whole tokens (e.g. 2677.5)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs in JSON format",
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="bundler",
        description="Submit an ordered claim bundle to private relays every block",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Run command
    run_parser = subparsers.add_parser("run", help="Submit the bundle every block until included")
    _add_common_arguments(run_parser)
    run_parser.add_argument(
        "--provider",
        choices=["http", "websocket"],
        help="Node provider (default: http)",
    )
    run_parser.add_argument(
        "--relay",
        action="append",
        dest="relays",
        help="Relay endpoint for fan-out (repeatable; replaces the configured list)",
    )

    # Estimate command (dry run)
    estimate_parser = subparsers.add_parser(
        "estimate",
        help="Build the bundle for the current block and print it without sending",
    )
    _add_common_arguments(estimate_parser)

    return parser


def build_config(args: argparse.Namespace) -> BundlerConfig:
    """Create configuration from the environment and command-line overrides."""
    overrides = {}
    if args.rpc_url:
        overrides["rpc_url"] = args.rpc_url
    if args.payload:
        overrides["claim_payload"] = args.payload
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_json:
        overrides["log_json"] = True
    if getattr(args, "provider", None):
        overrides["node_provider"] = NodeProvider(args.provider)
    if getattr(args, "relays", None):
        overrides["relayers"] = args.relays

    config = BundlerConfig(**overrides)
    if args.amount:
        config = config.model_copy(
            update={"transfer_amount": parse_token_amount(args.amount, config.token_decimals)}
        )

    # Fail early on a malformed payload
    config.claim_payload_bytes
    return config


async def run_bundler(config: BundlerConfig) -> int:
    """Run the relayer until the bundle is included."""
    orchestrator = Orchestrator(config=config)

    try:
        await orchestrator.initialize()
    except (SigningKeyError, NodeConnectionError, ValueError) as e:
        logger.error("startup_failed", error=str(e))
        await orchestrator.shutdown()
        return EXIT_STARTUP_FAILURE

    loop = asyncio.get_running_loop()
    try:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, orchestrator.stop)
    except NotImplementedError:
        pass  # Signals not available on Windows

    print(f"Starting bundler v{__version__}")
    print(f"Chain ID: {config.chain_id}")
    print(f"Relays: {len(config.relayers)} + primary {config.primary_relay_url}")
    print()

    included = await orchestrator.run()
    return EXIT_INCLUDED if included else EXIT_INTERRUPTED


async def estimate_bundle(config: BundlerConfig) -> int:
    """Build the bundle for the current head block and print it."""
    orchestrator = Orchestrator(config=config)

    try:
        await orchestrator.initialize()
    except (SigningKeyError, NodeConnectionError, ValueError) as e:
        logger.error("startup_failed", error=str(e))
        await orchestrator.shutdown()
        return EXIT_STARTUP_FAILURE

    try:
        block_number = await orchestrator.node.get_block_number()
        bundle = await orchestrator.builder.build(
            block_number,
            orchestrator.payload,
            orchestrator.transfer_amount,
        )
        print(json.dumps(bundle.to_dict(), indent=2))
        return EXIT_INCLUDED
    except Exception as e:
        logger.error("estimate_failed", error=str(e))
        return EXIT_STARTUP_FAILURE
    finally:
        await orchestrator.shutdown()


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(EXIT_STARTUP_FAILURE)

    try:
        config = build_config(args)
    except ValueError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        sys.exit(EXIT_STARTUP_FAILURE)

    set_config(config)
    setup_logging(config.log_level, config.log_json)

    if args.command == "run":
        sys.exit(asyncio.run(run_bundler(config)))
    elif args.command == "estimate":
        sys.exit(asyncio.run(estimate_bundle(config)))


if __name__ == "__main__":
    main()
