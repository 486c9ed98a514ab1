"""
Command-line interface for the coffee batch minter.

Provides commands for minting batch tokens, recording status updates and
inspecting the custodial wallet. Secrets are read from the environment
(MINTER_SEED, MINTER_BLOCKFROST_PROJECT_ID) or from files, never logged.
"""

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Optional

import structlog

from minter import __version__
from minter.config import MinterConfig, NetworkType, set_config
from minter.core.errors import MinterError
from minter.core.service import TokenService
from minter.node.blockfrost import BlockfrostGateway
from minter.node.interface import NetworkError
from minter.wallet.context import WalletContext

SECRET_FIELDS = {"seed", "secret_seed", "mnemonic", "project_id", "blockfrost_key"}


def redact_secrets(logger, method_name, event_dict):
    """Mask any secret-named field that reaches the log pipeline."""
    for key in SECRET_FIELDS.intersection(event_dict):
        event_dict[key] = "***"
    return event_dict


def setup_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Configure structured logging."""
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            redact_secrets,
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
        stream=sys.stderr,
    )


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="coffee-minter",
        description="Mint and track coffee batch tokens on Cardano",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--network",
        choices=["mainnet", "preprod", "preview"],
        default=None,
        help="Cardano network (default: from configuration)",
    )
    parser.add_argument(
        "--seed-file",
        help="File holding the wallet mnemonic (default: MINTER_SEED)",
    )
    parser.add_argument(
        "--blockfrost-project-id",
        help="Blockfrost project ID (default: MINTER_BLOCKFROST_PROJECT_ID)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default=None,
        help="Logging level",
    )
    parser.add_argument(
        "--log-json",
        action="store_true",
        help="Output logs in JSON format",
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("address", help="Show the custodial wallet address")
    subparsers.add_parser("utxos", help="List spendable inputs of the wallet")

    mint_parser = subparsers.add_parser("mint", help="Mint a batch token")
    mint_parser.add_argument("--token-name", required=True, help="Asset name, e.g. Coffee#1")
    mint_parser.add_argument(
        "--metadata",
        required=True,
        help="Provenance record as JSON, or @path to a JSON file",
    )
    mint_parser.add_argument("--script-cbor", help="Minting script template as CBOR hex")

    status_parser = subparsers.add_parser("update-status", help="Record a status update")
    status_parser.add_argument("--unit", required=True, help="Asset unit of the batch token")
    status_parser.add_argument("--status", required=True, help="New status, e.g. washed")
    status_parser.add_argument("--description", default="", help="Status description")
    status_parser.add_argument("--note", default="", help="Free text note")
    status_parser.add_argument(
        "--recipient",
        help="Send the token to this address instead of back to the wallet",
    )

    history_parser = subparsers.add_parser("history", help="Show the status history of a token")
    history_parser.add_argument("--unit", required=True, help="Asset unit of the batch token")

    return parser


def _read_seed(args: argparse.Namespace) -> str:
    if args.seed_file:
        return Path(args.seed_file).read_text().strip()
    return os.environ.get("MINTER_SEED", "")


def _read_project_id(args: argparse.Namespace) -> str:
    return args.blockfrost_project_id or os.environ.get("MINTER_BLOCKFROST_PROJECT_ID", "")


def _read_metadata(value: str) -> dict:
    if value.startswith("@"):
        value = Path(value[1:]).read_text()
    return json.loads(value)


def _print(data) -> None:
    print(json.dumps(data, indent=2))


async def show_utxos(config: MinterConfig, seed: str, project_id: str) -> None:
    """List the wallet's spendable inputs."""
    with WalletContext.from_seed(seed, TokenService(config).network) as wallet:
        async with BlockfrostGateway(project_id, config) as gateway:
            utxos = await gateway.list_spendable_inputs(wallet.address_str)

    _print([
        {
            "ref": f"{u.input.transaction_id.payload.hex()}#{u.input.index}",
            "lovelace": u.output.amount.coin,
            "assets": sum(len(a) for a in (u.output.amount.multi_asset or {}).values()),
        }
        for u in utxos
    ])


async def run_command(args: argparse.Namespace, config: MinterConfig) -> int:
    """Run one command; returns the exit code."""
    service = TokenService(config)
    seed = _read_seed(args)
    project_id = _read_project_id(args)

    if args.command == "address":
        with WalletContext.from_seed(seed, service.network) as wallet:
            print(wallet.address_str)
        return 0

    if args.command == "utxos":
        await show_utxos(config, seed, project_id)
        return 0

    if args.command == "mint":
        result = await service.mint(
            args.token_name,
            _read_metadata(args.metadata),
            seed=seed,
            project_id=project_id,
            script_cbor=args.script_cbor,
        )
    elif args.command == "update-status":
        result = await service.update_status(
            args.unit,
            {"status": args.status, "description": args.description, "note": args.note},
            seed=seed,
            project_id=project_id,
            self_transfer=args.recipient is None,
            recipient_address=args.recipient,
        )
    else:
        records = await service.status_history(args.unit, project_id)
        _print([r.to_dict() for r in records])
        return 0

    _print(result.to_dict())
    return 0 if result.ok else 2


def main(argv: Optional[list] = None) -> None:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    overrides = {}
    if args.network:
        overrides["network"] = NetworkType(args.network)
    if args.log_level:
        overrides["log_level"] = args.log_level
    if args.log_json:
        overrides["log_json"] = True
    config = MinterConfig(**overrides)
    set_config(config)

    setup_logging(config.log_level, config.log_json)

    try:
        code = asyncio.run(run_command(args, config))
    except (MinterError, NetworkError) as e:
        print(f"Error: {e}", file=sys.stderr)
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
