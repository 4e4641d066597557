"""Run NFSe pipeline operations from the command line.

Examples:
    python -m scripts.run_rps generate 101 102
    python -m scripts.run_rps submit 1 2
    python -m scripts.run_rps sync
    python -m scripts.run_rps verify 9001
    python -m scripts.run_rps stats
    python -m scripts.run_rps authorize-url

Each command prints its report as JSON.
"""

import argparse
import asyncio
import json
import sys
from typing import Any, List, Optional

from core.config import Settings
from core.errors import IntegrationError
from core.observability import configure_logging, get_logger
from workflows.factory import build_workflow

logger = get_logger(__name__)


def _dump(result: Any) -> str:
    if isinstance(result, list):
        return json.dumps([item.model_dump(mode="json") for item in result], indent=2)
    if hasattr(result, "model_dump"):
        return json.dumps(result.model_dump(mode="json"), indent=2)
    return json.dumps(result, indent=2, default=str)


async def run_command(args: argparse.Namespace, settings: Settings) -> Any:
    workflow = build_workflow(settings)

    if args.command == "generate":
        return await workflow.generate(args.order_ids)
    if args.command == "submit":
        return await workflow.submit(args.rps_ids)
    if args.command == "sync":
        return await workflow.sync()
    if args.command == "verify":
        return await workflow.verify(args.invoice_ids)
    if args.command == "stats":
        return workflow.stats()
    if args.command == "authorize-url":
        return {"authorization_url": await workflow.token_manager.begin_authorization()}
    raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bling NFSe pipeline operations")
    parser.add_argument("--env-file", help="Load environment variables from this file")
    subparsers = parser.add_subparsers(dest="command", required=True)

    generate = subparsers.add_parser("generate", help="Emit NFSe documents for sales orders")
    generate.add_argument("order_ids", type=int, nargs="+", help="Bling sales order ids")

    submit = subparsers.add_parser("submit", help="Send queued RPS records to the municipality")
    submit.add_argument("rps_ids", type=int, nargs="+", help="RPS queue record ids")

    subparsers.add_parser("sync", help="Reconcile unsettled records with Bling")

    verify = subparsers.add_parser("verify", help="Poll invoices until they have a number")
    verify.add_argument("invoice_ids", nargs="+", help="Bling NFSe ids")

    subparsers.add_parser("stats", help="Show RPS queue counts by status")
    subparsers.add_parser("authorize-url", help="Print the Bling authorization URL")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = Settings.from_env(args.env_file)
    configure_logging(settings.log_level, json_format=settings.log_json)

    try:
        result = asyncio.run(run_command(args, settings))
    except IntegrationError as e:
        logger.error(f"{args.command} failed: {e.message}")
        print(json.dumps({"error": type(e).__name__, "message": e.message}, indent=2))
        return 1

    print(_dump(result))
    return 0


if __name__ == "__main__":
    sys.exit(main())
