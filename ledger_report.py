#!/usr/bin/env python3
"""
ICRC Ledger Report

Walks an ICRC ledger's transaction log and prints derived views as JSON.

Usage:
    python ledger_report.py <canister_id> count
    python ledger_report.py <canister_id> supply
    python ledger_report.py <canister_id> accounts
    python ledger_report.py <canister_id> holders --order desc --top 20
    python ledger_report.py <canister_id> history --identifier <account|principal> --limit 50

Requires a canister gateway that accepts JSON calls at
POST {gateway}/canister/{canister_id}/{method} and answers with the
candid value as JSON. Public IC boundary nodes do not speak this protocol;
run a compatible gateway in front of the replica.

Gateway URL and defaults can also come from ICRC_GATEWAY_URL,
ICRC_LEDGER_PARALLEL_BATCHES and ICRC_LEDGER_DEBUG (a .env file is honored).
"""

import argparse
import asyncio
import json
import logging
import sys
from typing import Optional

from icrc_ledger import ClientConfig, Ledger, LedgerConfig, LedgerError

COMMANDS = ("count", "supply", "accounts", "holders", "history")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Derived views over an ICRC ledger transaction log",
        epilog="Requires a JSON canister gateway (POST {gateway}/canister/{id}/{method}); "
               "public IC boundary nodes do not serve this protocol.",
    )
    parser.add_argument("canister_id", help="Ledger canister id")
    parser.add_argument("command", choices=COMMANDS, help="Report to produce")
    parser.add_argument("--gateway", default=None, help="URL of a compatible JSON canister gateway")
    parser.add_argument("--parallel-batches", type=int, default=None, help="Concurrent archive reads per round")
    parser.add_argument("--debug", action="store_true", help="Trace every fetch")
    parser.add_argument("--order", choices=("asc", "desc"), default="desc", help="Holder sort order")
    parser.add_argument("--top", type=int, default=None, help="Only print the first N holders")
    parser.add_argument("--identifier", default=None, help="Account or principal for history")
    parser.add_argument("--limit", type=int, default=None, help="Maximum history entries")
    return parser


def limit_holders(holders: list, top: Optional[int]) -> list:
    """First top holders; None means all of them."""
    if top is None:
        return holders
    return holders[:top]


def _json_default(value):
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return str(value)


async def run_report(args: argparse.Namespace) -> object:
    config = LedgerConfig.from_env()
    if args.debug:
        config.debug = True
    if args.parallel_batches is not None:
        config = LedgerConfig(
            debug=config.debug,
            parallel_batches=args.parallel_batches,
            live_batch_size=config.live_batch_size,
        )

    client_config = ClientConfig.from_env()
    if args.gateway:
        client_config.gateway_url = args.gateway

    async with Ledger(args.canister_id, config, client_config=client_config) as ledger:
        if args.command == "count":
            return {"transactions": await ledger.get_total_transactions()}
        if args.command == "supply":
            return {"total_supply": await ledger.get_total_supply()}
        if args.command == "accounts":
            return await ledger.count_unique_accounts()
        if args.command == "holders":
            holders = await ledger.collect_holders_and_balances(args.order)
            return limit_holders(holders, args.top)
        # history
        return await ledger.collect_transactions_for(args.identifier, args.limit)


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    if args.command == "history" and not args.identifier:
        parser.error("history requires --identifier")

    logging.basicConfig(
        level=logging.INFO if args.debug else logging.WARNING,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        stream=sys.stderr,
    )

    try:
        result = asyncio.run(run_report(args))
    except LedgerError as e:
        logging.getLogger("ledger_report").error(str(e))
        return 1

    json.dump(result, sys.stdout, default=_json_default, indent=2)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
