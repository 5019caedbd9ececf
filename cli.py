"""Command-line entry point: replay a transactions CSV file and print account snapshots.

Usage: account-ledger transactions.csv > accounts.csv
"""

import argparse
import sys
from typing import List, Optional

import structlog

from config import get_settings
from logging_config import configure_logging
from repositories import TransactionParseError, get_account_sink, get_transaction_source
from services import LedgerError, get_ledger_service

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="account-ledger",
        description="Replay a transactions CSV file and print one account snapshot per client",
    )
    parser.add_argument("path", help="Path to the transactions CSV file")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Override the configured log level (logs are written to stderr)",
    )
    return parser


def run(path: str) -> None:
    source = get_transaction_source()
    sink = get_account_sink()
    ledger = get_ledger_service()

    with open(path, newline="", encoding="utf-8-sig") as fp:
        transactions = source.read(fp)

    accounts = ledger.from_transactions(transactions)
    sink.write(sorted(accounts, key=lambda account: account.client), sys.stdout)


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(args.log_level or settings.log_level, settings.log_format)

    try:
        run(args.path)
    except OSError as e:
        logger.error("Could not read transactions file", path=args.path, error=str(e))
        print(f"error: could not open transactions file {args.path}: {e.strerror or e}", file=sys.stderr)
        return 1
    except TransactionParseError as e:
        logger.error("Could not parse transactions file", path=args.path, line=e.line, error=e.message)
        print(f"error: {e}", file=sys.stderr)
        return 1
    except LedgerError as e:
        logger.error("Transaction batch rejected", path=args.path, error=str(e))
        print(f"error: {e}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit("aborted by user")
