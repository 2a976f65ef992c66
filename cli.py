"""Command line entry point: replay a transactions CSV and print account balances.

    ledger-replay transactions.csv > accounts.csv
"""
import argparse
import sys
from typing import List, Optional, TextIO

import structlog

from config import get_settings, get_settings_for_environment
from csv_io import read_transactions, write_accounts
from exceptions import LedgerError
from logging_config import configure_logging
from services import replay

logger = structlog.get_logger()

EXIT_OK = 0
EXIT_INVALID_INPUT = 1
EXIT_UNREADABLE_INPUT = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ledger-replay",
        description="Replay a CSV log of transactions and write final client account balances to stdout.",
    )
    parser.add_argument("input", help="path to the transactions CSV file")
    parser.add_argument(
        "--env",
        choices=["development", "production", "testing"],
        help="settings profile (defaults to LEDGER_* environment variables)",
    )
    parser.add_argument("--log-level", help="override the configured log level")
    return parser


def main(argv: Optional[List[str]] = None, stdout: Optional[TextIO] = None) -> int:
    args = build_parser().parse_args(argv)
    stdout = stdout or sys.stdout

    settings = get_settings_for_environment(args.env) if args.env else get_settings()
    if args.log_level:
        settings = settings.model_copy(update={"log_level": args.log_level})
    configure_logging(settings)

    try:
        with open(args.input, newline="", encoding="utf-8") as handle:
            snapshots = replay(read_transactions(handle, delimiter=settings.csv_delimiter))
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Unable to read transactions file", path=args.input, error=str(e))
        return EXIT_UNREADABLE_INPUT
    except LedgerError as e:
        logger.error("Replay aborted", path=args.input, error=str(e))
        return EXIT_INVALID_INPUT

    write_accounts(snapshots, stdout, delimiter=settings.csv_delimiter)
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
