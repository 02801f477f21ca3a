"""Replay a CSV log of ledger actions and print the final account balances.

Usage:
    ledger-replay transactions.csv > accounts.csv
    ledger-replay transactions.csv --on-update-error log --sort
"""
import argparse
import sys
from typing import List, Optional

import structlog

from config import ErrorPolicy, configure_logging, get_settings
from csv_io import read_actions, write_accounts
from engine import MultiThreadedEngine, SingleThreadedEngine
from errors import DecodeError, UpdateError
from services import LedgerService

logger = structlog.get_logger()

POLICY_CHOICES = [policy.value for policy in ErrorPolicy]


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    settings = get_settings()
    p = argparse.ArgumentParser(
        prog="ledger-replay",
        description="Apply deposits, withdrawals, disputes, resolves and chargebacks from a CSV "
                    "file and write the resulting client accounts as CSV to stdout",
    )
    p.add_argument("input", help="Path to the input CSV (type, client, tx, amount)")
    p.add_argument(
        "--on-decode-error",
        choices=POLICY_CHOICES,
        default=settings.decode_error_policy.value,
        help="What to do with records that cannot be decoded (default: %(default)s)",
    )
    p.add_argument(
        "--on-update-error",
        choices=POLICY_CHOICES,
        default=settings.update_error_policy.value,
        help="What to do with actions the ledger rejects (default: %(default)s)",
    )
    p.add_argument(
        "--precision",
        type=int,
        default=settings.amount_precision,
        help="Decimal places in the output (default: %(default)s)",
    )
    p.add_argument(
        "--multi-threaded",
        action="store_true",
        help="Serialize updates behind a lock, as for concurrent producers",
    )
    p.add_argument("--sort", action="store_true", help="Sort output rows by client id")
    return p.parse_args(argv)


def run(args: argparse.Namespace, stdout=None) -> int:
    stdout = stdout if stdout is not None else sys.stdout
    engine_class = MultiThreadedEngine if args.multi_threaded else SingleThreadedEngine
    engine = engine_class(
        LedgerService(precision=args.precision),
        policy=ErrorPolicy(args.on_update_error),
    )

    try:
        # Undecodable bytes become U+FFFD so the record fails validation and follows the decode policy
        with open(args.input, newline="", encoding="utf-8", errors="replace") as f:
            engine.process_all(read_actions(f, policy=ErrorPolicy(args.on_decode_error)))
    except FileNotFoundError:
        logger.error("Input file not found", path=args.input)
        return 1
    except DecodeError as e:
        logger.error("Failed to decode input", path=args.input, line=e.line, error=e.detail)
        return 1
    except UpdateError as e:
        logger.error("Failed to process input", path=args.input, error_code=e.error_code, error=str(e))
        return 1

    accounts = engine.accounts()
    if args.sort:
        accounts.sort(key=lambda account: account.client)
    rows = write_accounts(stdout, accounts)

    logger.info(
        "Replay finished",
        path=args.input,
        accounts=rows,
        processed=engine.processed,
        rejected=engine.rejected,
    )
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    configure_logging(get_settings())
    return run(parse_args(argv))


if __name__ == "__main__":
    sys.exit(main())
