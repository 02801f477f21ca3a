"""CSV input and output for the ledger replay.

Input rows carry ``type, client, tx, amount`` under a header row; fields are
whitespace-trimmed and ``amount`` may be left blank for disputes, resolves and
chargebacks. Output rows carry ``client, available, held, total, locked``.
"""
import csv
from typing import Iterable, Iterator, List, Optional, TextIO

from pydantic import ValidationError
import structlog

from config import ErrorPolicy
from errors import DecodeError
from models import AccountData, Action

logger = structlog.get_logger()

OUTPUT_COLUMNS = ("client", "available", "held", "total", "locked")


def _trim(row: dict) -> dict:
    return {
        key.strip(): value.strip() if isinstance(value, str) else value
        for key, value in row.items()
        if key is not None
    }


def _describe(error: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(part) for part in e['loc']) or 'record'}: {e['msg']}"
        for e in error.errors()
    )


def read_actions(
    stream: TextIO,
    policy: ErrorPolicy = ErrorPolicy.ignore,
    errors: Optional[List[DecodeError]] = None,
) -> Iterator[Action]:
    """Lazily decode actions from ``stream``.

    Records that fail to decode are dropped under ``ignore``, dropped and
    logged (and appended to ``errors`` when given) under ``log``, and raised
    as ``DecodeError`` under ``raise``.
    """
    reader = csv.DictReader(stream, skipinitialspace=True)
    for row in reader:
        try:
            yield Action.model_validate(_trim(row))
        except ValidationError as e:
            error = DecodeError(reader.line_num, _describe(e))
            if policy == ErrorPolicy.raise_:
                raise error from e
            if policy == ErrorPolicy.log:
                logger.warning("Skipping undecodable record", line=error.line, error=error.detail)
                if errors is not None:
                    errors.append(error)


def format_amount(value) -> str:
    return format(value, "f")


def write_accounts(stream: TextIO, accounts: Iterable[AccountData]) -> int:
    """Write one row per account snapshot. Returns the number of rows written."""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(OUTPUT_COLUMNS)
    rows = 0
    for account in accounts:
        writer.writerow([
            account.client,
            format_amount(account.available),
            format_amount(account.held),
            format_amount(account.total),
            "true" if account.locked else "false",
        ])
        rows += 1
    return rows
