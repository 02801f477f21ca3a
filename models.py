from pydantic import BaseModel, ConfigDict, Field, field_validator
from enum import Enum
from typing import Optional
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP, localcontext

from errors import (
    FailureReason,
    InsufficientFundsError,
    LockedError,
    NegativeAmountError,
)

CLIENT_ID_MAX = 2**16 - 1
TRANSACTION_ID_MAX = 2**32 - 1
DEFAULT_PRECISION = 4
# Keeps 4 decimal places inside the 28 digit default decimal context
MAX_AMOUNT = Decimal("1e24")


class ActionKind(str, Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"
    dispute = "dispute"
    resolve = "resolve"
    chargeback = "chargeback"


class TransactionStatus(str, Enum):
    succeeded = "succeeded"
    failed = "failed"
    disputed = "disputed"
    cancelled = "cancelled"


class Action(BaseModel):
    """A single input record describing an operation against a transaction/client pair."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, str_strip_whitespace=True)

    kind: ActionKind = Field(..., alias="type", description="Action type")
    client_id: int = Field(..., alias="client", ge=0, le=CLIENT_ID_MAX, description="Client identifier")
    transaction_id: int = Field(
        ...,
        alias="tx",
        ge=0,
        le=TRANSACTION_ID_MAX,
        description="Transaction identifier"
    )
    amount: Optional[Decimal] = Field(
        None,
        description="Amount, required for deposits and withdrawals only"
    )

    @field_validator('kind', mode='before')
    @classmethod
    def normalize_kind(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v

    @field_validator('amount', mode='before')
    @classmethod
    def blank_amount_is_none(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator('amount')
    @classmethod
    def validate_amount_is_finite(cls, v):
        if v is None:
            return v
        if not v.is_finite():
            raise ValueError('Amount must be a finite number')
        if abs(v) >= MAX_AMOUNT:
            raise ValueError('Amount must be smaller than 1e24 in magnitude')
        return v


class TransactionState(BaseModel):
    """Outcome of a transaction. A failed arithmetic operation is kept as data in ``reason``."""

    model_config = ConfigDict(frozen=True)

    status: TransactionStatus
    reason: Optional[FailureReason] = None

    @classmethod
    def succeeded(cls) -> "TransactionState":
        return cls(status=TransactionStatus.succeeded)

    @classmethod
    def disputed(cls) -> "TransactionState":
        return cls(status=TransactionStatus.disputed)

    @classmethod
    def cancelled(cls) -> "TransactionState":
        return cls(status=TransactionStatus.cancelled)

    @classmethod
    def failed(cls, reason: FailureReason) -> "TransactionState":
        return cls(status=TransactionStatus.failed, reason=reason)

    @property
    def is_disputed(self) -> bool:
        return self.status == TransactionStatus.disputed

    @property
    def is_failed(self) -> bool:
        return self.status == TransactionStatus.failed


class Account(BaseModel):
    """Balances of a single client.

    Every operation validates before it mutates, so a raised ``AccountError``
    leaves the account untouched.
    """

    available: Decimal = Decimal(0)
    held: Decimal = Decimal(0)
    locked: bool = False

    @property
    def total(self) -> Decimal:
        return self.available + self.held

    def _guard(self, amount: Decimal, limit: Optional[Decimal] = None) -> None:
        if self.locked:
            raise LockedError()
        if amount < 0:
            raise NegativeAmountError()
        if limit is not None and amount > limit:
            raise InsufficientFundsError()

    def deposit(self, amount: Decimal) -> None:
        self._guard(amount)
        self.available += amount

    def withdraw(self, amount: Decimal) -> None:
        self._guard(amount, self.available)
        self.available -= amount

    def hold(self, amount: Decimal) -> None:
        """Move funds from available to held."""
        self._guard(amount, self.available)
        self.available -= amount
        self.held += amount

    def release(self, amount: Decimal) -> None:
        """Move held funds back to available."""
        self._guard(amount, self.held)
        self.held -= amount
        self.available += amount

    def chargeback(self, amount: Decimal) -> None:
        """Remove held funds without returning them to available."""
        self._guard(amount, self.held)
        self.held -= amount

    def lock(self) -> None:
        self.locked = True

    def unlock(self) -> None:
        self.locked = False


class Transaction(BaseModel):
    id: int
    client: int
    # Deposits are stored positive, withdrawals negated
    amount: Decimal
    state: TransactionState


def round_amount(value: Decimal, places: int = DEFAULT_PRECISION) -> Decimal:
    """Round half away from zero to ``places`` decimals and strip trailing zeros."""
    with localcontext() as ctx:
        ctx.prec = max(ctx.prec, value.adjusted() + places + 2)
        rounded = value.quantize(Decimal(1).scaleb(-places), rounding=ROUND_HALF_UP).normalize()
        if rounded == rounded.to_integral_value():
            rounded = rounded.quantize(Decimal(1))
    if not rounded:
        # drop the sign of a negative zero
        return Decimal(0)
    return rounded


class AccountData(BaseModel):
    """Read-only account snapshot used for reporting."""

    model_config = ConfigDict(frozen=True)

    client: int = Field(..., description="Client identifier")
    available: Decimal = Field(..., description="Funds available for withdrawal")
    held: Decimal = Field(..., description="Funds held by open disputes")
    total: Decimal = Field(..., description="Available plus held funds")
    locked: bool = Field(..., description="Whether a chargeback froze the account")

    @classmethod
    def from_account(cls, client: int, account: Account, precision: int = DEFAULT_PRECISION) -> "AccountData":
        return cls(
            client=client,
            available=round_amount(account.available, precision),
            held=round_amount(account.held, precision),
            total=round_amount(account.total, precision),
            locked=account.locked,
        )


class TransactionData(BaseModel):
    model_config = ConfigDict(frozen=True)

    tx: int = Field(..., description="Transaction identifier")
    client: int = Field(..., description="Owning client")
    amount: Decimal = Field(..., description="Signed amount (withdrawals are negative)")
    status: TransactionStatus = Field(..., description="Transaction status")
    reason: Optional[FailureReason] = Field(None, description="Failure reason, if failed")

    @classmethod
    def from_transaction(cls, transaction: Transaction) -> "TransactionData":
        return cls(
            tx=transaction.id,
            client=transaction.client,
            amount=transaction.amount,
            status=transaction.state.status,
            reason=transaction.state.reason,
        )


class ActionResponse(BaseModel):
    status: str = Field("applied", description="Action outcome")
    transaction: TransactionData = Field(..., description="Transaction referenced by the action")
    timestamp: datetime = Field(default_factory=datetime.now, description="Processing timestamp")


class ErrorResponse(BaseModel):
    detail: str = Field(..., description="Error description")
    error_code: str = Field(..., description="Machine-readable error code")
    timestamp: datetime = Field(default_factory=datetime.now, description="Error timestamp")


class HealthResponse(BaseModel):
    status: str = Field(..., description="Service health status")
    timestamp: datetime = Field(default_factory=datetime.now)
    accounts_count: int = Field(..., description="Number of accounts in the ledger")
    transactions_processed: int = Field(..., description="Number of recorded transactions")
