from enum import Enum
from typing import Optional


class FailureReason(str, Enum):
    locked = "locked"
    insufficient_funds = "insufficient_funds"
    negative_amount = "negative_amount"


class AccountError(Exception):
    """Arithmetic failure on a single account. Recorded on the transaction, never raised out of apply()."""

    reason: FailureReason
    message = "account operation failed"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.message)


class LockedError(AccountError):
    reason = FailureReason.locked
    message = "the account is locked"


class InsufficientFundsError(AccountError):
    reason = FailureReason.insufficient_funds
    message = "there are not enough funds to withdraw"


class NegativeAmountError(AccountError):
    reason = FailureReason.negative_amount
    message = "cannot deposit or withdraw a negative amount"


class UpdateError(Exception):
    """Structural failure of an action: the ledger is left unchanged."""

    error_code = "UPDATE_ERROR"


class TransactionUsedError(UpdateError):
    error_code = "TRANSACTION_USED"

    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__(
            f"A deposit or withdrawal was requested with the same id ({transaction_id}) "
            "as an existing transaction"
        )


class TransactionMissingError(UpdateError):
    error_code = "TRANSACTION_MISSING"

    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__(
            f"An action on an existing transaction was requested but transaction "
            f"{transaction_id} does not exist"
        )


class AccountMissingError(UpdateError):
    error_code = "ACCOUNT_MISSING"

    def __init__(self, client_id: int):
        self.client_id = client_id
        super().__init__(
            f"An action on an existing account was requested but account {client_id} does not exist"
        )


class ClientMismatchError(UpdateError):
    error_code = "CLIENT_MISMATCH"

    def __init__(self, action_client: int, transaction_client: int):
        self.action_client = action_client
        self.transaction_client = transaction_client
        super().__init__(
            "The action and the transaction it points to reference different clients "
            f"(action: {action_client}, transaction: {transaction_client})"
        )


class NoAmountError(UpdateError):
    error_code = "NO_AMOUNT"

    def __init__(self, transaction_id: int):
        self.transaction_id = transaction_id
        super().__init__(f"A deposit or withdrawal was requested with no amount (tx {transaction_id})")


class DecodeError(ValueError):
    """An input record could not be decoded into an Action."""

    def __init__(self, line: int, detail: str):
        self.line = line
        self.detail = detail
        super().__init__(f"line {line}: {detail}")
