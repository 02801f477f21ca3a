from decimal import Decimal
from typing import Callable, Iterator, Optional
import structlog

from errors import (
    AccountError,
    AccountMissingError,
    ClientMismatchError,
    NoAmountError,
    TransactionMissingError,
    TransactionUsedError,
)
from models import (
    Account,
    AccountData,
    Action,
    ActionKind,
    DEFAULT_PRECISION,
    Transaction,
    TransactionData,
    TransactionState,
)
from repositories import (
    AccountRepository,
    InMemoryAccountRepository,
    InMemoryTransactionRepository,
    TransactionRepository,
)

logger = structlog.get_logger()


class LedgerService:
    """Owns every account and transaction and applies actions to them one at a time."""

    def __init__(
        self,
        account_repo: Optional[AccountRepository] = None,
        transaction_repo: Optional[TransactionRepository] = None,
        precision: int = DEFAULT_PRECISION,
    ):
        self.account_repo = account_repo if account_repo is not None else InMemoryAccountRepository()
        self.transaction_repo = (
            transaction_repo if transaction_repo is not None else InMemoryTransactionRepository()
        )
        self.precision = precision

    def apply(self, action: Action) -> TransactionData:
        """Apply a single action.

        Raises an ``UpdateError`` when the action is structurally invalid, in
        which case nothing was changed. Failed arithmetic is not raised; it is
        recorded on the transaction state. Returns the transaction the action
        created or referenced, as a snapshot.
        """
        handlers = {
            ActionKind.deposit: self._apply_deposit,
            ActionKind.withdrawal: self._apply_withdrawal,
            ActionKind.dispute: self._apply_dispute,
            ActionKind.resolve: self._apply_resolve,
            ActionKind.chargeback: self._apply_chargeback,
        }
        transaction = handlers[action.kind](action)

        logger.debug(
            "Action applied",
            kind=action.kind.value,
            tx=action.transaction_id,
            client=action.client_id,
            status=transaction.state.status.value,
            reason=transaction.state.reason.value if transaction.state.reason else None,
        )
        return TransactionData.from_transaction(transaction)

    def _record(
        self,
        action: Action,
        operation: Callable[[Account, Decimal], None],
        stored_amount: Callable[[Decimal], Decimal],
    ) -> Transaction:
        if action.amount is None:
            raise NoAmountError(action.transaction_id)
        if self.transaction_repo.exists(action.transaction_id):
            raise TransactionUsedError(action.transaction_id)

        account = self.account_repo.get_or_create(action.client_id)
        state = self._attempt(lambda: operation(account, action.amount), TransactionState.succeeded())

        # Recorded even when the operation failed so the id stays consumed
        transaction = Transaction(
            id=action.transaction_id,
            client=action.client_id,
            amount=stored_amount(action.amount),
            state=state,
        )
        self.transaction_repo.add(transaction)
        return transaction

    def _apply_deposit(self, action: Action) -> Transaction:
        return self._record(action, Account.deposit, lambda amount: amount)

    def _apply_withdrawal(self, action: Action) -> Transaction:
        # A withdrawal from an unknown client fails on a fresh zero-balance account
        return self._record(action, Account.withdraw, lambda amount: -amount)

    def _apply_dispute(self, action: Action) -> Transaction:
        transaction = self._get_transaction(action)
        account = self._get_account(action, transaction)

        # Only deposits are stored with a positive amount; disputing a withdrawal does nothing
        if transaction.amount > 0:
            transaction.state = self._attempt(
                lambda: account.hold(transaction.amount), TransactionState.disputed()
            )
        return transaction

    def _apply_resolve(self, action: Action) -> Transaction:
        transaction = self._get_transaction(action)
        if not transaction.state.is_disputed:
            return transaction

        account = self._get_account(action, transaction)
        transaction.state = self._attempt(
            lambda: account.release(transaction.amount), TransactionState.succeeded()
        )
        return transaction

    def _apply_chargeback(self, action: Action) -> Transaction:
        transaction = self._get_transaction(action)
        if not transaction.state.is_disputed:
            return transaction

        account = self._get_account(action, transaction)
        transaction.state = self._attempt(
            lambda: account.chargeback(transaction.amount), TransactionState.cancelled()
        )
        account.lock()

        logger.info(
            "Account locked by chargeback",
            client=action.client_id,
            tx=action.transaction_id,
            status=transaction.state.status.value,
        )
        return transaction

    def _get_transaction(self, action: Action) -> Transaction:
        transaction = self.transaction_repo.get(action.transaction_id)
        if transaction is None:
            raise TransactionMissingError(action.transaction_id)
        return transaction

    def _get_account(self, action: Action, transaction: Transaction) -> Account:
        if action.client_id != transaction.client:
            raise ClientMismatchError(action.client_id, transaction.client)
        account = self.account_repo.get(action.client_id)
        if account is None:
            raise AccountMissingError(action.client_id)
        return account

    @staticmethod
    def _attempt(operation: Callable[[], None], on_success: TransactionState) -> TransactionState:
        try:
            operation()
        except AccountError as e:
            return TransactionState.failed(e.reason)
        return on_success

    def accounts(self) -> Iterator[AccountData]:
        """Snapshot every account, in no particular order."""
        for client_id, account in self.account_repo.items():
            yield AccountData.from_account(client_id, account, self.precision)

    def failed_transactions(self) -> Iterator[TransactionData]:
        for transaction in self.transaction_repo.values():
            if transaction.state.is_failed:
                yield TransactionData.from_transaction(transaction)

    def transaction(self, transaction_id: int) -> Optional[TransactionData]:
        transaction = self.transaction_repo.get(transaction_id)
        if transaction is None:
            return None
        return TransactionData.from_transaction(transaction)

    def accounts_count(self) -> int:
        return self.account_repo.count()

    def transactions_count(self) -> int:
        return self.transaction_repo.count()
