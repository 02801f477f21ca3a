import threading
from typing import Iterable, List, Optional, Tuple

import structlog

from config import ErrorPolicy, get_settings
from errors import UpdateError
from models import AccountData, Action, TransactionData
from services import LedgerService

logger = structlog.get_logger()


class SingleThreadedEngine:
    """Feeds actions into a ledger in the order received.

    A structurally invalid action is handled by ``policy``: ``ignore`` and
    ``log`` leave the ledger unchanged and carry on, ``raise`` propagates the
    ``UpdateError`` to the caller.
    """

    def __init__(self, ledger: Optional[LedgerService] = None, policy: ErrorPolicy = ErrorPolicy.ignore):
        self.ledger = ledger if ledger is not None else LedgerService()
        self.policy = policy
        self.errors: List[UpdateError] = []
        self.processed = 0
        self.rejected = 0

    def process(self, action: Action) -> Optional[TransactionData]:
        try:
            result = self.ledger.apply(action)
        except UpdateError as e:
            self.rejected += 1
            return self._handle_rejection(action, e)
        self.processed += 1
        return result

    def process_all(self, actions: Iterable[Action]) -> None:
        for action in actions:
            self.process(action)

    def _handle_rejection(self, action: Action, error: UpdateError) -> None:
        # Escalation is logged by whoever catches the error
        if self.policy == ErrorPolicy.raise_:
            logger.warning(
                "Action rejected",
                kind=action.kind.value,
                tx=action.transaction_id,
                client=action.client_id,
                error_code=error.error_code,
                error=str(error),
            )
            raise error
        if self.policy == ErrorPolicy.log:
            self.errors.append(error)
            logger.warning(
                "Action rejected",
                kind=action.kind.value,
                tx=action.transaction_id,
                client=action.client_id,
                error_code=error.error_code,
                error=str(error),
            )
        return None

    def accounts(self) -> List[AccountData]:
        return list(self.ledger.accounts())

    def failed_transactions(self) -> List[TransactionData]:
        return list(self.ledger.failed_transactions())

    def transaction(self, transaction_id: int) -> Optional[TransactionData]:
        return self.ledger.transaction(transaction_id)

    def counts(self) -> Tuple[int, int]:
        """Return (accounts, transactions) counts."""
        return self.ledger.accounts_count(), self.ledger.transactions_count()


class MultiThreadedEngine(SingleThreadedEngine):
    """Shared variant for concurrent producers.

    Every call into the ledger is serialized behind one lock that guards the
    whole account and transaction collection.
    """

    def __init__(self, ledger: Optional[LedgerService] = None, policy: ErrorPolicy = ErrorPolicy.ignore):
        super().__init__(ledger, policy)
        self.lock = threading.Lock()

    def process(self, action: Action) -> Optional[TransactionData]:
        with self.lock:
            return super().process(action)

    def accounts(self) -> List[AccountData]:
        with self.lock:
            return super().accounts()

    def failed_transactions(self) -> List[TransactionData]:
        with self.lock:
            return super().failed_transactions()

    def transaction(self, transaction_id: int) -> Optional[TransactionData]:
        with self.lock:
            return super().transaction(transaction_id)

    def counts(self) -> Tuple[int, int]:
        with self.lock:
            return super().counts()


# Shared engine for the HTTP API (in production, use dependency injection)
_engine: Optional[MultiThreadedEngine] = None
_engine_lock = threading.Lock()


def get_engine() -> MultiThreadedEngine:
    global _engine
    with _engine_lock:
        if _engine is None:
            settings = get_settings()
            _engine = MultiThreadedEngine(
                LedgerService(precision=settings.amount_precision),
                policy=ErrorPolicy.raise_,
            )
        return _engine


# For tests
def reset_engine() -> None:
    """Reset the shared engine to an empty ledger (for testing only)."""
    global _engine
    _engine = None
