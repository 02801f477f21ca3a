from abc import ABC, abstractmethod
from typing import Dict, Iterator, Optional, Tuple

from models import Account, Transaction


class AccountRepository(ABC):
    @abstractmethod
    def get(self, client_id: int) -> Optional[Account]:
        """Get an account. Returns None if the client has no account."""
        pass

    @abstractmethod
    def get_or_create(self, client_id: int) -> Account:
        """Get an account, creating an empty one on first reference."""
        pass

    @abstractmethod
    def items(self) -> Iterator[Tuple[int, Account]]:
        """Iterate over (client_id, account) pairs in no particular order."""
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of accounts."""
        pass


class TransactionRepository(ABC):
    @abstractmethod
    def get(self, transaction_id: int) -> Optional[Transaction]:
        """Get a recorded transaction by id."""
        pass

    @abstractmethod
    def exists(self, transaction_id: int) -> bool:
        """Check if a transaction id has already been consumed."""
        pass

    @abstractmethod
    def add(self, transaction: Transaction) -> None:
        """Record a new transaction. Ids are never overwritten."""
        pass

    @abstractmethod
    def values(self) -> Iterator[Transaction]:
        pass

    @abstractmethod
    def count(self) -> int:
        """Get total number of recorded transactions."""
        pass


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get(self, client_id: int) -> Optional[Account]:
        return self.accounts.get(client_id)

    def get_or_create(self, client_id: int) -> Account:
        account = self.accounts.get(client_id)
        if account is None:
            account = self.accounts[client_id] = Account()
        return account

    def items(self) -> Iterator[Tuple[int, Account]]:
        return iter(self.accounts.items())

    def count(self) -> int:
        return len(self.accounts)


class InMemoryTransactionRepository(TransactionRepository):
    def __init__(self):
        self.store: Dict[int, Transaction] = {}

    def get(self, transaction_id: int) -> Optional[Transaction]:
        return self.store.get(transaction_id)

    def exists(self, transaction_id: int) -> bool:
        return transaction_id in self.store

    def add(self, transaction: Transaction) -> None:
        if transaction.id in self.store:
            raise ValueError(f"Transaction {transaction.id} already exists")
        self.store[transaction.id] = transaction

    def values(self) -> Iterator[Transaction]:
        return iter(self.store.values())

    def count(self) -> int:
        return len(self.store)

    def clear(self) -> None:
        """Clear all stored transactions (for testing)."""
        self.store.clear()
