from abc import ABC, abstractmethod
from typing import Dict, Iterator, Optional

from models import Account, StoredTransaction


class AccountRepository(ABC):
    @abstractmethod
    def get_or_create(self, client_id: int) -> Account:
        """Get the client's account, opening an empty one on first reference."""
        pass

    @abstractmethod
    def all(self) -> Iterator[Account]:
        """Iterate accounts in the order their clients were first seen."""
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class TransactionRepository(ABC):
    @abstractmethod
    def get(self, tx_id: int) -> Optional[StoredTransaction]:
        """Get retained transaction by id."""
        pass

    @abstractmethod
    def add(self, tx_id: int, transaction: StoredTransaction) -> None:
        """Retain a deposit or withdrawal. The id must not be retained already."""
        pass

    @abstractmethod
    def contains(self, tx_id: int) -> bool:
        pass

    @abstractmethod
    def count(self) -> int:
        pass


class InMemoryAccountRepository(AccountRepository):
    def __init__(self):
        self.accounts: Dict[int, Account] = {}

    def get_or_create(self, client_id: int) -> Account:
        account = self.accounts.get(client_id)
        if account is None:
            account = self.accounts[client_id] = Account(client=client_id)
        return account

    def all(self) -> Iterator[Account]:
        return iter(self.accounts.values())

    def count(self) -> int:
        return len(self.accounts)


class InMemoryTransactionRepository(TransactionRepository):
    def __init__(self):
        self.transactions: Dict[int, StoredTransaction] = {}

    def get(self, tx_id: int) -> Optional[StoredTransaction]:
        return self.transactions.get(tx_id)

    def add(self, tx_id: int, transaction: StoredTransaction) -> None:
        if tx_id in self.transactions:
            raise ValueError(f"Transaction {tx_id} is already retained")
        self.transactions[tx_id] = transaction

    def contains(self, tx_id: int) -> bool:
        return tx_id in self.transactions

    def count(self) -> int:
        return len(self.transactions)
