from typing import Iterable, List, Optional

import structlog

import amounts
from models import (
    Account,
    AccountSnapshot,
    DisputeAction,
    DisputeState,
    FundsTransaction,
    StoredTransaction,
    TransactionRecord,
    TransactionType,
)
from repositories import (
    AccountRepository,
    InMemoryAccountRepository,
    InMemoryTransactionRepository,
    TransactionRepository,
)

logger = structlog.get_logger()


class Ledger:
    """Folds transaction records into client account balances.

    Business-rule violations (insufficient funds, unknown or foreign
    transaction ids, wrong dispute state) are ignored: the record leaves no
    trace in the ledger beyond opening the client's account. Only
    structural errors raised while decoding records abort a replay.
    """

    def __init__(
        self,
        account_repo: Optional[AccountRepository] = None,
        transaction_repo: Optional[TransactionRepository] = None,
    ):
        self.account_repo = account_repo or InMemoryAccountRepository()
        self.transaction_repo = transaction_repo or InMemoryTransactionRepository()

    def apply(self, record: TransactionRecord) -> None:
        account = self.account_repo.get_or_create(record.client)

        if record.type == TransactionType.deposit:
            self._deposit(account, record)
        elif record.type == TransactionType.withdrawal:
            self._withdraw(account, record)
        elif record.type == TransactionType.dispute:
            self._dispute(account, record)
        elif record.type == TransactionType.resolve:
            self._resolve(account, record)
        elif record.type == TransactionType.chargeback:
            self._chargeback(account, record)

    def apply_all(self, records: Iterable[TransactionRecord]) -> int:
        """Apply records one at a time in the order received. Returns the count."""
        applied = 0
        for record in records:
            self.apply(record)
            applied += 1
        return applied

    def snapshot(self) -> List[AccountSnapshot]:
        return [account.snapshot() for account in self.account_repo.all()]

    def _deposit(self, account: Account, record: FundsTransaction) -> None:
        if self.transaction_repo.contains(record.tx):
            self._ignore(record, "duplicate transaction id")
            return

        account.available = amounts.add(account.available, record.amount)
        self._retain(record)

        logger.debug(
            "Deposit applied",
            client=record.client,
            tx=record.tx,
            amount=str(record.amount),
            available=str(account.available)
        )

    def _withdraw(self, account: Account, record: FundsTransaction) -> None:
        if self.transaction_repo.contains(record.tx):
            self._ignore(record, "duplicate transaction id")
            return

        remaining = amounts.subtract(account.available, record.amount)
        if remaining < amounts.ZERO:
            self._ignore(record, "insufficient funds", available=str(account.available))
            return

        account.available = remaining
        self._retain(record)

        logger.debug(
            "Withdrawal applied",
            client=record.client,
            tx=record.tx,
            amount=str(record.amount),
            available=str(account.available)
        )

    def _dispute(self, account: Account, record: DisputeAction) -> None:
        disputed_tx = self._lookup(record)
        if disputed_tx is None:
            return

        if disputed_tx.state != DisputeState.open:
            self._ignore(record, f"transaction is {disputed_tx.state.value}")
            return

        # Withdrawals are held the same way as deposits.
        disputed_tx.state = DisputeState.disputed
        account.available = amounts.subtract(account.available, disputed_tx.amount)
        account.held = amounts.add(account.held, disputed_tx.amount)

        logger.debug(
            "Dispute opened",
            client=record.client,
            tx=record.tx,
            disputed_type=disputed_tx.type.value,
            amount=str(disputed_tx.amount)
        )

    def _resolve(self, account: Account, record: DisputeAction) -> None:
        disputed_tx = self._lookup(record)
        if disputed_tx is None:
            return

        if not disputed_tx.disputed:
            self._ignore(record, "transaction is not disputed")
            return

        disputed_tx.state = DisputeState.open
        account.held = amounts.subtract(account.held, disputed_tx.amount)
        account.available = amounts.add(account.available, disputed_tx.amount)

        logger.debug("Dispute resolved", client=record.client, tx=record.tx, amount=str(disputed_tx.amount))

    def _chargeback(self, account: Account, record: DisputeAction) -> None:
        disputed_tx = self._lookup(record)
        if disputed_tx is None:
            return

        if not disputed_tx.disputed:
            self._ignore(record, "transaction is not disputed")
            return

        disputed_tx.state = DisputeState.charged_back
        account.held = amounts.subtract(account.held, disputed_tx.amount)
        account.locked = True

        logger.info(
            "Chargeback applied, account locked",
            client=record.client,
            tx=record.tx,
            amount=str(disputed_tx.amount)
        )

    def _lookup(self, record: DisputeAction) -> Optional[StoredTransaction]:
        """Find the transaction a dispute action refers to, or None if it must be ignored."""
        stored = self.transaction_repo.get(record.tx)
        if stored is None:
            self._ignore(record, "transaction not found")
            return None

        if stored.client != record.client:
            self._ignore(record, "transaction belongs to another client", owner=stored.client)
            return None

        return stored

    def _retain(self, record: FundsTransaction) -> None:
        self.transaction_repo.add(
            record.tx,
            StoredTransaction(client=record.client, type=record.type, amount=record.amount)
        )

    def _ignore(self, record: TransactionRecord, reason: str, **details) -> None:
        logger.info(
            "Transaction ignored",
            reason=reason,
            type=TransactionType(record.type).value,
            client=record.client,
            tx=record.tx,
            **details
        )


def replay(records: Iterable[TransactionRecord]) -> List[AccountSnapshot]:
    """Replay a record stream into a fresh ledger and return the final accounts."""
    ledger = get_ledger()
    applied = ledger.apply_all(records)
    logger.info(
        "Replay completed",
        records=applied,
        accounts=ledger.account_repo.count(),
        transactions=ledger.transaction_repo.count()
    )
    return ledger.snapshot()


# Factory function, one ledger per run
def get_ledger(
    account_repo: Optional[AccountRepository] = None,
    transaction_repo: Optional[TransactionRepository] = None
) -> Ledger:
    return Ledger(account_repo, transaction_repo)
