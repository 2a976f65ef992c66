import pytest
from decimal import Decimal
from unittest.mock import patch

from exceptions import AmountOverflowError
from models import DisputeState
from services import Ledger, get_ledger, replay
from records import account_of, chargeback, deposit, dispute, resolve, withdrawal


class TestDeposits:
    """Test deposits and lazy account creation."""

    def test_deposit_credits_available(self, ledger):
        """Deposit increases available and total."""
        ledger.apply(deposit(1, 1, "1.23"))

        account = account_of(ledger, 1)
        assert account.available == Decimal("1.23")
        assert account.held == Decimal("0")
        assert account.total == Decimal("1.23")
        assert account.locked is False

    def test_four_decimal_precision(self, ledger):
        """Deposit of 1.2345 is kept exactly."""
        ledger.apply(deposit(1, 1, "1.2345"))

        account = account_of(ledger, 1)
        assert str(account.available) == "1.2345"
        assert account.held == 0
        assert str(account.total) == "1.2345"
        assert account.locked is False

    def test_duplicate_deposit_ignored(self, ledger):
        """A second deposit reusing a tx id changes nothing."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(deposit(1, 1, "999"))

        assert account_of(ledger, 1).available == Decimal("10")
        assert ledger.transaction_repo.get(1).amount == Decimal("10")

    def test_zero_deposit_allowed(self, ledger):
        """A zero deposit is recorded but has no effect on balances."""
        ledger.apply(deposit(1, 1, "5"))
        ledger.apply(deposit(1, 2, "0"))

        assert account_of(ledger, 1).total == Decimal("5")
        assert ledger.transaction_repo.contains(2)

    def test_account_created_by_any_record(self, ledger):
        """Even an ignored dispute opens an empty account for its client."""
        ledger.apply(dispute(7, 42))

        account = account_of(ledger, 7)
        assert account.available == 0
        assert account.held == 0
        assert account.total == 0
        assert account.locked is False


class TestWithdrawals:
    """Test withdrawals and insufficient funds."""

    def test_withdrawal_debits_available(self, ledger):
        """Withdrawal reduces available and total."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(withdrawal(1, 2, "3.5"))

        account = account_of(ledger, 1)
        assert account.available == Decimal("6.5")
        assert account.total == Decimal("6.5")

    def test_withdraw_entire_balance(self, ledger):
        """Withdrawing exactly the available amount is allowed."""
        ledger.apply(deposit(1, 1, "1.23"))
        ledger.apply(withdrawal(1, 2, "1.23"))

        assert account_of(ledger, 1).available == 0

    def test_insufficient_funds_ignored(self, ledger):
        """Client with 5 available cannot withdraw 10."""
        ledger.apply(deposit(1, 1, "5"))
        before = ledger.snapshot()

        ledger.apply(withdrawal(1, 2, "10"))

        assert ledger.snapshot() == before
        assert account_of(ledger, 1).available == Decimal("5")
        assert not ledger.transaction_repo.contains(2)

    def test_withdrawal_from_new_account_ignored(self, ledger):
        """Withdrawal on an empty account leaves it at zero."""
        ledger.apply(withdrawal(3, 1, "0.0001"))

        assert account_of(ledger, 3).available == 0
        assert not ledger.transaction_repo.contains(1)

    def test_duplicate_withdrawal_ignored(self, ledger):
        """A withdrawal reusing a retained tx id changes nothing."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(withdrawal(1, 1, "4"))

        assert account_of(ledger, 1).available == Decimal("10")


class TestDisputes:
    """Test the dispute transition."""

    def test_dispute_holds_funds(self, ledger):
        """Dispute moves the amount from available to held."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(1, 1))

        account = account_of(ledger, 1)
        assert account.available == 0
        assert account.held == Decimal("10")
        assert account.total == Decimal("10")
        assert account.locked is False
        assert ledger.transaction_repo.get(1).disputed

    def test_dispute_unknown_tx_ignored(self, ledger):
        """Disputing tx 999 that was never seen changes nothing."""
        ledger.apply(deposit(1, 1, "10"))
        before = ledger.snapshot()

        ledger.apply(dispute(1, 999))

        assert ledger.snapshot() == before
        account = account_of(ledger, 1)
        assert account.available == Decimal("10")
        assert account.held == 0
        assert account.locked is False

    def test_dispute_other_client_tx_ignored(self, ledger):
        """A client cannot dispute another client's transaction."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(2, 1))

        assert account_of(ledger, 1).held == 0
        assert account_of(ledger, 2).held == 0
        assert not ledger.transaction_repo.get(1).disputed

    def test_dispute_already_disputed_ignored(self, ledger):
        """No re-entrant disputes."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(1, 1))
        before = ledger.snapshot()

        ledger.apply(dispute(1, 1))

        assert ledger.snapshot() == before

    def test_dispute_withdrawal_holds_like_deposit(self, ledger):
        """A disputed withdrawal is held the same way a deposit is."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(withdrawal(1, 2, "4"))
        ledger.apply(dispute(1, 2))

        account = account_of(ledger, 1)
        assert account.available == Decimal("2")
        assert account.held == Decimal("4")
        assert account.total == Decimal("6")

    def test_dispute_may_drive_available_negative(self, ledger):
        """Funds already withdrawn can still be held by a dispute."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(withdrawal(1, 2, "8"))
        ledger.apply(dispute(1, 1))

        account = account_of(ledger, 1)
        assert account.available == Decimal("-8")
        assert account.held == Decimal("10")
        assert account.total == Decimal("2")


class TestResolves:
    """Test the resolve transition."""

    def test_resolve_releases_funds(self, ledger):
        """Dispute then resolve restores the pre-dispute balances exactly."""
        ledger.apply(deposit(1, 1, "1.2345"))
        ledger.apply(deposit(1, 2, "0.0001"))
        before = account_of(ledger, 1)

        ledger.apply(dispute(1, 1))
        ledger.apply(resolve(1, 1))

        after = account_of(ledger, 1)
        assert after.available == before.available
        assert after.held == before.held
        assert after.total == before.total
        assert after.locked is False
        assert ledger.transaction_repo.get(1).state == DisputeState.open

    def test_resolved_tx_can_be_disputed_again(self, ledger):
        """Resolve returns the transaction to open."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(1, 1))
        ledger.apply(resolve(1, 1))
        ledger.apply(dispute(1, 1))

        assert account_of(ledger, 1).held == Decimal("10")

    def test_resolve_undisputed_ignored(self, ledger):
        """Resolve against an open transaction changes nothing."""
        ledger.apply(deposit(1, 1, "10"))
        before = ledger.snapshot()

        ledger.apply(resolve(1, 1))

        assert ledger.snapshot() == before

    def test_resolve_unknown_tx_ignored(self, ledger):
        ledger.apply(deposit(1, 1, "10"))
        before = ledger.snapshot()

        ledger.apply(resolve(1, 2))

        assert ledger.snapshot() == before

    def test_resolve_other_client_ignored(self, ledger):
        """Resolve must come from the owning client."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(1, 1))

        ledger.apply(resolve(2, 1))

        assert account_of(ledger, 1).held == Decimal("10")
        assert ledger.transaction_repo.get(1).disputed


class TestChargebacks:
    """Test the chargeback transition."""

    def test_chargeback_removes_held_and_locks(self, ledger):
        """Chargeback takes the held amount away for good."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(1, 1))
        ledger.apply(chargeback(1, 1))

        account = account_of(ledger, 1)
        assert account.available == 0
        assert account.held == 0
        assert account.total == 0
        assert account.locked is True
        assert ledger.transaction_repo.get(1).state == DisputeState.charged_back

    def test_chargeback_among_two_open_transactions(self, ledger):
        """Only the disputed transaction is charged back."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(deposit(1, 2, "5"))
        ledger.apply(dispute(1, 1))
        ledger.apply(chargeback(1, 1))

        account = account_of(ledger, 1)
        assert account.available == Decimal("5")
        assert account.held == 0
        assert account.total == Decimal("5")
        assert account.locked is True

        # tx 2 is untouched and can still be disputed
        ledger.apply(dispute(1, 2))
        account = account_of(ledger, 1)
        assert account.available == 0
        assert account.held == Decimal("5")

    def test_chargeback_undisputed_ignored(self, ledger):
        """Chargeback against an open transaction changes nothing."""
        ledger.apply(deposit(1, 1, "10"))
        before = ledger.snapshot()

        ledger.apply(chargeback(1, 1))

        assert ledger.snapshot() == before
        assert account_of(ledger, 1).locked is False

    def test_chargeback_unknown_tx_ignored(self, ledger):
        ledger.apply(chargeback(1, 5))

        assert account_of(ledger, 1).locked is False

    def test_charged_back_tx_is_terminal(self, ledger):
        """Nothing further applies to a charged back transaction."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(deposit(1, 2, "3"))
        ledger.apply(dispute(1, 1))
        ledger.apply(chargeback(1, 1))
        before = ledger.snapshot()

        ledger.apply(dispute(1, 1))
        ledger.apply(resolve(1, 1))
        ledger.apply(chargeback(1, 1))

        assert ledger.snapshot() == before

    def test_locked_account_still_accepts_transactions(self, ledger):
        """Locking is recorded, not enforced."""
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(1, 1))
        ledger.apply(chargeback(1, 1))
        ledger.apply(deposit(1, 2, "2"))

        account = account_of(ledger, 1)
        assert account.available == Decimal("2")
        assert account.locked is True


class TestSnapshotsAndReplay:
    """Test snapshot queries and whole-stream replay."""

    def test_snapshot_one_row_per_client(self, ledger):
        ledger.apply(deposit(1, 1, "1"))
        ledger.apply(deposit(2, 2, "2"))
        ledger.apply(withdrawal(1, 3, "100"))
        ledger.apply(dispute(3, 77))

        assert [snapshot.client for snapshot in ledger.snapshot()] == [1, 2, 3]

    def test_empty_ledger_has_no_accounts(self, ledger):
        assert ledger.snapshot() == []

    def test_apply_all_consumes_generator(self, ledger):
        """Records are consumed lazily, one at a time."""
        def records():
            yield deposit(1, 1, "2")
            yield withdrawal(1, 2, "1.5")

        assert ledger.apply_all(records()) == 2
        assert account_of(ledger, 1).available == Decimal("0.5")

    def test_replay_uses_fresh_ledger(self):
        """Each replay starts from empty state."""
        first = replay([deposit(1, 1, "10")])
        second = replay([deposit(1, 1, "10")])

        assert first == second
        assert first[0].available == Decimal("10")

    def test_get_ledger_returns_new_instances(self):
        assert isinstance(get_ledger(), Ledger)
        assert get_ledger() is not get_ledger()

    def test_replay_aborts_when_balance_exceeds_precision(self):
        """A balance needing more than 34 significant digits aborts instead of rounding."""
        records = [deposit(1, 1, "1" + "0" * 30), deposit(1, 2, "0.0001")]

        with pytest.raises(AmountOverflowError) as exc_info:
            replay(records)

        assert "cannot be represented exactly" in str(exc_info.value)

    def test_overflow_leaves_balance_untouched(self, ledger):
        ledger.apply(deposit(1, 1, "1" + "0" * 30))

        with pytest.raises(AmountOverflowError):
            ledger.apply(deposit(1, 2, "0.0001"))

        assert account_of(ledger, 1).available == Decimal("1" + "0" * 30)
        assert not ledger.transaction_repo.contains(2)


class TestLogging:
    """Test that ignored transactions are logged, not raised."""

    @patch('services.logger')
    def test_ignored_transaction_logged(self, mock_logger, ledger):
        ledger.apply(withdrawal(1, 1, "10"))

        mock_logger.info.assert_called_once()
        _, kwargs = mock_logger.info.call_args
        assert kwargs["reason"] == "insufficient funds"
        assert kwargs["type"] == "withdrawal"
        assert kwargs["tx"] == 1

    @patch('services.logger')
    def test_foreign_dispute_reports_owner(self, mock_logger, ledger):
        ledger.apply(deposit(1, 1, "10"))
        ledger.apply(dispute(2, 1))

        _, kwargs = mock_logger.info.call_args
        assert kwargs["reason"] == "transaction belongs to another client"
        assert kwargs["owner"] == 1

    @patch('services.logger')
    def test_applied_deposit_not_reported_as_ignored(self, mock_logger, ledger):
        ledger.apply(deposit(1, 1, "10"))

        mock_logger.info.assert_not_called()
        mock_logger.debug.assert_called()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
