"""Tests for salary cycles and salary credits."""

import pytest
from datetime import date
from decimal import Decimal

from obligations.audit import AuditLogger
from obligations.engine import SalaryService
from obligations.errors import ReconciliationError, SalaryProfileRequired, ValidationError
from obligations.models.audit import AuditEventType
from obligations.models.ledger import Account, LinkRef, TransactionType
from obligations.models.salary import PaydayRule, SalaryProfile
from obligations.services.storage import InMemoryStorage, StaleStateError, StorageError
from obligations.validation import RecurrenceValidator


class FailingLedgerStorage(InMemoryStorage):
    """In-memory storage whose balance updates or deletes can be made to fail."""

    def __init__(self):
        super().__init__()
        self.fail_balance = False
        self.fail_delete = False

    def adjust_account_balance(self, account_id, delta):
        if self.fail_balance:
            raise StorageError("balance service unavailable")
        return super().adjust_account_balance(account_id, delta)

    def delete_transaction(self, transaction_id):
        if self.fail_delete:
            raise StorageError("transactions sheet unavailable")
        return super().delete_transaction(transaction_id)


@pytest.fixture
def flaky_storage():
    return FailingLedgerStorage()


@pytest.fixture
def flaky_account(flaky_storage):
    account = flaky_storage.create_account(Account(name="HDFC Savings", balance=Decimal("10000.00")))
    flaky_storage.save_profile(SalaryProfile(
        payday_rule=PaydayRule.LAST_WORKING_DAY,
        monthly_amount=Decimal("85000.00"),
        account_id=account.id,
    ))
    return account


@pytest.fixture
def flaky_salary(flaky_storage, predictor, clock):
    validator = RecurrenceValidator(
        ledger=flaky_storage, salary_storage=flaky_storage, max_custom_interval=60
    )
    return SalaryService(
        flaky_storage, flaky_storage, validator, predictor, AuditLogger(flaky_storage), clock
    )


def balance(storage, account) -> Decimal:
    return storage.get_account(account.id).balance


class TestSalaryProfile:
    """Tests for profile handling and payday lookups."""

    def test_no_profile(self, salary_service):
        """Test the behaviour before a profile is set up."""
        assert salary_service.upcoming_paydays() == []
        with pytest.raises(SalaryProfileRequired):
            salary_service.ensure_cycle(3, 2025)

    def test_invalid_profile_rejected(self, salary_service, bank_account):
        """Test that a fixed-day rule needs its day."""
        with pytest.raises(ValidationError):
            salary_service.save_profile(SalaryProfile(
                payday_rule=PaydayRule.FIXED_DAY,
                account_id=bank_account.id,
            ))

    def test_upcoming_paydays(self, salary_service, salary_profile):
        """Test paydays from the fixed clock."""
        assert salary_service.upcoming_paydays(2) == [date(2025, 3, 31), date(2025, 4, 30)]
        assert salary_service.past_paydays(1) == [date(2025, 2, 28)]

    def test_current_cycle_window(self, salary_service, salary_profile):
        """Test the cycle containing 1 March 2025."""
        assert salary_service.current_cycle_window() == (date(2025, 2, 28), date(2025, 3, 30))


class TestSalaryCycles:
    """Tests for credit / uncredit of a month's salary."""

    def test_ensure_cycle_is_stable(self, salary_service, salary_profile):
        """Test that the cycle is created once with its expected payday."""
        cycle = salary_service.ensure_cycle(5, 2025)

        assert cycle.expected_pay_date == date(2025, 5, 30)
        assert cycle.expected_amount == Decimal("85000.00")
        assert not cycle.is_credited
        assert salary_service.ensure_cycle(5, 2025).id == cycle.id

    def test_mark_credited(self, salary_service, storage, bank_account, salary_profile):
        """Test that the credit lands in the account with a linked transaction."""
        result = salary_service.mark_salary_credited(3, 2025)

        assert result.changed is True
        assert result.cycle.is_credited
        assert result.cycle.actual_pay_date == date(2025, 3, 31)
        assert result.cycle.actual_amount == Decimal("85000.00")
        assert storage.get_account(bank_account.id).balance == Decimal("95000.00")

        transaction = storage.find_transaction_by_link_ref(LinkRef(salary_cycle_id=result.cycle.id))
        assert transaction.transaction_type == TransactionType.CREDIT
        assert transaction.id == result.transaction_id

    def test_mark_credited_twice_is_noop(self, salary_service, storage, bank_account, salary_profile):
        """Test that a second credit does not double the balance."""
        salary_service.mark_salary_credited(3, 2025)
        again = salary_service.mark_salary_credited(3, 2025, amount=Decimal("90000"))

        assert again.changed is False
        assert storage.get_account(bank_account.id).balance == Decimal("95000.00")

    def test_actual_amount_and_date(self, salary_service, storage, bank_account, salary_profile):
        """Test an early, smaller credit."""
        result = salary_service.mark_salary_credited(
            3, 2025, pay_date=date(2025, 3, 28), amount=Decimal("84500")
        )
        assert result.cycle.actual_pay_date == date(2025, 3, 28)
        assert storage.get_account(bank_account.id).balance == Decimal("94500.00")

    def test_unmark_credited(self, salary_service, storage, bank_account, salary_profile):
        """Test that uncrediting reverses the balance and transaction."""
        salary_service.mark_salary_credited(3, 2025)
        result = salary_service.unmark_salary_credited(3, 2025)

        assert result.changed is True
        assert result.balance_adjusted is True
        assert not result.cycle.is_credited
        assert storage.get_account(bank_account.id).balance == Decimal("10000.00")
        assert storage.list_transactions() == []

    def test_unmark_with_missing_transaction(self, salary_service, storage, bank_account, salary_profile):
        """Test that a deleted transaction leaves the balance alone."""
        credited = salary_service.mark_salary_credited(3, 2025)
        storage.delete_transaction(credited.transaction_id)

        result = salary_service.unmark_salary_credited(3, 2025)

        assert result.changed is True
        assert result.warnings[0].kind == "missing_transaction"
        assert storage.get_account(bank_account.id).balance == Decimal("95000.00")
        assert not result.cycle.is_credited

    def test_unmark_uncredited_is_noop(self, salary_service, salary_profile):
        """Test that uncrediting a month never credited changes nothing."""
        assert salary_service.unmark_salary_credited(3, 2025).changed is False


class TestSalaryCompensation:
    """Tests that a failed ledger write leaves the cycle and account as they were."""

    def test_failed_credit_is_rolled_back(self, flaky_salary, flaky_storage, flaky_account):
        """Test that a balance failure deletes the credit and releases the cycle."""
        flaky_storage.fail_balance = True
        with pytest.raises(ReconciliationError) as exc_info:
            flaky_salary.mark_salary_credited(3, 2025)

        cycle = flaky_salary.ensure_cycle(3, 2025)
        assert exc_info.value.occurrence_id == cycle.id
        assert isinstance(exc_info.value.__cause__, StorageError)
        assert not cycle.is_credited
        assert cycle.transaction_id is None
        assert flaky_storage.list_transactions() == []
        assert balance(flaky_storage, flaky_account) == Decimal("10000.00")
        types = [e.event_type for e in flaky_storage.get_recent_events()]
        assert AuditEventType.RECONCILIATION_FAILED in types

        flaky_storage.fail_balance = False
        assert flaky_salary.mark_salary_credited(3, 2025).changed
        assert balance(flaky_storage, flaky_account) == Decimal("95000.00")

    def test_failed_delete_leaves_credit_in_place(self, flaky_salary, flaky_storage, flaky_account):
        """Test that the balance is untouched when the transaction cannot be deleted."""
        credited = flaky_salary.mark_salary_credited(3, 2025)
        assert balance(flaky_storage, flaky_account) == Decimal("95000.00")

        flaky_storage.fail_delete = True
        with pytest.raises(ReconciliationError):
            flaky_salary.unmark_salary_credited(3, 2025)

        cycle = flaky_salary.ensure_cycle(3, 2025)
        assert cycle.is_credited
        assert cycle.transaction_id == credited.transaction_id
        transaction = flaky_storage.find_transaction_by_link_ref(LinkRef(salary_cycle_id=cycle.id))
        assert transaction.id == credited.transaction_id
        assert balance(flaky_storage, flaky_account) == Decimal("95000.00")

    def test_failed_balance_after_delete_recreates_credit(
        self, flaky_salary, flaky_storage, flaky_account
    ):
        """Test that a deleted credit comes back when the balance cannot be lowered."""
        flaky_salary.mark_salary_credited(3, 2025)

        flaky_storage.fail_balance = True
        with pytest.raises(ReconciliationError):
            flaky_salary.unmark_salary_credited(3, 2025)

        cycle = flaky_salary.ensure_cycle(3, 2025)
        transaction = flaky_storage.find_transaction_by_link_ref(LinkRef(salary_cycle_id=cycle.id))
        assert cycle.is_credited
        assert transaction is not None
        assert transaction.amount == Decimal("85000.00")
        assert cycle.transaction_id == transaction.id
        assert len(flaky_storage.list_transactions()) == 1
        assert balance(flaky_storage, flaky_account) == Decimal("95000.00")

    def test_stale_cycle_write_is_refused(self, salary_service, storage, salary_profile):
        """Test that a credit claim loses against a cycle already credited."""
        cycle = salary_service.ensure_cycle(3, 2025)
        salary_service.mark_salary_credited(3, 2025)

        with pytest.raises(StaleStateError) as exc_info:
            storage.update_cycle(
                cycle.model_copy(update={"actual_pay_date": date(2025, 3, 28)}),
                expected_credited=False,
            )
        assert exc_info.value.current.actual_pay_date == date(2025, 3, 31)


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
