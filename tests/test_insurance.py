"""Tests for insurance premium expansion and payment state."""

import pytest
from datetime import date
from decimal import Decimal

from obligations.errors import ValidationError
from obligations.models.insurance import Insurance, PremiumFrequency, PremiumStatus
from obligations.scheduling.premiums import expand_premiums, term_spacing_months


def policy(**overrides) -> Insurance:
    fields = {
        "policy_name": "Term plan",
        "premium_amount": Decimal("10000"),
        "premium_frequency": PremiumFrequency.ANNUAL,
        "start_date": date(2025, 1, 15),
        "policy_term_years": 1,
    }
    fields.update(overrides)
    return Insurance(**fields)


class TestExpandPremiums:
    """Tests for premium term expansion."""

    def test_residue_goes_to_last_term(self):
        """Test that 10000 in three terms sums back to 10000."""
        premiums = expand_premiums(policy(terms_per_period=3))

        assert [p.amount for p in premiums] == [
            Decimal("3333.33"),
            Decimal("3333.33"),
            Decimal("3333.34"),
        ]
        assert sum(p.amount for p in premiums) == Decimal("10000.00")

    def test_terms_are_evenly_spaced(self):
        """Test that three terms of an annual premium are four months apart."""
        premiums = expand_premiums(policy(terms_per_period=3))
        assert [p.due_date for p in premiums] == [
            date(2025, 1, 15),
            date(2025, 5, 15),
            date(2025, 9, 15),
        ]
        assert [p.term_number for p in premiums] == [1, 2, 3]

    def test_due_day_clamped(self):
        """Test that a 31st start date clamps in short months."""
        premiums = expand_premiums(policy(
            premium_amount=Decimal("12000"),
            terms_per_period=12,
            start_date=date(2025, 1, 31),
        ))
        assert premiums[1].due_date == date(2025, 2, 28)
        assert premiums[3].due_date == date(2025, 4, 30)
        assert premiums[2].due_date == date(2025, 3, 31)

    def test_expands_over_payment_term(self):
        """Test a multi-year payment term."""
        premiums = expand_premiums(policy(
            policy_term_years=10,
            premium_payment_term_years=3,
        ))
        assert len(premiums) == 3
        assert [p.period_number for p in premiums] == [1, 2, 3]
        assert [p.period_year for p in premiums] == [2025, 2026, 2027]

    def test_semi_annual_periods(self):
        """Test that a semi-annual premium has two periods a year."""
        premiums = expand_premiums(policy(
            premium_frequency=PremiumFrequency.SEMI_ANNUAL,
            premium_amount=Decimal("6000"),
        ))
        assert [p.due_date for p in premiums] == [date(2025, 1, 15), date(2025, 7, 15)]

    def test_uneven_split_rejected(self):
        """Test that 5 terms cannot split a 12-month period."""
        with pytest.raises(ValueError):
            term_spacing_months(policy(terms_per_period=5))


class TestInsuranceService:
    """Tests for policy creation and premium state."""

    def test_create_policy_persists_premiums(self, insurance_service, storage, bank_account):
        """Test that premiums are stored with the policy."""
        created, premiums = insurance_service.create_policy(policy(
            terms_per_period=4,
            account_id=bank_account.id,
        ))

        assert storage.get_insurance(created.id) is not None
        assert len(insurance_service.premiums(created.id)) == 4
        assert premiums[0].amount == Decimal("2500.00")

    def test_invalid_policy_rejected(self, insurance_service, storage):
        """Test that premiums longer than the policy term are refused."""
        bad = policy(policy_term_years=5, premium_payment_term_years=10)
        with pytest.raises(ValidationError):
            insurance_service.create_policy(bad)
        assert storage.get_insurance(bad.id) is None

    def test_mark_and_unmark_premium(self, insurance_service, bank_account):
        """Test the premium payment round trip."""
        _, premiums = insurance_service.create_policy(policy(account_id=bank_account.id))
        premium = premiums[0]

        paid = insurance_service.mark_premium_paid(premium.id, date(2025, 1, 14))
        assert paid.status == PremiumStatus.PAID
        assert paid.paid_amount == Decimal("10000.00")
        assert paid.paid_date == date(2025, 1, 14)

        unpaid = insurance_service.unmark_premium_paid(premium.id)
        assert unpaid.status == PremiumStatus.PENDING
        assert unpaid.paid_date is None
        assert unpaid.paid_amount is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
