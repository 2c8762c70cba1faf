"""
Shared fixtures.

Everything runs against InMemoryStorage and a FixedClock; no test
touches the network or the system date.
"""

from datetime import date
from decimal import Decimal

import pytest

from obligations.audit import AuditLogger
from obligations.engine import (
    ForecastAggregator,
    InsuranceService,
    LoanService,
    OccurrenceGenerator,
    ReconciliationEngine,
    SalaryService,
    SourceService,
)
from obligations.models.ledger import Account, AccountType
from obligations.models.recurrence import DueDateType, Frequency, ScheduledPayment
from obligations.models.salary import PaydayRule, SalaryProfile
from obligations.scheduling import PaydayPredictor
from obligations.services.clock import FixedClock
from obligations.services.storage import InMemoryStorage
from obligations.validation import RecurrenceValidator


@pytest.fixture
def clock():
    return FixedClock(date(2025, 3, 1))


@pytest.fixture
def storage():
    return InMemoryStorage()


@pytest.fixture
def bank_account(storage):
    return storage.create_account(Account(name="HDFC Savings", balance=Decimal("10000.00")))


@pytest.fixture
def card_account(storage):
    return storage.create_account(Account(
        name="ICICI Amazon Pay",
        account_type=AccountType.CREDIT_CARD,
    ))


@pytest.fixture
def salary_profile(storage, bank_account):
    return storage.save_profile(SalaryProfile(
        payday_rule=PaydayRule.LAST_WORKING_DAY,
        monthly_amount=Decimal("85000.00"),
        account_id=bank_account.id,
    ))


@pytest.fixture
def audit_logger(storage):
    return AuditLogger(storage)


@pytest.fixture
def validator(storage):
    return RecurrenceValidator(ledger=storage, salary_storage=storage, max_custom_interval=60)


@pytest.fixture
def predictor(clock):
    return PaydayPredictor(clock)


@pytest.fixture
def generator(storage, audit_logger):
    return OccurrenceGenerator(
        obligations=storage,
        loans=storage,
        insurance=storage,
        salary=storage,
        ledger=storage,
        audit_logger=audit_logger,
        max_custom_interval=60,
    )


@pytest.fixture
def loan_service(storage, validator, audit_logger, clock):
    return LoanService(
        loans=storage,
        obligations=storage,
        ledger=storage,
        validator=validator,
        audit_logger=audit_logger,
        clock=clock,
    )


@pytest.fixture
def insurance_service(storage, validator, audit_logger, clock):
    return InsuranceService(storage, validator, audit_logger, clock)


@pytest.fixture
def salary_service(storage, validator, predictor, audit_logger, clock):
    return SalaryService(storage, storage, validator, predictor, audit_logger, clock)


@pytest.fixture
def source_service(storage, validator, audit_logger):
    return SourceService(storage, validator, audit_logger)


@pytest.fixture
def reconciliation(storage, loan_service, insurance_service, audit_logger):
    return ReconciliationEngine(
        obligations=storage,
        ledger=storage,
        loan_service=loan_service,
        insurance_service=insurance_service,
        audit_logger=audit_logger,
    )


@pytest.fixture
def forecast(storage, generator, predictor, clock):
    return ForecastAggregator(storage, storage, generator, predictor, clock)


@pytest.fixture
def rent(storage, bank_account):
    """Monthly rent of 1500 due on the 5th."""
    return storage.save_source(ScheduledPayment(
        name="Rent",
        account_id=bank_account.id,
        amount=Decimal("1500.00"),
        frequency=Frequency.MONTHLY,
        due_date_type=DueDateType.FIXED_DAY,
        due_day=5,
    ))
