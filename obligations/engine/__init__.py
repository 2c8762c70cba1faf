"""
Engine Package

Stateful services over storage: generation, reconciliation, forecasting
and the loan / insurance / salary / source lifecycles.
"""

from obligations.engine.forecast import ForecastAggregator
from obligations.engine.generator import OccurrenceGenerator
from obligations.engine.insurance import InsuranceService
from obligations.engine.loans import LoanService
from obligations.engine.reconciliation import ReconciliationEngine
from obligations.engine.salary import SalaryService
from obligations.engine.sources import SourceService

__all__ = [
    "ForecastAggregator",
    "InsuranceService",
    "LoanService",
    "OccurrenceGenerator",
    "ReconciliationEngine",
    "SalaryService",
    "SourceService",
]
