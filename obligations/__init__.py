"""
Obligation Tracker - Source Package

Scheduling and reconciliation engine for recurring personal-finance
obligations: scheduled payments, loan EMIs, insurance premiums,
credit-card statements and salary paydays.

DESIGN PRINCIPLES:
1. Rules are data, due dates are computed
2. Generation is idempotent - the (source, month, year) key is canonical
3. A payment and its ledger side effects move together or not at all
4. Fail early, fail visibly - never coerce a malformed rule
5. Every state change is auditable
6. Storage layer is swappable
"""

__version__ = "1.0.0"
__author__ = "Obligation Tracker Team"
