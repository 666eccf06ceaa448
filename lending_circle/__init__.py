"""
Lending Circle Engine

Loan origination, installment schedules, payment allocation and reversal for
community lending groups, with every change mirrored in the group's capital
pool. All financial calculations use Decimal.
"""

__version__ = "1.0.0"
