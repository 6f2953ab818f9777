"""
Loan Back Office

Back-office core for a small lender: loan applications, repayment
schedules, installment tracking and a cash-flow ledger, with Decimal
money math and a hash-chained audit trail.
"""

__version__ = "1.0.0"
