"""
Amortization Calculator Module

Pure functions for loan repayment math: periodic rates, period counts,
the level (annuity) payment, and the flat-rate interest figures.
All arithmetic is Decimal; results are Money rounded to the currency's
minor unit.
"""

from decimal import Decimal, ROUND_HALF_UP
from dataclasses import dataclass
from enum import Enum
from typing import List

from .money import Money, to_decimal
from .exceptions import ValidationError


MONTHS_PER_YEAR = Decimal('12')
WEEKS_PER_YEAR = Decimal('52')
WEEKS_PER_MONTH = Decimal('4.33')   # Amortizing weekly conversion
FLAT_WEEKS_PER_MONTH = 4            # Flat-rate weekly conversion
MAX_TERM_MONTHS = 600               # 50 years; keeps every due date inside the calendar


class RepaymentMode(Enum):
    """Repayment cadence"""
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class ScheduleStrategy(Enum):
    """How installment amounts are derived from the loan terms"""
    FLAT_RATE = "flat_rate"      # Simple interest on the full principal, equal installments
    AMORTIZING = "amortizing"    # Level annuity payment, interest on declining balance


def validate_terms(principal: Decimal, annual_interest_rate: Decimal, term_months: int) -> List[str]:
    """Return a list of problems with the loan terms (empty when valid)"""
    problems = []
    if principal is None or principal <= Decimal('0'):
        problems.append("loan_amount must be greater than zero")
    if term_months is None or term_months <= 0:
        problems.append("term_months must be greater than zero")
    elif term_months > MAX_TERM_MONTHS:
        problems.append(f"term_months must not exceed {MAX_TERM_MONTHS}")
    if annual_interest_rate is None or annual_interest_rate < Decimal('0'):
        problems.append("interest_rate must not be negative")
    return problems


@dataclass(frozen=True)
class LoanTerms:
    """Loan terms as agreed on the application"""
    principal: Money
    annual_interest_rate: Decimal   # Percent, e.g. Decimal('12') for 12% a year
    term_months: int
    repayment_mode: RepaymentMode

    def __post_init__(self):
        object.__setattr__(self, 'annual_interest_rate', to_decimal(self.annual_interest_rate))
        problems = validate_terms(self.principal.amount, self.annual_interest_rate, self.term_months)
        if problems:
            raise ValidationError("Invalid loan terms", problems)

    @property
    def currency(self):
        return self.principal.currency


def periodic_rate(annual_interest_rate: Decimal, mode: RepaymentMode) -> Decimal:
    """Interest rate per repayment period as a fraction"""
    periods_per_year = WEEKS_PER_YEAR if mode == RepaymentMode.WEEKLY else MONTHS_PER_YEAR
    return to_decimal(annual_interest_rate) / Decimal('100') / periods_per_year


def amortizing_periods(term_months: int, mode: RepaymentMode,
                       weeks_per_month: Decimal = WEEKS_PER_MONTH) -> int:
    """Number of periods for an amortizing schedule; weeks are rounded half up"""
    if mode == RepaymentMode.MONTHLY:
        return term_months
    weeks = (Decimal(term_months) * to_decimal(weeks_per_month)).quantize(Decimal('1'), rounding=ROUND_HALF_UP)
    return int(weeks)


def flat_periods(term_months: int, mode: RepaymentMode) -> int:
    """Number of periods for a flat-rate schedule"""
    if mode == RepaymentMode.WEEKLY:
        return term_months * FLAT_WEEKS_PER_MONTH
    return term_months


def annuity_payment(principal: Money, rate: Decimal, periods: int) -> Money:
    """
    Level payment that retires ``principal`` over ``periods`` at ``rate`` per period.

    payment = P * i * (1+i)^n / ((1+i)^n - 1), or P / n when i is zero.
    """
    if periods <= 0:
        raise ValidationError("Invalid loan terms", ["number of periods must be greater than zero"])

    if rate == Decimal('0'):
        return principal / Decimal(periods)

    factor = (Decimal('1') + rate) ** periods
    payment = principal.amount * rate * factor / (factor - Decimal('1'))
    return Money(payment, principal.currency)


def level_payment(terms: LoanTerms, weeks_per_month: Decimal = WEEKS_PER_MONTH) -> Money:
    """Per-period level payment for the loan's cadence"""
    rate = periodic_rate(terms.annual_interest_rate, terms.repayment_mode)
    periods = amortizing_periods(terms.term_months, terms.repayment_mode, weeks_per_month)
    return annuity_payment(terms.principal, rate, periods)


def period_interest(balance: Money, rate: Decimal) -> Money:
    """Interest accrued on an outstanding balance for one period"""
    return balance * rate


def flat_total_interest(terms: LoanTerms) -> Money:
    """Total flat-rate interest: P * r * n / 100"""
    return terms.principal * (terms.annual_interest_rate * Decimal(terms.term_months) / Decimal('100'))


def flat_period_amount(terms: LoanTerms) -> Money:
    """Equal flat-rate installment: (P + total interest) / periods"""
    total = terms.principal + flat_total_interest(terms)
    return total / Decimal(flat_periods(terms.term_months, terms.repayment_mode))
