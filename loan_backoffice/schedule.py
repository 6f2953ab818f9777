"""
Repayment Schedule Module

Builds the ordered installment list for a loan from its terms and an anchor
date. A generator is bound to one strategy, and the same generator instance
produces both persisted schedules and previews, so the two never disagree.
"""

from decimal import Decimal
from datetime import date, timedelta
from dataclasses import dataclass
from typing import List
import calendar

from .money import Money, to_decimal
from .amortization import (
    LoanTerms, RepaymentMode, ScheduleStrategy, WEEKS_PER_MONTH,
    periodic_rate, amortizing_periods, flat_periods, level_payment,
    period_interest, flat_total_interest, flat_period_amount
)


@dataclass(frozen=True)
class ScheduledInstallment:
    """Single row of a repayment schedule"""
    sequence: int
    due_date: date
    amount: Money
    principal_component: Money
    interest_component: Money
    running_balance: Money       # Principal still outstanding after this installment


@dataclass(frozen=True)
class ScheduleQuote:
    """Headline figures of a schedule"""
    strategy: ScheduleStrategy
    periods: int
    installment_amount: Money    # Amount of the first installment
    total_interest: Money
    total_repayment: Money


def add_months(start_date: date, months: int) -> date:
    """Add months to a date, clamping the day to the end of the target month"""
    month = start_date.month - 1 + months
    year = start_date.year + month // 12
    month = month % 12 + 1
    day = min(start_date.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def due_date_for(anchor_date: date, sequence: int, mode: RepaymentMode) -> date:
    """
    Due date of the ``sequence``-th installment (1-indexed).

    Offsets are always taken from the anchor, never chained from the previous
    due date, so a month-end anchor does not drift.
    """
    if mode == RepaymentMode.WEEKLY:
        return anchor_date + timedelta(days=7 * sequence)
    return add_months(anchor_date, sequence)


class RepaymentScheduleGenerator:
    """
    Generates repayment schedules with a single canonical strategy
    """

    def __init__(self, strategy: ScheduleStrategy = ScheduleStrategy.FLAT_RATE,
                 weeks_per_month: Decimal = WEEKS_PER_MONTH):
        self.strategy = strategy
        self.weeks_per_month = to_decimal(weeks_per_month)

    def generate(self, terms: LoanTerms, anchor_date: date) -> List[ScheduledInstallment]:
        """
        Generate the full schedule

        Args:
            terms: Loan terms
            anchor_date: Date the schedule is counted from (approval date for
                persisted schedules)

        Returns:
            Installments ordered by sequence with strictly increasing due dates
        """
        if self.strategy == ScheduleStrategy.AMORTIZING:
            return self._generate_amortizing(terms, anchor_date)
        return self._generate_flat_rate(terms, anchor_date)

    def quote(self, terms: LoanTerms, anchor_date: date) -> ScheduleQuote:
        """Summarize the schedule the loan would get"""
        schedule = self.generate(terms, anchor_date)
        currency = terms.currency
        total_interest = Money.sum((row.interest_component for row in schedule), currency)
        return ScheduleQuote(
            strategy=self.strategy,
            periods=len(schedule),
            installment_amount=schedule[0].amount,
            total_interest=total_interest,
            total_repayment=terms.principal + total_interest
        )

    def _generate_flat_rate(self, terms: LoanTerms, anchor_date: date) -> List[ScheduledInstallment]:
        """Equal installments of (principal + flat interest) / periods"""
        periods = flat_periods(terms.term_months, terms.repayment_mode)
        total_interest = flat_total_interest(terms)
        installment = flat_period_amount(terms)
        principal_share = terms.principal / Decimal(periods)

        schedule = []
        principal_paid = Money.zero(terms.currency)
        interest_paid = Money.zero(terms.currency)

        for sequence in range(1, periods + 1):
            if sequence == periods:
                # Final installment absorbs the rounding residue
                principal_component = terms.principal - principal_paid
                interest_component = total_interest - interest_paid
            else:
                principal_component = principal_share
                interest_component = installment - principal_share

            principal_paid = principal_paid + principal_component
            interest_paid = interest_paid + interest_component

            schedule.append(ScheduledInstallment(
                sequence=sequence,
                due_date=due_date_for(anchor_date, sequence, terms.repayment_mode),
                amount=principal_component + interest_component,
                principal_component=principal_component,
                interest_component=interest_component,
                running_balance=terms.principal - principal_paid
            ))

        return schedule

    def _generate_amortizing(self, terms: LoanTerms, anchor_date: date) -> List[ScheduledInstallment]:
        """Level payment with interest charged on the declining balance"""
        periods = amortizing_periods(terms.term_months, terms.repayment_mode, self.weeks_per_month)
        rate = periodic_rate(terms.annual_interest_rate, terms.repayment_mode)
        payment = level_payment(terms, self.weeks_per_month)
        zero = Money.zero(terms.currency)

        schedule = []
        balance = terms.principal

        for sequence in range(1, periods + 1):
            interest_component = period_interest(balance, rate)
            principal_component = payment - interest_component

            if sequence == periods or principal_component > balance:
                principal_component = balance
            if principal_component.is_negative():
                principal_component = zero

            balance = balance - principal_component
            if balance.is_negative():
                balance = zero

            schedule.append(ScheduledInstallment(
                sequence=sequence,
                due_date=due_date_for(anchor_date, sequence, terms.repayment_mode),
                amount=principal_component + interest_component,
                principal_component=principal_component,
                interest_component=interest_component,
                running_balance=balance
            ))

        return schedule
