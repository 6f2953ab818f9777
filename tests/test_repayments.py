"""
Test suite for the repayment tracker
"""

import pytest
from decimal import Decimal
from datetime import date, timedelta

from loan_backoffice.money import Money, Currency
from loan_backoffice.storage import InMemoryStorage
from loan_backoffice.audit import AuditTrail, AuditAction
from loan_backoffice.amortization import LoanTerms, RepaymentMode
from loan_backoffice.schedule import RepaymentScheduleGenerator
from loan_backoffice.cash_flow import CashFlowLedger, CashFlowType
from loan_backoffice.repayments import RepaymentTracker, InstallmentStatus
from loan_backoffice.exceptions import NotFoundError, AlreadyPaidError


class TestRepaymentTracker:
    """Test installment persistence and settlement"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.audit_trail = AuditTrail(self.storage)
        self.ledger = CashFlowLedger(self.storage, self.audit_trail, Currency.TZS)
        self.tracker = RepaymentTracker(self.storage, self.ledger, self.audit_trail, Currency.TZS)

        # Application row as the lifecycle stores it
        self.storage.save("loan_applications", 1, {
            "id": 1,
            "applicant_name": "Asha Mwinyi",
            "national_id": "AB-123",
            "loan_amount": "1200000.00",
            "currency": "TZS",
        })
        terms = LoanTerms(Money(Decimal('1200000'), Currency.TZS), Decimal('12'), 12, RepaymentMode.MONTHLY)
        schedule = RepaymentScheduleGenerator().generate(terms, date(2023, 12, 1))
        self.installments = self.tracker.create_installments(1, schedule)

    def test_create_installments(self):
        assert len(self.installments) == 12
        assert self.installments[0].due_date == date(2024, 1, 1)
        assert not any(i.paid for i in self.installments)
        assert [i.sequence for i in self.tracker.installments_for(1)] == list(range(1, 13))

    def test_mark_paid_late_posts_repayment_on_paid_date(self):
        first = self.installments[0]
        paid = self.tracker.mark_paid(first.id, "2024-02-01", actor_id=9)

        assert paid.paid
        assert paid.paid_date == date(2024, 2, 1)
        stored = self.tracker.get_installment(first.id)
        assert stored.paid
        assert stored.status_on(date(2024, 3, 1)) == InstallmentStatus.PAID

        entries = self.ledger.entries_for(1)
        assert len(entries) == 1
        assert entries[0].entry_type == CashFlowType.LOAN_REPAYMENT
        assert entries[0].entry_date == date(2024, 2, 1)
        assert entries[0].amount.amount == Decimal('244000.00')
        assert entries[0].description == "Loan repayment from Asha Mwinyi"

        events = self.audit_trail.get_events_by_action(AuditAction.MARK_REPAYMENT_PAID)
        assert events[0].detail == f"Marked repayment {first.id} as paid"

    def test_mark_paid_twice_does_not_duplicate_ledger_entry(self):
        first = self.installments[0]
        self.tracker.mark_paid(first.id, date(2024, 1, 1))

        with pytest.raises(AlreadyPaidError):
            self.tracker.mark_paid(first.id, date(2024, 1, 2))

        assert len(self.ledger.entries_for(1)) == 1
        assert self.tracker.get_installment(first.id).paid_date == date(2024, 1, 1)

    def test_mark_paid_unknown_installment(self):
        with pytest.raises(NotFoundError):
            self.tracker.mark_paid(999)

    def test_mark_paid_defaults_to_today(self):
        paid = self.tracker.mark_paid(self.installments[1].id)
        assert paid.paid_date == date.today()

    def test_failed_posting_leaves_installment_unpaid(self, monkeypatch):
        def failing_posting(*args, **kwargs):
            raise RuntimeError("ledger unavailable")

        monkeypatch.setattr(self.ledger, "post_repayment", failing_posting)
        with pytest.raises(RuntimeError):
            self.tracker.mark_paid(self.installments[0].id, "2024-01-01")

        assert not self.tracker.get_installment(self.installments[0].id).paid

    def test_list_installments_joins_loan(self):
        self.tracker.mark_paid(self.installments[0].id, "2024-01-01")
        views = self.tracker.list_installments()

        assert len(views) == 12
        assert views[0].applicant_name == "Asha Mwinyi"
        assert views[0].national_id == "AB-123"
        assert views[0].total_loan.amount == Decimal('1200000.00')
        assert views[5].amount_paid.amount == Decimal('244000.00')
        assert [v.installment.due_date for v in views] == sorted(v.installment.due_date for v in views)

    def test_get_installment_view_after_payment(self):
        self.tracker.mark_paid(self.installments[0].id, "2024-01-01")
        self.tracker.mark_paid(self.installments[1].id, "2024-02-01")

        view = self.tracker.get_installment_view(self.installments[1].id)
        assert view.installment.paid
        assert view.applicant_name == "Asha Mwinyi"
        assert view.total_loan.amount == Decimal('1200000.00')
        assert view.amount_paid.amount == Decimal('488000.00')

    def test_get_installment_view_unknown(self):
        assert self.tracker.get_installment_view(999) is None

    def test_delete_for_application(self):
        assert self.tracker.delete_for_application(1) == 12
        assert self.tracker.installments_for(1) == []


class TestRepaymentSummary:
    """Test outstanding, overdue and due-soon totals"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        audit_trail = AuditTrail(self.storage)
        self.ledger = CashFlowLedger(self.storage, audit_trail, Currency.TZS)
        self.tracker = RepaymentTracker(self.storage, self.ledger, audit_trail, Currency.TZS, due_soon_days=30)
        self.storage.save("loan_applications", 1, {
            "id": 1, "applicant_name": "A", "national_id": "N", "loan_amount": "3000", "currency": "TZS"
        })
        terms = LoanTerms(Money(Decimal('3000'), Currency.TZS), Decimal('0'), 3, RepaymentMode.MONTHLY)
        # Due 2024-02-01, 2024-03-01, 2024-04-01; 1000 each
        self.installments = self.tracker.create_installments(
            1, RepaymentScheduleGenerator().generate(terms, date(2024, 1, 1))
        )

    def test_summary_bands(self):
        summary = self.tracker.summary(today=date(2024, 2, 15))

        assert summary.total_due.amount == Decimal('3000.00')
        assert summary.overdue.amount == Decimal('1000.00')
        assert summary.due_soon.amount == Decimal('1000.00')
        assert summary.due_soon_days == 30

    def test_due_soon_window_is_inclusive(self):
        today = date(2024, 3, 1) - timedelta(days=30)
        summary = self.tracker.summary(today=today)
        # 2024-02-01 and 2024-03-01 both fall inside [today, today + 30]
        assert summary.due_soon.amount == Decimal('2000.00')
        assert summary.overdue.is_zero()

    def test_due_today_is_due_soon_not_overdue(self):
        summary = self.tracker.summary(today=date(2024, 2, 1), due_soon_days=0)
        assert summary.due_soon.amount == Decimal('1000.00')
        assert summary.overdue.is_zero()

    def test_window_is_a_parameter(self):
        summary = self.tracker.summary(today=date(2024, 1, 25), due_soon_days=7)
        assert summary.due_soon.amount == Decimal('1000.00')
        assert summary.due_soon_days == 7

    def test_paid_installments_excluded(self):
        self.tracker.mark_paid(self.installments[0].id, "2024-02-20")
        summary = self.tracker.summary(today=date(2024, 2, 15))
        assert summary.total_due.amount == Decimal('2000.00')
        assert summary.overdue.is_zero()

    def test_installment_status(self):
        first = self.installments[0]
        assert first.status_on(date(2024, 2, 2)) == InstallmentStatus.OVERDUE
        assert first.status_on(date(2024, 1, 2)) == InstallmentStatus.DUE_SOON
        assert first.status_on(date(2023, 12, 1)) == InstallmentStatus.UPCOMING
        assert first.status_on(date(2024, 1, 20), due_soon_days=7) == InstallmentStatus.UPCOMING
