"""
Repayment Tracker Module

Persists the installments of approved loans, marks them paid (posting the
matching ledger entry in the same transaction), and summarizes what is
outstanding, overdue and due soon.
"""

from decimal import Decimal
from datetime import datetime, timezone, date, timedelta
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union
from enum import Enum
import logging

from .money import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditAction
from .cash_flow import CashFlowLedger, parse_date
from .schedule import ScheduledInstallment
from .exceptions import NotFoundError, AlreadyPaidError


logger = logging.getLogger(__name__)

DEFAULT_DUE_SOON_DAYS = 30


class InstallmentStatus(Enum):
    """Display status of an installment relative to a given day"""
    PAID = "paid"
    OVERDUE = "overdue"
    DUE_SOON = "due_soon"
    UPCOMING = "upcoming"


@dataclass
class RepaymentInstallment(StorageRecord):
    """Scheduled installment of an approved loan"""
    loan_application_id: int
    sequence: int
    due_date: date
    amount: Money
    principal_component: Money
    interest_component: Money
    running_balance: Money
    paid: bool = False
    paid_date: Optional[date] = None

    def status_on(self, today: date, due_soon_days: int = DEFAULT_DUE_SOON_DAYS) -> InstallmentStatus:
        if self.paid:
            return InstallmentStatus.PAID
        if self.due_date < today:
            return InstallmentStatus.OVERDUE
        if self.due_date <= today + timedelta(days=due_soon_days):
            return InstallmentStatus.DUE_SOON
        return InstallmentStatus.UPCOMING


@dataclass(frozen=True)
class InstallmentView:
    """Installment joined with its loan, as shown on the repayments screen"""
    installment: RepaymentInstallment
    applicant_name: str
    national_id: str
    total_loan: Money
    amount_paid: Money      # Paid so far across the whole loan


@dataclass(frozen=True)
class RepaymentSummary:
    """Aggregate of unpaid installments; the bands may overlap"""
    total_due: Money
    overdue: Money
    due_soon: Money
    as_of: date
    due_soon_days: int


class RepaymentTracker:
    """
    Tracks repayment installments
    """

    def __init__(
        self,
        storage: StorageInterface,
        cash_flow: CashFlowLedger,
        audit_trail: AuditTrail,
        currency: Currency = Currency.TZS,
        due_soon_days: int = DEFAULT_DUE_SOON_DAYS
    ):
        self.storage = storage
        self.cash_flow = cash_flow
        self.audit_trail = audit_trail
        self.currency = currency
        self.due_soon_days = due_soon_days

        self.table_name = "loan_repayments"
        self.applications_table = "loan_applications"

    def create_installments(self, application_id: int,
                            schedule: Iterable[ScheduledInstallment]) -> List[RepaymentInstallment]:
        """Persist a generated schedule; runs inside the approval transaction"""
        now = datetime.now(timezone.utc)
        installments = []
        for row in schedule:
            installment = RepaymentInstallment(
                id=self.storage.next_id(self.table_name),
                created_at=now,
                updated_at=now,
                loan_application_id=application_id,
                sequence=row.sequence,
                due_date=row.due_date,
                amount=row.amount,
                principal_component=row.principal_component,
                interest_component=row.interest_component,
                running_balance=row.running_balance
            )
            self._save_installment(installment)
            installments.append(installment)
        return installments

    def mark_paid(
        self,
        installment_id: int,
        paid_date: Union[date, str, None] = None,
        actor_id: Optional[object] = None
    ) -> RepaymentInstallment:
        """
        Mark an installment paid and post the repayment to the ledger

        Args:
            installment_id: Installment to settle
            paid_date: Date the money was received (defaults to today)
            actor_id: Operator recording the payment

        Raises:
            NotFoundError: unknown installment
            AlreadyPaidError: the installment was settled before
        """
        paid_on = date.today() if paid_date is None else parse_date(paid_date, "paid_date")

        with self.storage.atomic():
            data = self.storage.load_for_update(self.table_name, installment_id)
            if data is None:
                raise NotFoundError("Repayment", installment_id)
            installment = self._installment_from_dict(data)
            if installment.paid:
                raise AlreadyPaidError(installment_id)

            application = self.storage.load(self.applications_table, installment.loan_application_id)
            if application is None:
                raise NotFoundError("Application", installment.loan_application_id)

            installment.paid = True
            installment.paid_date = paid_on
            installment.updated_at = datetime.now(timezone.utc)
            self._save_installment(installment)

            self.cash_flow.post_repayment(
                installment.loan_application_id,
                application['applicant_name'],
                installment.amount,
                paid_on
            )

        logger.info("Installment %s of application %s paid on %s",
                    installment_id, installment.loan_application_id, paid_on.isoformat())
        self.audit_trail.record(actor_id, AuditAction.MARK_REPAYMENT_PAID,
                                f"Marked repayment {installment_id} as paid")
        return installment

    def summary(self, today: Optional[date] = None, due_soon_days: Optional[int] = None) -> RepaymentSummary:
        """
        Totals over unpaid installments

        overdue: due before today; due_soon: due between today and
        today + due_soon_days, both ends inclusive.
        """
        today = today or date.today()
        window = self.due_soon_days if due_soon_days is None else due_soon_days
        horizon = today + timedelta(days=window)

        unpaid = [i for i in self._all_installments() if not i.paid]
        return RepaymentSummary(
            total_due=Money.sum((i.amount for i in unpaid), self.currency),
            overdue=Money.sum((i.amount for i in unpaid if i.due_date < today), self.currency),
            due_soon=Money.sum((i.amount for i in unpaid if today <= i.due_date <= horizon), self.currency),
            as_of=today,
            due_soon_days=window
        )

    def get_installment(self, installment_id: int) -> Optional[RepaymentInstallment]:
        data = self.storage.load(self.table_name, installment_id)
        if data:
            return self._installment_from_dict(data)
        return None

    def installments_for(self, application_id: int) -> List[RepaymentInstallment]:
        rows = self.storage.find(self.table_name, {'loan_application_id': application_id})
        installments = [self._installment_from_dict(row) for row in rows]
        installments.sort(key=lambda i: i.sequence)
        return installments

    def list_installments(self) -> List[InstallmentView]:
        """Every installment joined with its loan, earliest due date first"""
        installments = self._all_installments()
        applications = {row['id']: row for row in self.storage.load_all(self.applications_table)}

        paid_by_loan: Dict[int, Money] = {}
        for installment in installments:
            if installment.paid:
                loan_id = installment.loan_application_id
                paid_by_loan[loan_id] = paid_by_loan.get(loan_id, Money.zero(self.currency)) + installment.amount

        views = []
        for installment in sorted(installments, key=lambda i: (i.due_date, i.id)):
            application = applications.get(installment.loan_application_id)
            if application is None:
                continue
            paid = paid_by_loan.get(installment.loan_application_id, Money.zero(self.currency))
            views.append(self._view(installment, application, paid))
        return views

    def get_installment_view(self, installment_id: int) -> Optional[InstallmentView]:
        """One installment joined with its loan, or None when either is gone"""
        installment = self.get_installment(installment_id)
        if installment is None:
            return None
        application = self.storage.load(self.applications_table, installment.loan_application_id)
        if application is None:
            return None
        paid = Money.sum((i.amount for i in self.installments_for(installment.loan_application_id) if i.paid),
                         self.currency)
        return self._view(installment, application, paid)

    def delete_for_application(self, application_id: int) -> int:
        """Remove every installment of an application; runs inside the delete transaction"""
        rows = self.storage.find(self.table_name, {'loan_application_id': application_id})
        for row in rows:
            self.storage.delete(self.table_name, row['id'])
        return len(rows)

    def _view(self, installment: RepaymentInstallment, application: Dict, amount_paid: Money) -> InstallmentView:
        return InstallmentView(
            installment=installment,
            applicant_name=application['applicant_name'],
            national_id=application['national_id'],
            total_loan=Money(Decimal(application['loan_amount']), Currency[application['currency']]),
            amount_paid=amount_paid
        )

    def _all_installments(self) -> List[RepaymentInstallment]:
        return [self._installment_from_dict(row) for row in self.storage.load_all(self.table_name)]

    def _save_installment(self, installment: RepaymentInstallment) -> None:
        self.storage.save(self.table_name, installment.id, self._installment_to_dict(installment))

    def _installment_to_dict(self, installment: RepaymentInstallment) -> Dict:
        return {
            'id': installment.id,
            'created_at': installment.created_at.isoformat(),
            'updated_at': installment.updated_at.isoformat(),
            'loan_application_id': installment.loan_application_id,
            'sequence': installment.sequence,
            'due_date': installment.due_date.isoformat(),
            'amount': str(installment.amount.amount),
            'principal_component': str(installment.principal_component.amount),
            'interest_component': str(installment.interest_component.amount),
            'running_balance': str(installment.running_balance.amount),
            'currency': installment.amount.currency.code,
            'paid': installment.paid,
            'paid_date': installment.paid_date.isoformat() if installment.paid_date else None
        }

    def _installment_from_dict(self, data: Dict) -> RepaymentInstallment:
        currency = Currency[data['currency']]

        def money(field: str) -> Money:
            return Money(Decimal(data[field]), currency)

        return RepaymentInstallment(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            loan_application_id=data['loan_application_id'],
            sequence=data['sequence'],
            due_date=date.fromisoformat(data['due_date']),
            amount=money('amount'),
            principal_component=money('principal_component'),
            interest_component=money('interest_component'),
            running_balance=money('running_balance'),
            paid=data['paid'],
            paid_date=date.fromisoformat(data['paid_date']) if data.get('paid_date') else None
        )
