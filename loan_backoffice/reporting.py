"""
Reporting Engine Module

Read-only aggregates over applications, installments and the cash-flow
ledger: the dashboard summary and the three back-office reports, each
with an allow-listed sort.
"""

from decimal import Decimal
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from .money import Money, Currency
from .storage import StorageInterface
from .applications import LoanApplicationLifecycle, LoanApplication, ApplicationStatus
from .cash_flow import CashFlowLedger, CashFlowEntry, parse_date
from .repayments import RepaymentTracker
from .exceptions import ValidationError


SORT_ORDERS = ("asc", "desc")

CASH_FLOW_SORT_FIELDS = ("date", "income", "expense")
LOAN_STATUS_SORT_FIELDS = ("status", "count")
LOAN_REPAYMENT_SORT_FIELDS = (
    "loan_id", "applicant_name", "loan_amount", "total_installments",
    "paid_installments", "unpaid_installments", "total_repayment_amount",
    "paid_amount", "remaining_amount",
)


@dataclass(frozen=True)
class SortSpec:
    """Resolved sort request"""
    field: str
    order: str

    @property
    def descending(self) -> bool:
        return self.order == "desc"


def resolve_sort(sort_by: Optional[str], sort_order: Optional[str],
                 allowed: Tuple[str, ...], default_field: str, default_order: str) -> SortSpec:
    """
    Map a caller's sort request onto the allow-list.

    An unknown field falls back to the default field and an unknown order to
    the default order, independently of each other.
    """
    field_name = sort_by if sort_by in allowed else default_field
    order = sort_order.lower() if isinstance(sort_order, str) else None
    return SortSpec(field=field_name, order=order if order in SORT_ORDERS else default_order)


def sort_rows(rows: List[Dict[str, Any]], sort_spec: SortSpec, tie_breaker: str) -> List[Dict[str, Any]]:
    """Sort report rows; ties keep ascending tie_breaker order"""
    ordered = sorted(rows, key=lambda row: row[tie_breaker])
    return sorted(ordered, key=lambda row: row[sort_spec.field], reverse=sort_spec.descending)


@dataclass
class ReportResult:
    """Result of a report execution"""
    report_id: str
    generated_at: datetime
    sort: SortSpec
    data: List[Dict[str, Any]] = field(default_factory=list)
    totals: Dict[str, Any] = field(default_factory=dict)
    metadata: Dict[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        if not self.metadata:
            self.metadata = {'row_count': len(self.data)}


@dataclass(frozen=True)
class DashboardSummary:
    """Headline figures for the back-office landing page"""
    total_applications: int
    total_income: Money
    total_expenses: Money
    recent_applications: List[LoanApplication]
    recent_transactions: List[CashFlowEntry]


class ReportingEngine:
    """
    Aggregates for the dashboard and the reports screen
    """

    def __init__(
        self,
        storage: StorageInterface,
        applications: LoanApplicationLifecycle,
        cash_flow: CashFlowLedger,
        repayments: RepaymentTracker,
        currency: Currency = Currency.TZS,
        recent_items_limit: int = 5
    ):
        self.storage = storage
        self.applications = applications
        self.cash_flow = cash_flow
        self.repayments = repayments
        self.currency = currency
        self.recent_items_limit = recent_items_limit

    def dashboard_summary(self, recent_limit: Optional[int] = None) -> DashboardSummary:
        """
        Application count, ledger totals over all time, and the most recent
        applications (by creation) and ledger entries (by date)
        """
        limit = self.recent_items_limit if recent_limit is None else recent_limit
        totals = self.cash_flow.summaries()

        return DashboardSummary(
            total_applications=self.storage.count(self.applications.table_name),
            total_income=totals.total_income,
            total_expenses=totals.total_expense,
            recent_applications=self.applications.list_applications()[:limit],
            recent_transactions=self.cash_flow.list_entries()[:limit]
        )

    def cash_flow_report(
        self,
        start: Union[date, str, None],
        end: Union[date, str, None],
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None
    ) -> ReportResult:
        """
        Income and expense per calendar date within [start, end]

        Income counts manual income and loan repayments; expense counts
        manual expenses and loan disbursements.

        Raises:
            ValidationError: start or end missing or invalid
        """
        if not start or not end:
            raise ValidationError("Start date and end date are required",
                                  ["start_date and end_date are required"])
        sort_spec = resolve_sort(sort_by, sort_order, CASH_FLOW_SORT_FIELDS, "date", "asc")
        entries = self.cash_flow.query(start, end)

        by_date: Dict[date, Dict[str, Any]] = {}
        for entry in entries:
            row = by_date.setdefault(entry.entry_date, {
                'date': entry.entry_date,
                'income': Decimal('0'),
                'expense': Decimal('0')
            })
            bucket = 'income' if entry.entry_type.is_inflow else 'expense'
            row[bucket] += entry.amount.amount

        rows = sort_rows(list(by_date.values()), sort_spec, tie_breaker='date')
        totals = self.cash_flow.summaries(entries)

        return ReportResult(
            report_id="cash_flow",
            generated_at=datetime.now(timezone.utc),
            sort=sort_spec,
            data=rows,
            totals={
                'income': totals.total_income.amount,
                'expense': totals.total_expense.amount,
                'net': totals.net.amount
            },
            metadata={
                'row_count': len(rows),
                'currency': self.currency.code,
                'start_date': parse_date(start, "start_date").isoformat(),
                'end_date': parse_date(end, "end_date").isoformat()
            }
        )

    def loan_status_report(
        self,
        status: Union[ApplicationStatus, str, None] = None,
        sort_by: Optional[str] = None,
        sort_order: Optional[str] = None
    ) -> ReportResult:
        """Number of applications per status, optionally limited to one status"""
        sort_spec = resolve_sort(sort_by, sort_order, LOAN_STATUS_SORT_FIELDS, "count", "desc")
        status_filter = self._parse_status(status)

        counts: Dict[str, int] = {}
        for application in self.applications.list_applications(status_filter):
            key = application.status.value
            counts[key] = counts.get(key, 0) + 1

        rows = [{'status': key, 'count': value} for key, value in counts.items()]
        rows = sort_rows(rows, sort_spec, tie_breaker='status')

        return ReportResult(
            report_id="loan_status",
            generated_at=datetime.now(timezone.utc),
            sort=sort_spec,
            data=rows,
            totals={'count': sum(counts.values())}
        )

    def loan_repayment_report(self, sort_by: Optional[str] = None,
                              sort_order: Optional[str] = None) -> ReportResult:
        """
        Repayment progress of every approved loan

        Loans without installments still appear, with zero counts and amounts.
        """
        sort_spec = resolve_sort(sort_by, sort_order, LOAN_REPAYMENT_SORT_FIELDS, "remaining_amount", "desc")

        rows = []
        for application in self.applications.list_applications(ApplicationStatus.APPROVED):
            installments = self.repayments.installments_for(application.id)
            paid = [i for i in installments if i.paid]
            unpaid = [i for i in installments if not i.paid]
            total = sum((i.amount.amount for i in installments), Decimal('0'))
            paid_amount = sum((i.amount.amount for i in paid), Decimal('0'))

            rows.append({
                'loan_id': application.id,
                'applicant_name': application.applicant_name,
                'national_id': application.national_id,
                'loan_amount': application.terms.principal.amount,
                'interest_rate': application.terms.annual_interest_rate,
                'term_months': application.terms.term_months,
                'status': application.status.value,
                'total_installments': len(installments),
                'paid_installments': len(paid),
                'unpaid_installments': len(unpaid),
                'total_repayment_amount': total,
                'paid_amount': paid_amount,
                'remaining_amount': total - paid_amount
            })

        rows = sort_rows(rows, sort_spec, tie_breaker='loan_id')

        return ReportResult(
            report_id="loan_repayments",
            generated_at=datetime.now(timezone.utc),
            sort=sort_spec,
            data=rows,
            totals={
                'total_repayment_amount': sum((r['total_repayment_amount'] for r in rows), Decimal('0')),
                'paid_amount': sum((r['paid_amount'] for r in rows), Decimal('0')),
                'remaining_amount': sum((r['remaining_amount'] for r in rows), Decimal('0'))
            },
            metadata={'row_count': len(rows), 'currency': self.currency.code}
        )

    def _parse_status(self, status: Union[ApplicationStatus, str, None]) -> Optional[ApplicationStatus]:
        if status is None or isinstance(status, ApplicationStatus):
            return status
        if not str(status).strip():
            return None
        try:
            return ApplicationStatus(str(status).strip())
        except ValueError:
            raise ValidationError("Invalid status filter", [f"unknown status: {status}"])
