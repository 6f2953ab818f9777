"""
Loan Back Office System

Composition root: wires one storage instance into every component and
exposes the operations callers (the HTTP adapter, scripts, tests) use.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Mapping, Optional, Union
import logging

from .config import BackOfficeConfig, get_config
from .money import Currency
from .storage import StorageInterface, InMemoryStorage, create_storage
from .audit import AuditTrail
from .amortization import ScheduleStrategy
from .schedule import RepaymentScheduleGenerator, ScheduledInstallment
from .documents import DocumentStore, DocumentUpload, StorageDocumentStore, DocumentSlot
from .cash_flow import CashFlowLedger, CashFlowEntry
from .repayments import RepaymentTracker, RepaymentInstallment, RepaymentSummary, InstallmentView
from .applications import LoanApplicationLifecycle, LoanApplication, ApplicationStatus
from .reporting import ReportingEngine, ReportResult, DashboardSummary


logger = logging.getLogger(__name__)


class LoanBackOffice:
    """Loan back office with all components initialized"""

    def __init__(
        self,
        storage: Optional[StorageInterface] = None,
        config: Optional[BackOfficeConfig] = None,
        document_store: Optional[DocumentStore] = None
    ):
        self.config = config or get_config()
        self.storage = storage if storage is not None else InMemoryStorage()
        self.currency = Currency[self.config.default_currency.upper()]

        self.audit_trail = AuditTrail(self.storage, enabled=self.config.enable_audit_logging)
        self.document_store = document_store or StorageDocumentStore(self.storage)
        self.schedule_generator = RepaymentScheduleGenerator(
            strategy=ScheduleStrategy(self.config.schedule_strategy),
            weeks_per_month=Decimal(self.config.weeks_per_month)
        )
        self.cash_flow = CashFlowLedger(self.storage, self.audit_trail, self.currency)
        self.repayments = RepaymentTracker(
            self.storage, self.cash_flow, self.audit_trail,
            currency=self.currency,
            due_soon_days=self.config.due_soon_days
        )
        self.applications = LoanApplicationLifecycle(
            self.storage, self.document_store, self.schedule_generator,
            self.cash_flow, self.repayments, self.audit_trail,
            currency=self.currency
        )
        self.reporting = ReportingEngine(
            self.storage, self.applications, self.cash_flow, self.repayments,
            currency=self.currency,
            recent_items_limit=self.config.recent_items_limit
        )

        logger.info("Loan back office ready (%s, %s schedules)",
                    type(self.storage).__name__, self.schedule_generator.strategy.value)

    @classmethod
    def from_config(cls, config: Optional[BackOfficeConfig] = None) -> 'LoanBackOffice':
        """Build a back office on the storage named by ``database_url``"""
        config = config or get_config()
        return cls(storage=create_storage(config.database_url), config=config)

    def close(self) -> None:
        self.storage.close()

    # Applications

    def submit_application(
        self,
        application_data: Mapping[str, Any],
        documents: Optional[Mapping[Union[str, DocumentSlot], Optional[DocumentUpload]]] = None,
        actor_id: Optional[Any] = None
    ) -> LoanApplication:
        return self.applications.submit(application_data, documents, actor_id)

    def transition_application_status(
        self,
        application_id: int,
        new_status: Union[ApplicationStatus, str],
        actor_id: Optional[Any] = None,
        today: Optional[date] = None
    ) -> LoanApplication:
        return self.applications.transition_status(application_id, new_status, actor_id, today)

    def delete_application(self, application_id: int, actor_id: Optional[Any] = None) -> None:
        self.applications.delete(application_id, actor_id)

    def get_application(self, application_id: int) -> Optional[LoanApplication]:
        return self.applications.get_application(application_id)

    def list_applications(self, status: Optional[ApplicationStatus] = None) -> List[LoanApplication]:
        return self.applications.list_applications(status)

    def preview_schedule(self, application_id: int,
                         anchor_date: Union[date, str, None] = None) -> List[ScheduledInstallment]:
        return self.applications.preview_schedule(application_id, anchor_date)

    # Repayments

    def mark_installment_paid(self, installment_id: int, paid_date: Union[date, str, None] = None,
                              actor_id: Optional[Any] = None) -> RepaymentInstallment:
        return self.repayments.mark_paid(installment_id, paid_date, actor_id)

    def list_installments(self, application_id: Optional[int] = None) -> Union[List[InstallmentView], List[RepaymentInstallment]]:
        """Every installment joined with its loan, or the schedule of one application"""
        if application_id is not None:
            return self.applications.installments(application_id)
        return self.repayments.list_installments()

    def get_installment_view(self, installment_id: int) -> Optional[InstallmentView]:
        return self.repayments.get_installment_view(installment_id)

    def get_repayment_summary(self, today: Optional[date] = None,
                              due_soon_days: Optional[int] = None) -> RepaymentSummary:
        return self.repayments.summary(today, due_soon_days)

    # Cash flow

    def append_manual_cash_flow(self, entry_type: Any, amount: Any, description: Optional[str],
                                entry_date: Union[date, str, None],
                                actor_id: Optional[Any] = None) -> CashFlowEntry:
        return self.cash_flow.append(entry_type, amount, description, entry_date, actor_id)

    def update_manual_cash_flow(self, entry_id: int, changes: Dict[str, Any],
                                actor_id: Optional[Any] = None) -> CashFlowEntry:
        return self.cash_flow.update(entry_id, changes, actor_id)

    def delete_manual_cash_flow(self, entry_id: int, actor_id: Optional[Any] = None) -> None:
        self.cash_flow.remove(entry_id, actor_id)

    def list_cash_flow(self) -> List[CashFlowEntry]:
        return self.cash_flow.list_entries()

    # Reports

    def get_dashboard_summary(self, recent_limit: Optional[int] = None) -> DashboardSummary:
        return self.reporting.dashboard_summary(recent_limit)

    def get_cash_flow_report(self, start: Union[date, str, None], end: Union[date, str, None],
                             sort_by: Optional[str] = None, sort_order: Optional[str] = None) -> ReportResult:
        return self.reporting.cash_flow_report(start, end, sort_by, sort_order)

    def get_loan_status_report(self, status: Union[ApplicationStatus, str, None] = None,
                               sort_by: Optional[str] = None, sort_order: Optional[str] = None) -> ReportResult:
        return self.reporting.loan_status_report(status, sort_by, sort_order)

    def get_loan_repayment_report(self, sort_by: Optional[str] = None,
                                  sort_order: Optional[str] = None) -> ReportResult:
        return self.reporting.loan_repayment_report(sort_by, sort_order)
