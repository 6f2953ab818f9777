"""
Loan Application Lifecycle Module

Handles application submission (field, document and uniqueness checks),
the pending -> approved | rejected state machine, schedule generation and
disbursement posting on approval, and the administrative delete cascade.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone, date
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Union
from enum import Enum
import logging

from .money import Money, Currency
from .storage import StorageInterface, StorageRecord
from .audit import AuditTrail, AuditAction
from .amortization import LoanTerms, RepaymentMode, validate_terms
from .schedule import RepaymentScheduleGenerator, ScheduledInstallment
from .documents import DocumentSlot, DocumentStore, DocumentUpload, normalize_documents
from .cash_flow import CashFlowLedger, parse_date
from .repayments import RepaymentTracker, RepaymentInstallment
from .exceptions import ValidationError, ConflictError, NotFoundError, InvalidTransitionError


logger = logging.getLogger(__name__)


class ApplicationStatus(Enum):
    """Application lifecycle states"""
    PENDING = "pending"      # Submitted, awaiting a decision
    APPROVED = "approved"    # Terminal; schedule generated and funds disbursed
    REJECTED = "rejected"    # Terminal


ALLOWED_TRANSITIONS = {
    ApplicationStatus.PENDING: (ApplicationStatus.APPROVED, ApplicationStatus.REJECTED),
    ApplicationStatus.APPROVED: (),
    ApplicationStatus.REJECTED: (),
}


class EmploymentStatus(Enum):
    EMPLOYED = "Employed"
    ENTREPRENEUR = "Entrepreneur"


REQUIRED_FIELDS = (
    "applicant_name", "national_id", "loan_amount", "term_months", "interest_rate",
    "employment_status", "repayment_mode", "sponsor1_name", "sponsor1_id",
    "sponsor2_name", "sponsor2_id",
)


@dataclass(frozen=True)
class Sponsor:
    """Guarantor named on an application"""
    name: str
    national_id: str


@dataclass
class LoanApplication(StorageRecord):
    """Loan application with terms, sponsors, documents and status"""
    applicant_name: str
    national_id: str
    terms: LoanTerms
    employment_status: EmploymentStatus
    sponsor1: Sponsor
    sponsor2: Sponsor
    documents: Dict[DocumentSlot, int] = field(default_factory=dict)
    status: ApplicationStatus = ApplicationStatus.PENDING
    approved_on: Optional[date] = None

    def can_transition_to(self, new_status: ApplicationStatus) -> bool:
        return new_status in ALLOWED_TRANSITIONS[self.status]


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


class LoanApplicationLifecycle:
    """
    Manages loan applications from submission to a final decision
    """

    def __init__(
        self,
        storage: StorageInterface,
        document_store: DocumentStore,
        schedule_generator: RepaymentScheduleGenerator,
        cash_flow: CashFlowLedger,
        repayments: RepaymentTracker,
        audit_trail: AuditTrail,
        currency: Currency = Currency.TZS
    ):
        self.storage = storage
        self.document_store = document_store
        self.schedule_generator = schedule_generator
        self.cash_flow = cash_flow
        self.repayments = repayments
        self.audit_trail = audit_trail
        self.currency = currency

        self.table_name = "loan_applications"

    def submit(
        self,
        application_data: Mapping[str, Any],
        documents: Optional[Mapping[Union[str, DocumentSlot], Optional[DocumentUpload]]] = None,
        actor_id: Optional[Any] = None
    ) -> LoanApplication:
        """
        Submit a new loan application

        Args:
            application_data: Scalar fields (see REQUIRED_FIELDS)
            documents: Uploads keyed by document slot
            actor_id: Operator submitting the application

        Returns:
            The persisted application, status pending

        Raises:
            ValidationError: missing or invalid fields or documents, all listed
            ConflictError: the national ID is already on file
        """
        fields, problems = self._parse_fields(application_data)
        employed = fields.get('employment_status') == EmploymentStatus.EMPLOYED
        uploads, document_problems = normalize_documents(documents, employed)
        problems.extend(document_problems)
        if problems:
            raise ValidationError("Loan application is incomplete or invalid", problems)

        with self.storage.atomic():
            if self.storage.find(self.table_name, {'national_id': fields['national_id']}):
                raise ConflictError(
                    f"An application with national ID {fields['national_id']} already exists",
                    {'national_id': fields['national_id']}
                )

            stored = {slot: self.document_store.store_document(upload, slot)
                      for slot, upload in uploads.items()}

            now = datetime.now(timezone.utc)
            application = LoanApplication(
                id=self.storage.next_id(self.table_name),
                created_at=now,
                updated_at=now,
                applicant_name=fields['applicant_name'],
                national_id=fields['national_id'],
                terms=fields['terms'],
                employment_status=fields['employment_status'],
                sponsor1=fields['sponsor1'],
                sponsor2=fields['sponsor2'],
                documents=stored
            )
            self._save_application(application)

            for document_id in stored.values():
                self.document_store.attach(document_id, self.table_name, application.id)

        logger.info("Application %s submitted for %s", application.id, application.applicant_name)
        self.audit_trail.record(actor_id, AuditAction.CREATE_APPLICATION,
                                f"Created loan application for {application.applicant_name}")
        return application

    def transition_status(
        self,
        application_id: int,
        new_status: Union[ApplicationStatus, str],
        actor_id: Optional[Any] = None,
        today: Optional[date] = None
    ) -> LoanApplication:
        """
        Approve or reject a pending application

        Approval generates and persists the repayment schedule (anchored on
        ``today``) and posts the disbursement, all in one transaction.

        Raises:
            ValidationError: new_status is not approved/rejected
            NotFoundError: unknown application
            InvalidTransitionError: the application is not pending
        """
        target = self._parse_target_status(new_status)
        decided_on = today or date.today()

        with self.storage.atomic():
            application = self._load_for_update(application_id)
            if not application.can_transition_to(target):
                raise InvalidTransitionError(application_id, application.status.value, target.value)

            application.status = target
            application.updated_at = datetime.now(timezone.utc)

            if target == ApplicationStatus.APPROVED:
                application.approved_on = decided_on
                schedule = self.schedule_generator.generate(application.terms, decided_on)
                self.repayments.create_installments(application.id, schedule)
                self.cash_flow.post_disbursement(
                    application.id, application.applicant_name,
                    application.terms.principal, decided_on
                )

            self._save_application(application)

        logger.info("Application %s moved to %s", application_id, target.value)
        self.audit_trail.record(actor_id, AuditAction.UPDATE_APPLICATION_STATUS,
                                f"Updated application {application_id} status to {target.value}")
        return application

    def delete(self, application_id: int, actor_id: Optional[Any] = None) -> None:
        """
        Delete an application with its installments, ledger entries and documents

        Raises:
            NotFoundError: unknown application
        """
        with self.storage.atomic():
            application = self._load_for_update(application_id)

            installments = self.repayments.delete_for_application(application_id)
            entries = self.cash_flow.remove_for_application(application_id)
            for document_id in application.documents.values():
                self.document_store.delete_document(document_id)
            self.storage.delete(self.table_name, application_id)

        logger.info("Application %s deleted with %d installments and %d ledger entries",
                    application_id, installments, entries)
        self.audit_trail.record(actor_id, AuditAction.DELETE_APPLICATION,
                                f"Deleted application {application_id}")

    def get_application(self, application_id: int) -> Optional[LoanApplication]:
        data = self.storage.load(self.table_name, application_id)
        if data:
            return self._application_from_dict(data)
        return None

    def list_applications(self, status: Optional[ApplicationStatus] = None) -> List[LoanApplication]:
        """Applications, newest first"""
        filters = {'status': status.value} if status else {}
        applications = [self._application_from_dict(row)
                        for row in self.storage.find(self.table_name, filters)]
        applications.sort(key=lambda a: (a.created_at, a.id), reverse=True)
        return applications

    def preview_schedule(self, application_id: int,
                         anchor_date: Union[date, str, None] = None) -> List[ScheduledInstallment]:
        """
        Schedule the application would get, using the same generator as approval.
        Anchored on the creation date unless another date is given.
        """
        application = self.get_application(application_id)
        if application is None:
            raise NotFoundError("Application", application_id)
        anchor = application.created_at.date() if anchor_date is None else parse_date(anchor_date, "anchor_date")
        return self.schedule_generator.generate(application.terms, anchor)

    def installments(self, application_id: int) -> List[RepaymentInstallment]:
        if self.get_application(application_id) is None:
            raise NotFoundError("Application", application_id)
        return self.repayments.installments_for(application_id)

    # Internals

    def _parse_fields(self, data: Mapping[str, Any]):
        """Parse scalar fields, collecting every problem instead of stopping at the first"""
        problems: List[str] = []
        parsed: Dict[str, Any] = {}

        for name in REQUIRED_FIELDS:
            if _is_blank(data.get(name)):
                problems.append(f"missing field: {name}")
        if problems:
            return parsed, problems

        for name in ("applicant_name", "national_id", "sponsor1_name", "sponsor1_id",
                     "sponsor2_name", "sponsor2_id"):
            parsed[name] = str(data[name]).strip()

        principal = self._parse_decimal(data['loan_amount'], "loan_amount", problems)
        rate = self._parse_decimal(data['interest_rate'], "interest_rate", problems)
        term = self._parse_int(data['term_months'], "term_months", problems)

        try:
            parsed['employment_status'] = EmploymentStatus(str(data['employment_status']).strip())
        except ValueError:
            problems.append("employment_status must be Employed or Entrepreneur")
        try:
            mode = RepaymentMode(str(data['repayment_mode']).strip().lower())
        except ValueError:
            mode = None
            problems.append("repayment_mode must be weekly or monthly")

        if principal is not None and rate is not None and term is not None:
            problems.extend(validate_terms(principal, rate, term))

        if problems:
            return parsed, problems

        parsed['terms'] = LoanTerms(
            principal=Money(principal, self.currency),
            annual_interest_rate=rate,
            term_months=term,
            repayment_mode=mode
        )
        parsed['sponsor1'] = Sponsor(parsed.pop('sponsor1_name'), parsed.pop('sponsor1_id'))
        parsed['sponsor2'] = Sponsor(parsed.pop('sponsor2_name'), parsed.pop('sponsor2_id'))
        return parsed, problems

    def _parse_decimal(self, value: Any, name: str, problems: List[str]) -> Optional[Decimal]:
        try:
            number = value if isinstance(value, Decimal) else Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            problems.append(f"{name} must be a number")
            return None
        if not number.is_finite():
            problems.append(f"{name} must be a number")
            return None
        return number

    def _parse_int(self, value: Any, name: str, problems: List[str]) -> Optional[int]:
        number = self._parse_decimal(value, name, problems)
        if number is None:
            return None
        if number != number.to_integral_value():
            problems.append(f"{name} must be a whole number")
            return None
        return int(number)

    def _parse_target_status(self, value: Union[ApplicationStatus, str]) -> ApplicationStatus:
        try:
            target = value if isinstance(value, ApplicationStatus) else ApplicationStatus(str(value).strip())
        except ValueError:
            target = None
        if target not in (ApplicationStatus.APPROVED, ApplicationStatus.REJECTED):
            raise ValidationError("Valid status (approved/rejected) is required", [f"invalid status: {value}"])
        return target

    def _load_for_update(self, application_id: int) -> LoanApplication:
        data = self.storage.load_for_update(self.table_name, application_id)
        if data is None:
            raise NotFoundError("Application", application_id)
        return self._application_from_dict(data)

    def _save_application(self, application: LoanApplication) -> None:
        self.storage.save(self.table_name, application.id, self._application_to_dict(application))

    def _application_to_dict(self, application: LoanApplication) -> Dict:
        terms = application.terms
        return {
            'id': application.id,
            'created_at': application.created_at.isoformat(),
            'updated_at': application.updated_at.isoformat(),
            'applicant_name': application.applicant_name,
            'national_id': application.national_id,
            'loan_amount': str(terms.principal.amount),
            'currency': terms.principal.currency.code,
            'interest_rate': str(terms.annual_interest_rate),
            'term_months': terms.term_months,
            'repayment_mode': terms.repayment_mode.value,
            'employment_status': application.employment_status.value,
            'sponsor1_name': application.sponsor1.name,
            'sponsor1_id': application.sponsor1.national_id,
            'sponsor2_name': application.sponsor2.name,
            'sponsor2_id': application.sponsor2.national_id,
            'documents': {slot.value: document_id for slot, document_id in application.documents.items()},
            'status': application.status.value,
            'approved_on': application.approved_on.isoformat() if application.approved_on else None
        }

    def _application_from_dict(self, data: Dict) -> LoanApplication:
        terms = LoanTerms(
            principal=Money(Decimal(data['loan_amount']), Currency[data['currency']]),
            annual_interest_rate=Decimal(data['interest_rate']),
            term_months=data['term_months'],
            repayment_mode=RepaymentMode(data['repayment_mode'])
        )
        return LoanApplication(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            applicant_name=data['applicant_name'],
            national_id=data['national_id'],
            terms=terms,
            employment_status=EmploymentStatus(data['employment_status']),
            sponsor1=Sponsor(data['sponsor1_name'], data['sponsor1_id']),
            sponsor2=Sponsor(data['sponsor2_name'], data['sponsor2_id']),
            documents={DocumentSlot(slot): document_id for slot, document_id in data.get('documents', {}).items()},
            status=ApplicationStatus(data['status']),
            approved_on=date.fromisoformat(data['approved_on']) if data.get('approved_on') else None
        )
