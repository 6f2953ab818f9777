"""
Pydantic schemas for API requests and response serializers
"""

from decimal import Decimal
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from ..money import Money
from ..documents import DocumentUpload
from ..applications import LoanApplication
from ..schedule import ScheduledInstallment
from ..cash_flow import CashFlowEntry
from ..repayments import RepaymentInstallment, InstallmentView, RepaymentSummary
from ..reporting import ReportResult, DashboardSummary


class MoneyModel(BaseModel):
    amount: str = Field(..., description="Decimal amount as string")
    currency: str = Field(..., description="Currency code (TZS, KES, etc.)")

    @classmethod
    def from_money(cls, money: Money) -> 'MoneyModel':
        return cls(amount=str(money.amount), currency=money.currency.code)


# Application schemas

class DocumentModel(BaseModel):
    filename: str
    path: str = Field(..., description="Where the upload layer stored the file")
    content_type: Optional[str] = None

    def to_upload(self) -> DocumentUpload:
        return DocumentUpload(filename=self.filename, path=self.path, content_type=self.content_type)


class CreateApplicationRequest(BaseModel):
    # Presence and format are checked by the core so every problem is reported at once
    applicant_name: Optional[str] = None
    national_id: Optional[str] = None
    loan_amount: Optional[str] = Field(None, description="Decimal amount as string")
    term_months: Optional[int] = None
    interest_rate: Optional[str] = Field(None, description="Annual rate in percent, e.g. '12'")
    employment_status: Optional[str] = Field(None, description="Employed or Entrepreneur")
    repayment_mode: Optional[str] = Field(None, description="weekly or monthly")
    sponsor1_name: Optional[str] = None
    sponsor1_id: Optional[str] = None
    sponsor2_name: Optional[str] = None
    sponsor2_id: Optional[str] = None
    documents: Dict[str, Optional[DocumentModel]] = Field(default_factory=dict,
                                                         description="Uploads keyed by document slot")

    def application_data(self) -> Dict[str, Any]:
        return self.model_dump(exclude={'documents'})

    def uploads(self) -> Dict[str, Optional[DocumentUpload]]:
        return {slot: doc.to_upload() if doc else None for slot, doc in self.documents.items()}


class UpdateStatusRequest(BaseModel):
    status: Optional[str] = Field(None, description="approved or rejected")
    decision_date: Optional[str] = Field(None, description="ISO date; defaults to today")


# Cash flow schemas

class CreateCashFlowRequest(BaseModel):
    type: Optional[str] = Field(None, description="income or expense")
    amount: Optional[str] = Field(None, description="Decimal amount as string")
    description: Optional[str] = None
    date: Optional[str] = Field(None, description="ISO date")


class UpdateCashFlowRequest(BaseModel):
    type: Optional[str] = None
    amount: Optional[str] = None
    description: Optional[str] = None
    date: Optional[str] = None

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


# Repayment schemas

class MarkPaidRequest(BaseModel):
    paid_date: Optional[str] = Field(None, description="ISO date; defaults to today")


# Serializers

def _plain(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Money):
        return MoneyModel.from_money(value).model_dump()
    return value


def application_to_response(application: LoanApplication) -> Dict[str, Any]:
    terms = application.terms
    return {
        "id": application.id,
        "applicant_name": application.applicant_name,
        "national_id": application.national_id,
        "loan_amount": MoneyModel.from_money(terms.principal).model_dump(),
        "interest_rate": str(terms.annual_interest_rate),
        "term_months": terms.term_months,
        "repayment_mode": terms.repayment_mode.value,
        "employment_status": application.employment_status.value,
        "sponsor1_name": application.sponsor1.name,
        "sponsor1_id": application.sponsor1.national_id,
        "sponsor2_name": application.sponsor2.name,
        "sponsor2_id": application.sponsor2.national_id,
        "documents": {slot.value: document_id for slot, document_id in application.documents.items()},
        "status": application.status.value,
        "approved_on": _plain(application.approved_on),
        "created_at": application.created_at.isoformat(),
        "updated_at": application.updated_at.isoformat()
    }


def scheduled_installment_to_response(row: ScheduledInstallment) -> Dict[str, Any]:
    return {
        "sequence": row.sequence,
        "due_date": row.due_date.isoformat(),
        "amount": str(row.amount.amount),
        "principal_component": str(row.principal_component.amount),
        "interest_component": str(row.interest_component.amount),
        "running_balance": str(row.running_balance.amount)
    }


def installment_to_response(installment: RepaymentInstallment) -> Dict[str, Any]:
    return {
        "id": installment.id,
        "loan_application_id": installment.loan_application_id,
        "sequence": installment.sequence,
        "due_date": installment.due_date.isoformat(),
        "amount": str(installment.amount.amount),
        "principal_component": str(installment.principal_component.amount),
        "interest_component": str(installment.interest_component.amount),
        "running_balance": str(installment.running_balance.amount),
        "currency": installment.amount.currency.code,
        "paid": installment.paid,
        "paid_date": _plain(installment.paid_date)
    }


def installment_view_to_response(view: InstallmentView, today: date, due_soon_days: int) -> Dict[str, Any]:
    response = installment_to_response(view.installment)
    response.update({
        "applicant_name": view.applicant_name,
        "national_id": view.national_id,
        "total_loan": str(view.total_loan.amount),
        "amount_paid": str(view.amount_paid.amount),
        "status": view.installment.status_on(today, due_soon_days).value
    })
    return response


def repayment_summary_to_response(summary: RepaymentSummary) -> Dict[str, Any]:
    return {
        "total_due": MoneyModel.from_money(summary.total_due).model_dump(),
        "overdue": MoneyModel.from_money(summary.overdue).model_dump(),
        "due_soon": MoneyModel.from_money(summary.due_soon).model_dump(),
        "as_of": summary.as_of.isoformat(),
        "due_soon_days": summary.due_soon_days
    }


def entry_to_response(entry: CashFlowEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "type": entry.entry_type.value,
        "amount": str(entry.amount.amount),
        "currency": entry.amount.currency.code,
        "description": entry.description,
        "date": entry.entry_date.isoformat(),
        "related_id": entry.related_id,
        "created_at": entry.created_at.isoformat()
    }


def dashboard_to_response(summary: DashboardSummary) -> Dict[str, Any]:
    return {
        "total_applications": summary.total_applications,
        "total_income": MoneyModel.from_money(summary.total_income).model_dump(),
        "total_expenses": MoneyModel.from_money(summary.total_expenses).model_dump(),
        "recent_applications": [application_to_response(a) for a in summary.recent_applications],
        "recent_transactions": [entry_to_response(e) for e in summary.recent_transactions]
    }


def report_to_response(result: ReportResult) -> Dict[str, Any]:
    return {
        "report_id": result.report_id,
        "generated_at": result.generated_at.isoformat(),
        "sort_by": result.sort.field,
        "sort_order": result.sort.order,
        "data": [{key: _plain(value) for key, value in row.items()} for row in result.data],
        "totals": {key: _plain(value) for key, value in result.totals.items()},
        "metadata": result.metadata
    }
