"""
Repayment endpoints
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Body, Depends

from .dependencies import get_backoffice, get_actor_id, http_error
from .schemas import (
    MarkPaidRequest, installment_view_to_response,
    repayment_summary_to_response
)
from ..system import LoanBackOffice
from ..exceptions import BackOfficeError, ValidationError


router = APIRouter()


@router.get("")
async def list_repayments(
    due_soon_days: Optional[int] = None,
    system: LoanBackOffice = Depends(get_backoffice)
):
    """All installments with their loan details and the outstanding totals"""
    if due_soon_days is not None and due_soon_days < 0:
        raise http_error(ValidationError("Invalid due_soon_days", ["due_soon_days must not be negative"]))

    summary = system.get_repayment_summary(due_soon_days=due_soon_days)
    today = summary.as_of
    return {
        "repayments": [
            installment_view_to_response(view, today, summary.due_soon_days)
            for view in system.list_installments()
        ],
        "summary": repayment_summary_to_response(summary)
    }


@router.post("/{installment_id}/pay")
@router.put("/{installment_id}/pay", include_in_schema=False)
async def mark_paid(
    installment_id: int,
    request: Optional[MarkPaidRequest] = Body(None),
    system: LoanBackOffice = Depends(get_backoffice),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Mark an installment paid and post the repayment; answers with the installment joined with its loan"""
    paid_date = request.paid_date if request else None
    try:
        installment = system.mark_installment_paid(installment_id, paid_date, actor_id)
    except BackOfficeError as e:
        raise http_error(e, actor_id)

    view = system.get_installment_view(installment.id)
    response = installment_view_to_response(view, date.today(), system.repayments.due_soon_days)
    response["message"] = "Repayment marked as paid successfully"
    return response
