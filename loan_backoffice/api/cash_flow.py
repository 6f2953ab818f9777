"""
Cash flow endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, status

from .dependencies import get_backoffice, get_actor_id, http_error
from .schemas import CreateCashFlowRequest, UpdateCashFlowRequest, entry_to_response
from ..system import LoanBackOffice
from ..exceptions import BackOfficeError


router = APIRouter()


@router.get("")
async def list_cash_flow(system: LoanBackOffice = Depends(get_backoffice)):
    """All ledger entries, most recent first"""
    entries = system.list_cash_flow()
    totals = system.cash_flow.summaries(entries)
    return {
        "transactions": [entry_to_response(e) for e in entries],
        "total_income": str(totals.total_income.amount),
        "total_expense": str(totals.total_expense.amount),
        "net": str(totals.net.amount)
    }


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_transaction(
    request: CreateCashFlowRequest,
    system: LoanBackOffice = Depends(get_backoffice),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Record a manual income or expense"""
    try:
        entry = system.append_manual_cash_flow(
            request.type, request.amount, request.description, request.date, actor_id
        )
    except BackOfficeError as e:
        raise http_error(e, actor_id)

    return entry_to_response(entry)


@router.put("/{entry_id}")
async def update_transaction(
    entry_id: int,
    request: UpdateCashFlowRequest,
    system: LoanBackOffice = Depends(get_backoffice),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Edit a manual entry; system-generated entries are refused"""
    try:
        entry = system.update_manual_cash_flow(entry_id, request.changes(), actor_id)
    except BackOfficeError as e:
        raise http_error(e, actor_id)

    return entry_to_response(entry)


@router.delete("/{entry_id}")
async def delete_transaction(
    entry_id: int,
    system: LoanBackOffice = Depends(get_backoffice),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Delete a manual entry; system-generated entries are refused"""
    try:
        system.delete_manual_cash_flow(entry_id, actor_id)
    except BackOfficeError as e:
        raise http_error(e, actor_id)

    return {"message": "Transaction deleted successfully"}
