"""
Dashboard and report endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .dependencies import get_backoffice, http_error
from .schemas import dashboard_to_response, report_to_response
from ..system import LoanBackOffice
from ..exceptions import BackOfficeError


router = APIRouter()
dashboard_router = APIRouter()


@dashboard_router.get("")
async def get_dashboard(system: LoanBackOffice = Depends(get_backoffice)):
    """Headline figures and recent activity"""
    return dashboard_to_response(system.get_dashboard_summary())


@router.get("/cash-flow")
async def cash_flow_report(
    start_date: Optional[str] = Query(None, alias="startDate"),
    end_date: Optional[str] = Query(None, alias="endDate"),
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    system: LoanBackOffice = Depends(get_backoffice)
):
    """Daily income and expense within a date range"""
    try:
        result = system.get_cash_flow_report(start_date, end_date, sort_by, sort_order)
    except BackOfficeError as e:
        raise http_error(e)
    return report_to_response(result)


@router.get("/loan-applications")
async def loan_status_report(
    status: Optional[str] = None,
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    system: LoanBackOffice = Depends(get_backoffice)
):
    """Application counts per status"""
    try:
        result = system.get_loan_status_report(status, sort_by, sort_order)
    except BackOfficeError as e:
        raise http_error(e)
    return report_to_response(result)


@router.get("/loan-repayments")
async def loan_repayment_report(
    sort_by: Optional[str] = Query(None, alias="sortBy"),
    sort_order: Optional[str] = Query(None, alias="sortOrder"),
    system: LoanBackOffice = Depends(get_backoffice)
):
    """Repayment progress per approved loan"""
    result = system.get_loan_repayment_report(sort_by, sort_order)
    return report_to_response(result)
