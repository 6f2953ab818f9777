"""
Loan application endpoints
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .dependencies import get_backoffice, get_actor_id, http_error
from .schemas import (
    CreateApplicationRequest, UpdateStatusRequest,
    application_to_response, scheduled_installment_to_response, installment_to_response
)
from ..system import LoanBackOffice
from ..applications import ApplicationStatus
from ..cash_flow import parse_date
from ..exceptions import BackOfficeError, NotFoundError, ValidationError


router = APIRouter()


@router.post("", status_code=status.HTTP_201_CREATED)
async def submit_application(
    request: CreateApplicationRequest,
    system: LoanBackOffice = Depends(get_backoffice),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Submit a new loan application"""
    try:
        application = system.submit_application(request.application_data(), request.uploads(), actor_id)
    except BackOfficeError as e:
        raise http_error(e, actor_id)

    return {
        "id": application.id,
        "status": application.status.value,
        "message": "Loan application submitted successfully"
    }


@router.get("")
async def list_applications(
    status_filter: Optional[str] = Query(None, alias="status"),
    system: LoanBackOffice = Depends(get_backoffice)
):
    """List applications, newest first"""
    try:
        wanted = ApplicationStatus(status_filter) if status_filter else None
    except ValueError:
        raise http_error(ValidationError("Invalid status filter", [f"unknown status: {status_filter}"]))
    applications = system.list_applications(wanted)
    return {
        "applications": [application_to_response(a) for a in applications],
        "count": len(applications)
    }


@router.get("/{application_id}")
async def get_application(
    application_id: int,
    system: LoanBackOffice = Depends(get_backoffice)
):
    """Get application details with its installments"""
    application = system.get_application(application_id)
    if application is None:
        raise http_error(NotFoundError("Application", application_id))

    response = application_to_response(application)
    response["installments"] = [installment_to_response(i) for i in system.list_installments(application_id)]
    return response


@router.get("/{application_id}/schedule")
async def preview_schedule(
    application_id: int,
    anchor_date: Optional[str] = None,
    system: LoanBackOffice = Depends(get_backoffice)
):
    """Repayment schedule the application would get on approval"""
    try:
        schedule = system.preview_schedule(application_id, anchor_date)
    except BackOfficeError as e:
        raise http_error(e)

    return {
        "application_id": application_id,
        "strategy": system.schedule_generator.strategy.value,
        "schedule": [scheduled_installment_to_response(row) for row in schedule]
    }


@router.put("/{application_id}/status")
async def update_status(
    application_id: int,
    request: UpdateStatusRequest,
    system: LoanBackOffice = Depends(get_backoffice),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Approve or reject a pending application"""
    try:
        decided_on = parse_date(request.decision_date, "decision_date") if request.decision_date else None
        application = system.transition_application_status(
            application_id, request.status, actor_id=actor_id, today=decided_on
        )
    except BackOfficeError as e:
        raise http_error(e, actor_id)

    return {
        "id": application.id,
        "status": application.status.value,
        "message": f"Loan application {application.status.value} successfully"
    }


@router.delete("/{application_id}")
async def delete_application(
    application_id: int,
    system: LoanBackOffice = Depends(get_backoffice),
    actor_id: Optional[str] = Depends(get_actor_id)
):
    """Delete an application and everything attached to it"""
    try:
        system.delete_application(application_id, actor_id)
    except BackOfficeError as e:
        raise http_error(e, actor_id)

    return {"message": "Loan application deleted successfully"}
