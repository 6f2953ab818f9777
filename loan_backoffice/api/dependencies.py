"""
Shared API dependencies and error mapping
"""

from typing import Optional

from fastapi import Header, HTTPException, status

from ..system import LoanBackOffice
from ..exceptions import (
    BackOfficeError, ValidationError, ConflictError, NotFoundError,
    InvalidTransitionError, AlreadyPaidError, ForbiddenError
)
from ..logging_config import get_logger, log_action


logger = get_logger("loan_backoffice.api")

# Most specific first
ERROR_STATUS_CODES = (
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (AlreadyPaidError, status.HTTP_400_BAD_REQUEST),
    (ForbiddenError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (ConflictError, status.HTTP_409_CONFLICT),
    (InvalidTransitionError, status.HTTP_409_CONFLICT),
)


_backoffice: Optional[LoanBackOffice] = None


def get_backoffice() -> LoanBackOffice:
    """Back office behind the API, built from configuration on first use"""
    global _backoffice
    if _backoffice is None:
        _backoffice = LoanBackOffice.from_config()
    return _backoffice


def get_actor_id(x_actor_id: Optional[str] = Header(None)) -> Optional[str]:
    """Operator id forwarded by the authenticating proxy"""
    return x_actor_id


def http_error(error: BackOfficeError, actor_id: Optional[str] = None) -> HTTPException:
    """Translate a core error into an HTTP error response"""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            status_code = code
            break

    log_action(logger, "warning", error.message, actor_id=actor_id,
               action=type(error).__name__, extra={'status_code': status_code})

    detail = {"message": error.message}
    if isinstance(error, ValidationError):
        detail["problems"] = error.problems
    return HTTPException(status_code=status_code, detail=detail)
