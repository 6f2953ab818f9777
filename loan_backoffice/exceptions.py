"""
Exception Taxonomy

Typed errors raised by the core. Callers (the HTTP adapter, scripts) decide
how to present them; the core never maps them to transport codes itself.
"""

from typing import Any, Dict, List, Optional


class BackOfficeError(Exception):
    """Base exception for all back office errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            return f"{self.message} - {self.details}"
        return self.message


class ValidationError(BackOfficeError):
    """Missing or invalid input; the caller must correct and resubmit."""

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = list(problems or [])
        details = {'problems': self.problems} if self.problems else None
        super().__init__(message, details)


class ConflictError(BackOfficeError):
    """A unique key is already taken."""
    pass


class NotFoundError(BackOfficeError):
    """The referenced entity does not exist."""

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} {entity_id} not found", {'entity': entity, 'id': entity_id})
        self.entity = entity
        self.entity_id = entity_id


class InvalidTransitionError(BackOfficeError):
    """A status change the application state machine does not allow."""

    def __init__(self, application_id: Any, current: str, requested: str):
        super().__init__(
            f"Cannot move application {application_id} from {current} to {requested}",
            {'id': application_id, 'current': current, 'requested': requested}
        )
        self.current = current
        self.requested = requested


class AlreadyPaidError(BackOfficeError):
    """The installment has already been marked as paid."""

    def __init__(self, installment_id: Any):
        super().__init__(f"Installment {installment_id} is already paid", {'id': installment_id})
        self.installment_id = installment_id


class ForbiddenError(BackOfficeError):
    """Attempted mutation of a system-generated ledger entry."""
    pass
