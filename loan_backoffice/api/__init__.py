"""
Loan Back Office API Application Factory
"""

from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..system import LoanBackOffice
from .dependencies import get_backoffice
from .applications import router as applications_router
from .cash_flow import router as cash_flow_router
from .repayments import router as repayments_router
from .reporting import router as reporting_router, dashboard_router


def create_app(backoffice: Optional[LoanBackOffice] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        backoffice: Back office to serve; when omitted one is built from
            configuration on the first request
    """
    app = FastAPI(
        title="Loan Back Office API",
        description="Loan applications, repayment schedules and cash flow for a small lender",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if backoffice is not None:
        app.dependency_overrides[get_backoffice] = lambda: backoffice

    app.include_router(applications_router, prefix="/loan-applications", tags=["Loan Applications"])
    app.include_router(cash_flow_router, prefix="/cash-flow", tags=["Cash Flow"])
    app.include_router(repayments_router, prefix="/repayments", tags=["Repayments"])
    app.include_router(dashboard_router, prefix="/dashboard", tags=["Dashboard"])
    app.include_router(reporting_router, prefix="/reports", tags=["Reports"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "loan_backoffice_api",
            "version": __version__
        }

    return app
