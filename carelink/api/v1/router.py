"""API v1 router aggregating all endpoints."""

from fastapi import APIRouter

from carelink.api.v1 import (
    consents,
    consultations,
    health,
    invoices,
    patients,
    payments,
    prescriptions,
    referrals,
)

api_router = APIRouter()

# Health check
api_router.include_router(
    health.router,
    prefix="/health",
    tags=["health"],
)

# Consent and access
api_router.include_router(
    consents.router,
    prefix="/consents",
    tags=["consents"],
)

# Referrals
api_router.include_router(
    referrals.router,
    prefix="/referrals",
    tags=["referrals"],
)

# Consultations
api_router.include_router(
    consultations.router,
    prefix="/consultations",
    tags=["consultations"],
)

# Prescriptions
api_router.include_router(
    prescriptions.router,
    prefix="/prescriptions",
    tags=["prescriptions"],
)

# Billing
api_router.include_router(
    invoices.router,
    prefix="/invoices",
    tags=["invoices"],
)

api_router.include_router(
    payments.router,
    prefix="/payments",
    tags=["payments"],
)

# Patient timeline
api_router.include_router(
    patients.router,
    prefix="/patients",
    tags=["patients"],
)
