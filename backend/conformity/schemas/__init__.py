"""Pydantic schemas consolidating the conformity API contracts."""

# purpose: aggregate request and response schemas for FastAPI surfaces and services
# status: active

from .audit import AuditEntryOut, AuditEntryPage, AuditReportItem
from .industrial_tests import (
    IndustrialTestCreate,
    IndustrialTestOut,
    IndustrialTestUpdate,
    MeasurementCreate,
    MeasurementOut,
    MeasurementUpdate,
    TransitionRequest,
    UnlockRequest,
)
from .nonconformity import (
    NonConformityAnalysis,
    NonConformityClosure,
    NonConformityCreate,
    NonConformityOut,
    NonConformityReopen,
    NonConformityStats,
    NonConformityUpdate,
)
