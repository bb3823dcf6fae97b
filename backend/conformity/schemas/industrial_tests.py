"""Pydantic schemas for industrial tests and their measurements."""

from __future__ import annotations

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class IndustrialTestCreate(BaseModel):
    test_type_id: UUID
    criticality: int = Field(default=1, ge=1, le=4)
    responsible_id: Optional[UUID] = None
    location: Optional[str] = None
    planned_date: Optional[datetime] = None
    observations: Optional[str] = None


class IndustrialTestUpdate(BaseModel):
    responsible_id: Optional[UUID] = None
    criticality: Optional[int] = Field(default=None, ge=1, le=4)
    location: Optional[str] = None
    planned_date: Optional[datetime] = None
    observations: Optional[str] = None


class IndustrialTestOut(BaseModel):
    id: UUID
    number: str
    test_type_id: UUID
    status: str
    criticality: int
    responsible_id: Optional[UUID] = None
    created_by: Optional[UUID] = None
    location: Optional[str] = None
    planned_date: Optional[datetime] = None
    observations: Optional[str] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    actual_duration_hours: Optional[float] = None
    result: Optional[str] = None
    conformity_rate: Optional[float] = None
    status_reason: Optional[str] = None
    is_locked: bool
    locked_at: Optional[datetime] = None
    lock_override_reason: Optional[str] = None
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class TransitionRequest(BaseModel):
    """Optional guard and justification sent with a lifecycle transition."""

    expected_version: Optional[int] = None
    reason: Optional[str] = None


class UnlockRequest(BaseModel):
    reason: Optional[str] = None


class MeasurementCreate(BaseModel):
    checklist_item_id: Optional[UUID] = None
    parameter: Optional[str] = None
    measured_value: float
    reference_value: Optional[float] = None
    tolerance_min: Optional[float] = None
    tolerance_max: Optional[float] = None
    unit: Optional[str] = None
    criticality: Optional[int] = Field(default=None, ge=1, le=4)
    measured_at: Optional[datetime] = None
    # accepted for compatibility, always recomputed server-side
    deviation_abs: Optional[float] = None
    deviation_pct: Optional[float] = None
    is_conform: Optional[bool] = None


class MeasurementUpdate(BaseModel):
    parameter: Optional[str] = None
    measured_value: Optional[float] = None
    reference_value: Optional[float] = None
    tolerance_min: Optional[float] = None
    tolerance_max: Optional[float] = None
    unit: Optional[str] = None
    criticality: Optional[int] = Field(default=None, ge=1, le=4)
    measured_at: Optional[datetime] = None
    deviation_abs: Optional[float] = None
    deviation_pct: Optional[float] = None
    is_conform: Optional[bool] = None


class MeasurementOut(BaseModel):
    id: UUID
    test_id: UUID
    checklist_item_id: Optional[UUID] = None
    parameter: str
    measured_value: float
    reference_value: Optional[float] = None
    tolerance_min: Optional[float] = None
    tolerance_max: Optional[float] = None
    unit: Optional[str] = None
    criticality: Optional[int] = None
    deviation_abs: Optional[float] = None
    deviation_pct: Optional[float] = None
    is_conform: Optional[bool] = None
    measured_at: Optional[datetime] = None
    operator_id: Optional[UUID] = None

    model_config = ConfigDict(from_attributes=True)
