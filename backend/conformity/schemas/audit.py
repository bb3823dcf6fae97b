"""Pydantic schemas for the read-only audit ledger surface."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field


class AuditEntryOut(BaseModel):
    id: UUID
    actor_id: Optional[UUID] = None
    event: str
    entity_type: str
    entity_id: str
    changes: dict[str, Any] = Field(default_factory=dict)
    tag: Optional[str] = None
    url: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditEntryPage(BaseModel):
    items: list[AuditEntryOut]
    total: int
    limit: int
    offset: int


class AuditReportItem(BaseModel):
    entity_type: str
    event: str
    count: int
