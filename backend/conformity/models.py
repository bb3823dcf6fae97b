import enum
import uuid
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy import (
    Column,
    String,
    Boolean,
    DateTime,
    ForeignKey,
    JSON,
    Integer,
    Text,
    Float,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from .database import Base
from .audit import audited, refuse_ledger_mutation


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TestStatus(str, enum.Enum):
    PLANIFIE = "PLANIFIE"
    EN_COURS = "EN_COURS"
    TERMINE = "TERMINE"
    SUSPENDU = "SUSPENDU"
    ANNULE = "ANNULE"


class TestResult(str, enum.Enum):
    CONFORME = "CONFORME"
    NON_CONFORME = "NON_CONFORME"
    PARTIEL = "PARTIEL"
    NON_APPLICABLE = "NON_APPLICABLE"


class NonConformityStatus(str, enum.Enum):
    OUVERTE = "OUVERTE"
    EN_ANALYSE = "EN_ANALYSE"
    EN_TRAITEMENT = "EN_TRAITEMENT"
    CLOTUREE = "CLOTUREE"


OPEN_NONCONFORMITY_STATUSES = (
    NonConformityStatus.OUVERTE.value,
    NonConformityStatus.EN_ANALYSE.value,
    NonConformityStatus.EN_TRAITEMENT.value,
)


class Role(Base):
    __tablename__ = "roles"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    name = Column(String, unique=True, nullable=False)
    description = Column(String)
    access_level = Column(Integer, nullable=False, default=1)
    # resource name -> list of allowed actions
    permissions = Column(JSON, default=dict, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    members = relationship("Personnel", back_populates="role")


class Personnel(Base):
    __tablename__ = "personnel"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    email = Column(String, unique=True, nullable=False)
    full_name = Column(String)
    role_id = Column(UUID(as_uuid=True), ForeignKey("roles.id"), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    role = relationship("Role", back_populates="members")


class CriticalityLevel(Base):
    __tablename__ = "criticality_levels"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, unique=True, nullable=False)
    level = Column(Integer, unique=True, nullable=False)
    label = Column(String, nullable=False)
    max_treatment_hours = Column(Integer, nullable=False)


class TestType(Base):
    __tablename__ = "test_types"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code = Column(String, unique=True, nullable=False)
    label = Column(String, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    checklist_items = relationship(
        "ChecklistItem",
        back_populates="test_type",
        cascade="all, delete-orphan",
        order_by="ChecklistItem.number",
    )


class ChecklistItem(Base):
    __tablename__ = "checklist_items"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    test_type_id = Column(UUID(as_uuid=True), ForeignKey("test_types.id"), nullable=False, index=True)
    number = Column(Integer, nullable=False, default=1)
    label = Column(String, nullable=False)
    reference_value = Column(Float, nullable=True)
    tolerance_min = Column(Float, nullable=True)
    tolerance_max = Column(Float, nullable=True)
    unit = Column(String, nullable=True)
    criticality = Column(Integer, nullable=False, default=1)
    mandatory = Column(Boolean, nullable=False, default=True)

    test_type = relationship("TestType", back_populates="checklist_items")


@audited("tests", tag="TESTS_INDUSTRIELS", exclude=("version",))
class IndustrialTest(Base):
    __tablename__ = "industrial_tests"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    number = Column(String, unique=True, nullable=False)
    test_type_id = Column(UUID(as_uuid=True), ForeignKey("test_types.id"), nullable=False)
    status = Column(String, nullable=False, default=TestStatus.PLANIFIE.value)
    criticality = Column(Integer, nullable=False, default=1)
    responsible_id = Column(UUID(as_uuid=True), ForeignKey("personnel.id"), nullable=True)
    created_by = Column(UUID(as_uuid=True), ForeignKey("personnel.id"), nullable=True)
    location = Column(String, nullable=True)
    planned_date = Column(DateTime(timezone=True), nullable=True)
    observations = Column(Text, nullable=True)
    started_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)
    actual_duration_hours = Column(Float, nullable=True)
    result = Column(String, nullable=True)
    conformity_rate = Column(Float, nullable=True)
    status_reason = Column(String, nullable=True)
    # purpose: seal state guarded by services.locking
    # status: active
    is_locked = Column(Boolean, nullable=False, default=False)
    locked_at = Column(DateTime(timezone=True), nullable=True)
    lock_override_reason = Column(String, nullable=True)
    version = Column(Integer, nullable=False, default=1)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __mapper_args__ = {"version_id_col": version}

    test_type = relationship("TestType")
    responsible = relationship("Personnel", foreign_keys=[responsible_id])
    creator = relationship("Personnel", foreign_keys=[created_by])
    measurements = relationship(
        "Measurement",
        back_populates="test",
        order_by="Measurement.measured_at",
    )
    nonconformities = relationship("NonConformity", back_populates="test")


@audited("measurements", tag="MESURES")
class Measurement(Base):
    __tablename__ = "measurements"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    test_id = Column(UUID(as_uuid=True), ForeignKey("industrial_tests.id"), nullable=False, index=True)
    checklist_item_id = Column(UUID(as_uuid=True), ForeignKey("checklist_items.id"), nullable=True)
    parameter = Column(String, nullable=False)
    measured_value = Column(Float, nullable=False)
    reference_value = Column(Float, nullable=True)
    tolerance_min = Column(Float, nullable=True)
    tolerance_max = Column(Float, nullable=True)
    unit = Column(String, nullable=True)
    criticality = Column(Integer, nullable=True)
    # derived server-side by services.conformity, never taken from callers
    deviation_abs = Column(Float, nullable=True)
    deviation_pct = Column(Float, nullable=True)
    is_conform = Column(Boolean, nullable=True)
    measured_at = Column(DateTime(timezone=True), default=_utcnow)
    operator_id = Column(UUID(as_uuid=True), ForeignKey("personnel.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    test = relationship("IndustrialTest", back_populates="measurements")
    checklist_item = relationship("ChecklistItem")


@audited("non_conformities", tag="NON_CONFORMITES")
class NonConformity(Base):
    __tablename__ = "non_conformities"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    number = Column(String, unique=True, nullable=False)
    test_id = Column(UUID(as_uuid=True), ForeignKey("industrial_tests.id"), nullable=False, index=True)
    measurement_id = Column(UUID(as_uuid=True), ForeignKey("measurements.id"), nullable=True, index=True)
    criticality = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default=NonConformityStatus.OUVERTE.value)
    origin = Column(String, nullable=False, default="manual")
    nc_type = Column(String, nullable=True)
    description = Column(Text, nullable=True)
    potential_impact = Column(Text, nullable=True)
    detected_at = Column(DateTime(timezone=True), nullable=False)
    sla_deadline = Column(DateTime(timezone=True), nullable=False)
    detector_id = Column(UUID(as_uuid=True), ForeignKey("personnel.id"), nullable=True)
    occurrence_count = Column(Integer, nullable=False, default=1)
    root_cause = Column(Text, nullable=True)
    corrective_actions = Column(Text, nullable=True)
    analyzed_by_id = Column(UUID(as_uuid=True), ForeignKey("personnel.id"), nullable=True)
    closed_at = Column(DateTime(timezone=True), nullable=True)
    closed_by_id = Column(UUID(as_uuid=True), ForeignKey("personnel.id"), nullable=True)
    closure_comment = Column(Text, nullable=True)
    reopen_reason = Column(Text, nullable=True)
    sla_alerted_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    test = relationship("IndustrialTest", back_populates="nonconformities")
    measurement = relationship("Measurement")
    detector = relationship("Personnel", foreign_keys=[detector_id])


class AuditEntry(Base):
    __tablename__ = "audit_entries"
    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    actor_id = Column(UUID(as_uuid=True), ForeignKey("personnel.id"), nullable=True, index=True)
    event = Column(String, nullable=False)
    entity_type = Column(String, nullable=False, index=True)
    entity_id = Column(String, nullable=False, index=True)
    # field -> {"old": ..., "new": ...}
    changes = Column(JSON, default=dict, nullable=False)
    tag = Column(String, nullable=True)
    url = Column(String, nullable=True)
    ip_address = Column(String, nullable=True)
    user_agent = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        sa.Index("ix_audit_entries_entity", "entity_type", "entity_id"),
    )


sa.event.listen(AuditEntry, "before_update", refuse_ledger_mutation)
sa.event.listen(AuditEntry, "before_delete", refuse_ledger_mutation)
