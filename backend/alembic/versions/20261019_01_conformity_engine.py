from __future__ import annotations

from typing import Sequence

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "20261019_01"
down_revision: str | Sequence[str] | None = None
branch_labels = None
depends_on = None


def _uuid() -> postgresql.UUID:
    return postgresql.UUID(as_uuid=True)


def upgrade() -> None:
    """Create reference data, tests, measurements, non-conformities and the audit ledger."""

    op.create_table(
        "roles",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("name", sa.String(), nullable=False, unique=True),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("access_level", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("permissions", sa.JSON(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "personnel",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("email", sa.String(), nullable=False, unique=True),
        sa.Column("full_name", sa.String(), nullable=True),
        sa.Column("role_id", _uuid(), sa.ForeignKey("roles.id"), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_table(
        "criticality_levels",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("level", sa.Integer(), nullable=False, unique=True),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("max_treatment_hours", sa.Integer(), nullable=False),
    )
    op.create_table(
        "test_types",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("code", sa.String(), nullable=False, unique=True),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_table(
        "checklist_items",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("test_type_id", _uuid(), sa.ForeignKey("test_types.id"), nullable=False),
        sa.Column("number", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("label", sa.String(), nullable=False),
        sa.Column("reference_value", sa.Float(), nullable=True),
        sa.Column("tolerance_min", sa.Float(), nullable=True),
        sa.Column("tolerance_max", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(), nullable=True),
        sa.Column("criticality", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("mandatory", sa.Boolean(), nullable=False, server_default=sa.true()),
    )
    op.create_index("ix_checklist_items_test_type_id", "checklist_items", ["test_type_id"])

    op.create_table(
        "industrial_tests",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("number", sa.String(), nullable=False, unique=True),
        sa.Column("test_type_id", _uuid(), sa.ForeignKey("test_types.id"), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="PLANIFIE"),
        sa.Column("criticality", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("responsible_id", _uuid(), sa.ForeignKey("personnel.id"), nullable=True),
        sa.Column("created_by", _uuid(), sa.ForeignKey("personnel.id"), nullable=True),
        sa.Column("location", sa.String(), nullable=True),
        sa.Column("planned_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("observations", sa.Text(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_duration_hours", sa.Float(), nullable=True),
        sa.Column("result", sa.String(), nullable=True),
        sa.Column("conformity_rate", sa.Float(), nullable=True),
        sa.Column("status_reason", sa.String(), nullable=True),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("lock_override_reason", sa.String(), nullable=True),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )

    op.create_table(
        "measurements",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("test_id", _uuid(), sa.ForeignKey("industrial_tests.id"), nullable=False),
        sa.Column("checklist_item_id", _uuid(), sa.ForeignKey("checklist_items.id"), nullable=True),
        sa.Column("parameter", sa.String(), nullable=False),
        sa.Column("measured_value", sa.Float(), nullable=False),
        sa.Column("reference_value", sa.Float(), nullable=True),
        sa.Column("tolerance_min", sa.Float(), nullable=True),
        sa.Column("tolerance_max", sa.Float(), nullable=True),
        sa.Column("unit", sa.String(), nullable=True),
        sa.Column("criticality", sa.Integer(), nullable=True),
        sa.Column("deviation_abs", sa.Float(), nullable=True),
        sa.Column("deviation_pct", sa.Float(), nullable=True),
        sa.Column("is_conform", sa.Boolean(), nullable=True),
        sa.Column("measured_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("operator_id", _uuid(), sa.ForeignKey("personnel.id"), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_measurements_test_id", "measurements", ["test_id"])

    op.create_table(
        "non_conformities",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("number", sa.String(), nullable=False, unique=True),
        sa.Column("test_id", _uuid(), sa.ForeignKey("industrial_tests.id"), nullable=False),
        sa.Column("measurement_id", _uuid(), sa.ForeignKey("measurements.id"), nullable=True),
        sa.Column("criticality", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(), nullable=False, server_default="OUVERTE"),
        sa.Column("origin", sa.String(), nullable=False, server_default="manual"),
        sa.Column("nc_type", sa.String(), nullable=True),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("potential_impact", sa.Text(), nullable=True),
        sa.Column("detected_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("sla_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("detector_id", _uuid(), sa.ForeignKey("personnel.id"), nullable=True),
        sa.Column("occurrence_count", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("root_cause", sa.Text(), nullable=True),
        sa.Column("corrective_actions", sa.Text(), nullable=True),
        sa.Column("analyzed_by_id", _uuid(), sa.ForeignKey("personnel.id"), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_by_id", _uuid(), sa.ForeignKey("personnel.id"), nullable=True),
        sa.Column("closure_comment", sa.Text(), nullable=True),
        sa.Column("reopen_reason", sa.Text(), nullable=True),
        sa.Column("sla_alerted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index("ix_non_conformities_test_id", "non_conformities", ["test_id"])
    op.create_index("ix_non_conformities_measurement_id", "non_conformities", ["measurement_id"])

    op.create_table(
        "audit_entries",
        sa.Column("id", _uuid(), primary_key=True),
        sa.Column("actor_id", _uuid(), sa.ForeignKey("personnel.id"), nullable=True),
        sa.Column("event", sa.String(), nullable=False),
        sa.Column("entity_type", sa.String(), nullable=False),
        sa.Column("entity_id", sa.String(), nullable=False),
        sa.Column("changes", sa.JSON(), nullable=False),
        sa.Column("tag", sa.String(), nullable=True),
        sa.Column("url", sa.String(), nullable=True),
        sa.Column("ip_address", sa.String(), nullable=True),
        sa.Column("user_agent", sa.String(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_audit_entries_actor_id", "audit_entries", ["actor_id"])
    op.create_index("ix_audit_entries_entity_type", "audit_entries", ["entity_type"])
    op.create_index("ix_audit_entries_entity_id", "audit_entries", ["entity_id"])
    op.create_index("ix_audit_entries_entity", "audit_entries", ["entity_type", "entity_id"])


def downgrade() -> None:
    """Drop the conformity engine tables."""

    op.drop_index("ix_audit_entries_entity", table_name="audit_entries")
    op.drop_index("ix_audit_entries_entity_id", table_name="audit_entries")
    op.drop_index("ix_audit_entries_entity_type", table_name="audit_entries")
    op.drop_index("ix_audit_entries_actor_id", table_name="audit_entries")
    op.drop_table("audit_entries")
    op.drop_index("ix_non_conformities_measurement_id", table_name="non_conformities")
    op.drop_index("ix_non_conformities_test_id", table_name="non_conformities")
    op.drop_table("non_conformities")
    op.drop_index("ix_measurements_test_id", table_name="measurements")
    op.drop_table("measurements")
    op.drop_table("industrial_tests")
    op.drop_index("ix_checklist_items_test_type_id", table_name="checklist_items")
    op.drop_table("checklist_items")
    op.drop_table("test_types")
    op.drop_table("criticality_levels")
    op.drop_table("personnel")
    op.drop_table("roles")
