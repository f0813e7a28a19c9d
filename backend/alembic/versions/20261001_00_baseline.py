"""Baseline schema: directory, measurements, alerts, notifications.

Revision ID: 20261001_00
Revises:
Create Date: 2026-10-01 00:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "20261001_00"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "patients",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=True),
        *_timestamps(),
    )
    op.create_table(
        "clinicians",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(200), nullable=False),
        sa.Column("email", sa.String(255), nullable=False, unique=True),
        *_timestamps(),
    )
    op.create_table(
        "enrollments",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("clinician_id", sa.Integer(), sa.ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="ACTIVE"),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column("enrolled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("discharged_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("patient_id", "clinician_id", name="uq_enrollments_patient_clinician"),
    )
    op.create_index("ix_enrollments_patient_id", "enrollments", ["patient_id"])
    op.create_index("ix_enrollments_clinician_id", "enrollments", ["clinician_id"])
    op.create_index(
        "ix_enrollments_patient_status_primary",
        "enrollments",
        ["patient_id", "status", "is_primary"],
    )

    op.create_table(
        "measurements",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("value", sa.Float(), nullable=False),
        sa.Column("unit", sa.String(16), nullable=False),
        sa.Column("input_unit", sa.String(16), nullable=True),
        sa.Column("source", sa.String(40), nullable=False, server_default="manual"),
        sa.Column("external_id", sa.String(120), nullable=True),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("source", "external_id", name="uq_measurements_source_external_id"),
    )
    op.create_index("ix_measurements_patient_id", "measurements", ["patient_id"])
    op.create_index(
        "ix_measurements_patient_type_timestamp",
        "measurements",
        ["patient_id", "type", "timestamp"],
    )

    op.create_table(
        "interaction_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("clinician_id", sa.Integer(), sa.ForeignKey("clinicians.id", ondelete="SET NULL"), nullable=True),
        sa.Column("interaction_type", sa.String(40), nullable=False),
        sa.Column("duration_seconds", sa.Integer(), nullable=True),
        sa.Column("metadata", postgresql.JSONB(), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_interaction_logs_patient_id", "interaction_logs", ["patient_id"])
    op.create_index(
        "ix_interaction_logs_patient_timestamp",
        "interaction_logs",
        ["patient_id", "timestamp"],
    )

    op.create_table(
        "alerts",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("rule_id", sa.String(64), nullable=False),
        sa.Column("rule_name", sa.String(200), nullable=False),
        sa.Column("severity", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="OPEN"),
        sa.Column("inputs", postgresql.JSONB(), nullable=False),
        sa.Column("summary_text", sa.Text(), nullable=True),
        sa.Column("triggered_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("last_notified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("acknowledged_by", sa.Integer(), sa.ForeignKey("clinicians.id", ondelete="SET NULL"), nullable=True),
        sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_alerts_patient_id", "alerts", ["patient_id"])
    op.create_index("ix_alerts_patient_status", "alerts", ["patient_id", "status"])
    op.create_index("ix_alerts_triggered_at", "alerts", ["triggered_at"])
    # At most one OPEN alert per (patient, rule).
    op.create_index(
        "uq_alerts_open_patient_rule",
        "alerts",
        ["patient_id", "rule_id"],
        unique=True,
        postgresql_where=sa.text("status = 'OPEN'"),
    )

    op.create_table(
        "notification_logs",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("clinician_id", sa.Integer(), sa.ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=True),
        sa.Column("patient_id", sa.Integer(), sa.ForeignKey("patients.id", ondelete="CASCADE"), nullable=False),
        sa.Column("alert_id", sa.Integer(), sa.ForeignKey("alerts.id", ondelete="SET NULL"), nullable=True),
        sa.Column("channel", sa.String(16), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("recipient", sa.String(255), nullable=True),
        sa.Column("subject", sa.String(255), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("sent_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_notification_logs_alert_id", "notification_logs", ["alert_id"])
    op.create_index(
        "ix_notification_logs_clinician_patient_sent",
        "notification_logs",
        ["clinician_id", "patient_id", "sent_at"],
    )

    op.create_table(
        "notification_preferences",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("clinician_id", sa.Integer(), sa.ForeignKey("clinicians.id", ondelete="CASCADE"), nullable=False, unique=True),
        sa.Column("email_enabled", sa.Boolean(), nullable=False),
        sa.Column("notify_on_critical", sa.Boolean(), nullable=False),
        sa.Column("notify_on_warning", sa.Boolean(), nullable=False),
        sa.Column("notify_on_info", sa.Boolean(), nullable=False),
        *_timestamps(),
    )


def downgrade() -> None:
    op.drop_table("notification_preferences")
    op.drop_table("notification_logs")
    op.drop_index("uq_alerts_open_patient_rule", table_name="alerts")
    op.drop_table("alerts")
    op.drop_table("interaction_logs")
    op.drop_table("measurements")
    op.drop_table("enrollments")
    op.drop_table("clinicians")
    op.drop_table("patients")
