"""review workflow schema

Revision ID: 20261015_review_workflow
Revises:
Create Date: 2026-10-15
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision = "20261015_review_workflow"
down_revision = None
branch_labels = None
depends_on = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=False),
        sa.Column("first_name", sa.String(length=100), nullable=False),
        sa.Column("last_name", sa.String(length=100), nullable=False),
        sa.Column("phone", sa.String(length=50), nullable=True),
        sa.Column("role", sa.String(length=20), nullable=False, server_default="user"),
        sa.Column("dsa_code", sa.String(length=50), nullable=True),
        sa.Column("bank_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("is_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("verified_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "verified_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("frozen_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("missed_deadline_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("total_reviewed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("approved_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("rejected_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_activity_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "email", name="uq_users_org_email"),
        sa.CheckConstraint("role IN ('admin', 'dsa', 'user')", name="ck_users_role"),
        sa.CheckConstraint("missed_deadline_count >= 0", name="ck_users_missed_deadlines_nonneg"),
        sa.CheckConstraint("total_reviewed >= 0", name="ck_users_total_reviewed_nonneg"),
        sa.CheckConstraint("approved_count >= 0", name="ck_users_approved_nonneg"),
        sa.CheckConstraint("rejected_count >= 0", name="ck_users_rejected_nonneg"),
    )
    op.create_index("ix_users_org_id", "users", ["org_id"])
    op.create_index(
        "ix_users_org_role_status", "users", ["org_id", "role", "is_active", "is_verified"]
    )

    op.create_table(
        "loan_applications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column(
            "applicant_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("application_number", sa.String(length=50), nullable=False),
        sa.Column("status", sa.String(length=30), nullable=False, server_default="pending"),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("approval_threshold", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("review_deadline", sa.DateTime(timezone=True), nullable=True),
        sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "approved_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "rejected_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("escalated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("resolution_notes", sa.Text(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("org_id", "application_number", name="uq_loan_app_org_number"),
        sa.CheckConstraint(
            "status IN ('pending', 'under_review', 'approved', 'rejected', 'needs_admin_decision')",
            name="ck_loan_app_status",
        ),
        sa.CheckConstraint("approval_threshold >= 0", name="ck_loan_app_threshold_nonneg"),
        sa.CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
    )
    op.create_index("ix_loan_applications_org_id", "loan_applications", ["org_id"])
    op.create_index("ix_loan_applications_applicant_id", "loan_applications", ["applicant_id"])
    op.create_index("ix_loan_applications_status", "loan_applications", ["status"])
    op.create_index(
        "ix_loan_applications_org_status_deadline",
        "loan_applications",
        ["org_id", "status", "review_deadline"],
    )

    op.create_table(
        "application_reviews",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "reviewer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="RESTRICT"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("verdict", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("comment", sa.Text(), nullable=True),
        sa.Column("decided_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "application_id", "reviewer_id", name="uq_application_reviews_reviewer"
        ),
        sa.CheckConstraint(
            "verdict IN ('pending', 'approved', 'rejected')",
            name="ck_application_reviews_verdict",
        ),
        sa.CheckConstraint("position >= 0", name="ck_application_reviews_position_nonneg"),
    )
    op.create_index("ix_application_reviews_org_id", "application_reviews", ["org_id"])
    op.create_index(
        "ix_application_reviews_application_id", "application_reviews", ["application_id"]
    )
    op.create_index(
        "ix_application_reviews_org_reviewer_verdict",
        "application_reviews",
        ["org_id", "reviewer_id", "verdict"],
    )

    op.create_table(
        "reactivation_requests",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column(
            "reviewer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("clarification", sa.Text(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column(
            "requested_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "reviewed_by_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_notes", sa.Text(), nullable=True),
        sa.Column(
            "updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_reactivation_requests_status",
        ),
        sa.CheckConstraint(
            "char_length(reason) >= 10", name="ck_reactivation_requests_reason_len"
        ),
        sa.CheckConstraint(
            "char_length(clarification) >= 20",
            name="ck_reactivation_requests_clarification_len",
        ),
    )
    op.create_index("ix_reactivation_requests_org_id", "reactivation_requests", ["org_id"])
    op.create_index(
        "ix_reactivation_requests_reviewer_id", "reactivation_requests", ["reviewer_id"]
    )
    op.create_index(
        "ix_reactivation_requests_org_status", "reactivation_requests", ["org_id", "status"]
    )
    op.create_index(
        "uq_reactivation_requests_one_pending",
        "reactivation_requests",
        ["reviewer_id"],
        unique=True,
        postgresql_where=sa.text("status = 'pending'"),
    )

    op.create_table(
        "reviewer_missed_deadlines",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column(
            "reviewer_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("users.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "application_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("loan_applications.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("review_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "recorded_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
        sa.UniqueConstraint(
            "reviewer_id",
            "application_id",
            "review_deadline",
            name="uq_reviewer_missed_deadlines_cycle",
        ),
    )
    op.create_index(
        "ix_reviewer_missed_deadlines_org_id", "reviewer_missed_deadlines", ["org_id"]
    )
    op.create_index(
        "ix_reviewer_missed_deadlines_reviewer_id", "reviewer_missed_deadlines", ["reviewer_id"]
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("org_id", sa.String(), nullable=False),
        sa.Column("actor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("resource_type", sa.String(length=255), nullable=False),
        sa.Column("resource_id", sa.String(length=255), nullable=False),
        sa.Column("old_value", sa.JSON(), nullable=True),
        sa.Column("new_value", sa.JSON(), nullable=True),
        sa.Column("changes", sa.JSON(), nullable=True),
        sa.Column("summary", sa.Text(), nullable=True),
        sa.Column(
            "created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()
        ),
    )
    op.create_index("ix_audit_logs_org_id", "audit_logs", ["org_id"])
    op.create_index(
        "ix_audit_logs_org_resource", "audit_logs", ["org_id", "resource_type", "resource_id"]
    )


def downgrade() -> None:
    op.drop_index("ix_audit_logs_org_resource", table_name="audit_logs")
    op.drop_index("ix_audit_logs_org_id", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index(
        "ix_reviewer_missed_deadlines_reviewer_id", table_name="reviewer_missed_deadlines"
    )
    op.drop_index("ix_reviewer_missed_deadlines_org_id", table_name="reviewer_missed_deadlines")
    op.drop_table("reviewer_missed_deadlines")
    op.drop_index("uq_reactivation_requests_one_pending", table_name="reactivation_requests")
    op.drop_index("ix_reactivation_requests_org_status", table_name="reactivation_requests")
    op.drop_index("ix_reactivation_requests_reviewer_id", table_name="reactivation_requests")
    op.drop_index("ix_reactivation_requests_org_id", table_name="reactivation_requests")
    op.drop_table("reactivation_requests")
    op.drop_index(
        "ix_application_reviews_org_reviewer_verdict", table_name="application_reviews"
    )
    op.drop_index("ix_application_reviews_application_id", table_name="application_reviews")
    op.drop_index("ix_application_reviews_org_id", table_name="application_reviews")
    op.drop_table("application_reviews")
    op.drop_index("ix_loan_applications_org_status_deadline", table_name="loan_applications")
    op.drop_index("ix_loan_applications_status", table_name="loan_applications")
    op.drop_index("ix_loan_applications_applicant_id", table_name="loan_applications")
    op.drop_index("ix_loan_applications_org_id", table_name="loan_applications")
    op.drop_table("loan_applications")
    op.drop_index("ix_users_org_role_status", table_name="users")
    op.drop_index("ix_users_org_id", table_name="users")
    op.drop_table("users")
