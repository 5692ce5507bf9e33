import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loan_review.db.base import Base


class LoanApplication(Base):
    __tablename__ = "loan_applications"
    __table_args__ = (
        UniqueConstraint("org_id", "application_number", name="uq_loan_app_org_number"),
        CheckConstraint(
            "status IN ('pending', 'under_review', 'approved', 'rejected', 'needs_admin_decision')",
            name="ck_loan_app_status",
        ),
        CheckConstraint("approval_threshold >= 0", name="ck_loan_app_threshold_nonneg"),
        CheckConstraint("version >= 1", name="ck_loan_app_version_positive"),
        Index("ix_loan_applications_org_status_deadline", "org_id", "status", "review_deadline"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    applicant_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    application_number = Column(String(50), nullable=False)
    status = Column(String(30), nullable=False, default="pending", index=True)
    version = Column(Integer, nullable=False, default=1)
    approval_threshold = Column(Integer, nullable=False, default=0, server_default="0")
    review_deadline = Column(DateTime(timezone=True), nullable=True)
    assigned_at = Column(DateTime(timezone=True), nullable=True)
    approved_at = Column(DateTime(timezone=True), nullable=True)
    approved_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    rejected_at = Column(DateTime(timezone=True), nullable=True)
    rejected_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    rejection_reason = Column(Text, nullable=True)
    escalated_at = Column(DateTime(timezone=True), nullable=True)
    resolution_notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    reviews = relationship(
        "ApplicationReview",
        back_populates="application",
        order_by="ApplicationReview.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def assigned_reviewer_ids(self) -> list:
        return [review.reviewer_id for review in self.reviews or []]
