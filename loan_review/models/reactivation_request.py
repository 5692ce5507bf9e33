import uuid

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loan_review.db.base import Base


class ReactivationRequest(Base):
    __tablename__ = "reactivation_requests"
    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')",
            name="ck_reactivation_requests_status",
        ),
        CheckConstraint("char_length(reason) >= 10", name="ck_reactivation_requests_reason_len"),
        CheckConstraint(
            "char_length(clarification) >= 20",
            name="ck_reactivation_requests_clarification_len",
        ),
        Index(
            "uq_reactivation_requests_one_pending",
            "reviewer_id",
            unique=True,
            postgresql_where=text("status = 'pending'"),
        ),
        Index("ix_reactivation_requests_org_status", "org_id", "status"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    reviewer_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True
    )
    reason = Column(Text, nullable=False)
    clarification = Column(Text, nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    requested_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    reviewed_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    reviewed_at = Column(DateTime(timezone=True), nullable=True)
    admin_notes = Column(Text, nullable=True)
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    reviewer = relationship(
        "User", back_populates="reactivation_requests", foreign_keys=[reviewer_id]
    )
