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


class ApplicationReview(Base):
    """One reviewer's decision slot on an application, created at assignment time."""

    __tablename__ = "application_reviews"
    __table_args__ = (
        UniqueConstraint("application_id", "reviewer_id", name="uq_application_reviews_reviewer"),
        CheckConstraint(
            "verdict IN ('pending', 'approved', 'rejected')",
            name="ck_application_reviews_verdict",
        ),
        CheckConstraint("position >= 0", name="ck_application_reviews_position_nonneg"),
        Index("ix_application_reviews_org_reviewer_verdict", "org_id", "reviewer_id", "verdict"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    application_id = Column(
        UUID(as_uuid=True),
        ForeignKey("loan_applications.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    reviewer_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="RESTRICT"), nullable=False
    )
    position = Column(Integer, nullable=False, default=0)
    verdict = Column(String(20), nullable=False, default="pending")
    comment = Column(Text, nullable=True)
    decided_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())

    application = relationship("LoanApplication", back_populates="reviews")
