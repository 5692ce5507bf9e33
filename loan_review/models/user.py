import uuid

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship

from loan_review.db.base import Base


class User(Base):
    """Any account: administrator, reviewer (DSA) or applicant.

    Reviewer-only columns (verification, counters) stay at their defaults for other roles.
    """

    __tablename__ = "users"
    __table_args__ = (
        UniqueConstraint("org_id", "email", name="uq_users_org_email"),
        CheckConstraint("role IN ('admin', 'dsa', 'user')", name="ck_users_role"),
        CheckConstraint("missed_deadline_count >= 0", name="ck_users_missed_deadlines_nonneg"),
        CheckConstraint("total_reviewed >= 0", name="ck_users_total_reviewed_nonneg"),
        CheckConstraint("approved_count >= 0", name="ck_users_approved_nonneg"),
        CheckConstraint("rejected_count >= 0", name="ck_users_rejected_nonneg"),
        Index("ix_users_org_role_status", "org_id", "role", "is_active", "is_verified"),
    )

    id = Column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    org_id = Column(String, nullable=False, index=True)
    email = Column(String(255), nullable=False)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="user")
    dsa_code = Column(String(50), nullable=True)
    bank_name = Column(String(255), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True, server_default="true")
    is_verified = Column(Boolean, nullable=False, default=False, server_default="false")
    verified_at = Column(DateTime(timezone=True), nullable=True)
    verified_by_id = Column(
        UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    frozen_at = Column(DateTime(timezone=True), nullable=True)
    missed_deadline_count = Column(Integer, nullable=False, default=0, server_default="0")
    total_reviewed = Column(Integer, nullable=False, default=0, server_default="0")
    approved_count = Column(Integer, nullable=False, default=0, server_default="0")
    rejected_count = Column(Integer, nullable=False, default=0, server_default="0")
    last_activity_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )

    reactivation_requests = relationship(
        "ReactivationRequest",
        back_populates="reviewer",
        foreign_keys="ReactivationRequest.reviewer_id",
        order_by="ReactivationRequest.requested_at",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_frozen(self) -> bool:
        return not self.is_active
