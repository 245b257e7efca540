"""PaymentRequest model for manually approved credit purchases."""

import uuid

from sqlalchemy import Column, DateTime, Float, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


STATUS_PENDING = "PENDING"
STATUS_APPROVED = "APPROVED"
STATUS_REJECTED = "REJECTED"
PAYMENT_STATUSES = (STATUS_PENDING, STATUS_APPROVED, STATUS_REJECTED)


class PaymentRequest(Base):
    """User-submitted proof of payment awaiting admin review.

    PENDING moves to APPROVED or REJECTED exactly once; both are terminal.
    """

    __tablename__ = "payment_requests"
    __table_args__ = (
        Index("ix_payment_requests_status_created", "status", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    credits_requested = Column(Integer, nullable=False)
    amount = Column(Float, nullable=False)
    payment_method = Column(String, nullable=False, default="QR_CODE")
    transaction_id = Column(String, nullable=True)
    qr_code_used = Column(String, nullable=True)
    status = Column(String, nullable=False, default=STATUS_PENDING, index=True)
    admin_notes = Column(Text, nullable=True)
    processed_by = Column(String, ForeignKey("users.id"), nullable=True)
    processed_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    user = relationship("User", back_populates="payment_requests", foreign_keys=[user_id])
