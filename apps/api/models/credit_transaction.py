"""CreditTransaction model for the append-only credit ledger."""

import uuid

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from database import Base


PURCHASE = "PURCHASE"
BONUS = "BONUS"
IMAGE_DESCRIPTION = "IMAGE_DESCRIPTION"
BULK_DESCRIPTION = "BULK_DESCRIPTION"
ADMIN_ADJUSTMENT = "ADMIN_ADJUSTMENT"

TRANSACTION_TYPES = (PURCHASE, BONUS, IMAGE_DESCRIPTION, BULK_DESCRIPTION, ADMIN_ADJUSTMENT)


class CreditTransaction(Base):
    """Immutable credit ledger entry. ``amount`` is signed."""

    __tablename__ = "credit_transactions"
    __table_args__ = (
        Index("ix_credit_transactions_user_type", "user_id", "type"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    type = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="credit_transactions")
