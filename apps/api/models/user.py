"""User model."""

from sqlalchemy import Boolean, CheckConstraint, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


ROLE_USER = "USER"
ROLE_ADMIN = "ADMIN"
USER_ROLES = (ROLE_USER, ROLE_ADMIN)


class User(Base):
    """Account holding a credit balance.

    ``credits`` is only written through the ledger helpers in
    ``services.credits`` so it stays equal to the sum of the user's
    credit transactions.
    """

    __tablename__ = "users"
    __table_args__ = (
        CheckConstraint("credits >= 0", name="ck_users_credits_non_negative"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    email = Column(String, unique=True, nullable=False, index=True)
    name = Column(String, nullable=True)
    password_hash = Column(String, nullable=True)
    credits = Column(Integer, nullable=False, default=0)
    role = Column(String, nullable=False, default=ROLE_USER)
    is_active = Column(Boolean, nullable=False, default=True)
    last_login_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    # Relationships
    image_descriptions = relationship("ImageDescription", back_populates="user", cascade="all, delete-orphan")
    credit_transactions = relationship("CreditTransaction", back_populates="user", cascade="all, delete-orphan")
    payment_requests = relationship(
        "PaymentRequest",
        back_populates="user",
        cascade="all, delete-orphan",
        foreign_keys="PaymentRequest.user_id",
    )

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN
