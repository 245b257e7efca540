"""Setting model for runtime-configurable keys."""

from sqlalchemy import Boolean, Column, DateTime, String, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class Setting(Base):
    """Key/value configuration row. ``value`` is stored Fernet-encrypted."""

    __tablename__ = "settings"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    key = Column(String, unique=True, nullable=False, index=True)
    value = Column(Text, nullable=False)
    category = Column(String, nullable=False, default="API")
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
