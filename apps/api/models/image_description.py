"""ImageDescription model for persisted vision API results."""

from sqlalchemy import Column, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid

from database import Base


class ImageDescription(Base):
    """One successfully described image."""

    __tablename__ = "image_descriptions"
    __table_args__ = (
        Index("ix_image_descriptions_user_created", "user_id", "created_at"),
    )

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    filename = Column(String, nullable=False)
    original_url = Column(String, nullable=True)
    description = Column(Text, nullable=False)
    confidence = Column(Integer, nullable=False, default=95)
    source = Column(String, nullable=False, default="ideogram")  # ideogram, fallback
    file_size = Column(Integer, nullable=True)
    mime_type = Column(String, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)

    user = relationship("User", back_populates="image_descriptions")
