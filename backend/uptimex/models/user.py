"""User model - monitor owners and alert recipients."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime
from sqlalchemy.orm import relationship

from ..database import Base


class User(Base):
    """Account that owns monitors. Credentials live outside this service."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    monitors = relationship("Monitor", back_populates="user", cascade="all, delete-orphan")
