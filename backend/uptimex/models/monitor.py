"""Monitor model - URLs being monitored."""
from datetime import datetime
from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base

MIN_INTERVAL_SECONDS = 30


class Monitor(Base):
    """A monitored HTTP endpoint."""

    __tablename__ = "monitors"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(String, nullable=True)
    url = Column(String(2048), nullable=False)
    method = Column(String(10), nullable=False, default="GET")
    interval_seconds = Column(Integer, nullable=False, default=60)  # >= MIN_INTERVAL_SECONDS
    is_active = Column(Boolean, nullable=False, default=True, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    # Relationships
    user = relationship("User", back_populates="monitors")
    logs = relationship("MonitorLog", back_populates="monitor", cascade="all, delete-orphan")
    alerts = relationship("Alert", back_populates="monitor", cascade="all, delete-orphan")
    alert_history = relationship("AlertHistory", back_populates="monitor", cascade="all, delete-orphan")
