"""Alert model - log of alerts raised for monitors."""
import enum
from datetime import datetime
from sqlalchemy import Boolean, Column, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class AlertKind(str, enum.Enum):
    DOWN = "DOWN"
    SLOW = "SLOW"
    RECOVERED = "RECOVERED"


class Alert(Base):
    """Record of an alert; email_sent flips once delivery succeeds."""

    __tablename__ = "alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    alert_type = Column(String(20), nullable=False)  # DOWN, SLOW, RECOVERED
    message = Column(String, nullable=False)
    sent_at = Column(DateTime, default=datetime.utcnow)
    email_sent = Column(Boolean, nullable=False, default=False)

    # Relationship
    monitor = relationship("Monitor", back_populates="alerts")
