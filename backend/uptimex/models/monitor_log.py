"""MonitorLog model - append-only record of every check."""
from datetime import datetime
from sqlalchemy import Boolean, Column, Index, Integer, String, DateTime, ForeignKey
from sqlalchemy.orm import relationship

from ..database import Base


class MonitorLog(Base):
    """One persisted check result. Rows are never updated."""

    __tablename__ = "monitor_logs"
    __table_args__ = (
        Index("ix_monitor_logs_monitor_checked", "monitor_id", "checked_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    status_code = Column(Integer, nullable=True)  # NULL for transport failures
    response_time_ms = Column(Integer, nullable=False)
    is_up = Column(Boolean, nullable=False)
    error_message = Column(String, nullable=True)
    checked_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    monitor = relationship("Monitor", back_populates="logs")
