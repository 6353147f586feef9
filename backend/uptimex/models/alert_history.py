"""AlertHistory model - last send per (monitor, kind) for throttling."""
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..database import Base


class AlertHistory(Base):
    """At most one row per (monitor, alert kind), upserted on every send."""

    __tablename__ = "alert_history"
    __table_args__ = (
        UniqueConstraint("monitor_id", "alert_type", name="uq_alert_history_monitor_type"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    monitor_id = Column(Integer, ForeignKey("monitors.id", ondelete="CASCADE"), nullable=False)
    alert_type = Column(String(20), nullable=False)
    last_sent_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    consecutive_count = Column(Integer, nullable=False, default=1)

    monitor = relationship("Monitor", back_populates="alert_history")
