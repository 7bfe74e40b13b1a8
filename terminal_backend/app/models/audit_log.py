"""
Audit Log Database Model.

Tracks tariff lifecycle actions for compliance.
"""

from sqlalchemy import Column, Integer, String, DateTime, JSON

from terminal_backend.app.db.session import Base
from terminal_backend.app.models.tariff import utc_now


class AuditLog(Base):
    """
    Audit log model for tracking operator actions on tariffs.

    Events logged:
    - TARIFF_CREATED / TARIFF_UPDATED / TARIFF_DELETED
    - TARIFF_ACTIVATED / TARIFF_DEACTIVATED
    """
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)

    # Who performed the action
    actor = Column(String(100), nullable=False, index=True)

    # What action was performed
    action = Column(String(100), nullable=False, index=True)

    # Which tariff was affected (no FK: entries outlive deleted tariffs)
    tariff_id = Column(String(36), nullable=True, index=True)
    tariff_code = Column(String(50), nullable=True)

    # Additional context (JSON for flexibility)
    meta_data = Column(JSON, nullable=True)

    # Timestamp
    timestamp = Column(DateTime(timezone=True), default=utc_now, nullable=False, index=True)

    def __repr__(self):
        return f"<AuditLog(id={self.id}, action='{self.action}', actor={self.actor}, tariff={self.tariff_code})>"
