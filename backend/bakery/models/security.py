from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z


class SecurityEvent(db.Model):
    """
    Authentication audit log.

    IMMUTABLE: Never update or delete. Never holds password material.
    """
    __tablename__ = "security_events"
    __table_args__ = (
        db.Index("ix_security_events_employee_type", "employee_id", "event_type"),
        db.Index("ix_security_events_occurred", "occurred_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    # Nullable for unknown identifiers
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=True, index=True)

    # LOGIN_FAILED, LOGIN_LOCKED, LOGIN_SUCCESS, LOGOUT, PASSWORD_CHANGED, ...
    event_type = db.Column(db.String(64), nullable=False, index=True)
    identifier = db.Column(db.String(255), nullable=True)

    success = db.Column(db.Boolean, nullable=False)
    reason = db.Column(db.Text, nullable=True)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    occurred_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())

    employee = db.relationship("Employee", backref=db.backref("security_events", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "employee_id": self.employee_id,
            "event_type": self.event_type,
            "identifier": self.identifier,
            "success": self.success,
            "reason": self.reason,
            "ip_address": self.ip_address,
            "occurred_at": to_utc_z(self.occurred_at),
        }
