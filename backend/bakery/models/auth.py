from __future__ import annotations

from ..extensions import db
from ..time_utils import to_utc_z

EMPLOYEE_ROLES = ("admin", "manager", "cashier", "vendor", "baker")
EMPLOYEE_STATUSES = ("active", "inactive")


class Employee(db.Model):
    """
    Staff accounts. Login identifier is either username or email.

    Lockout state lives on the row: failed_login_count and locked_until are
    written only by the auth session manager, with single UPDATE statements.
    """
    __tablename__ = "employees"
    __table_args__ = (
        db.UniqueConstraint("username", name="uq_employees_username"),
        db.UniqueConstraint("email", name="uq_employees_email"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    username = db.Column(db.String(64), nullable=False, index=True)
    email = db.Column(db.String(255), nullable=False)

    # Bcrypt hashed password
    password_hash = db.Column(db.String(255), nullable=False)

    first_name = db.Column(db.String(120), nullable=False, default="")
    last_name = db.Column(db.String(120), nullable=False, default="")
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(32), nullable=False, default="cashier")
    status = db.Column(db.String(16), nullable=False, default="active", index=True)

    failed_login_count = db.Column(db.Integer, nullable=False, default=0)
    locked_until = db.Column(db.DateTime, nullable=True)
    last_access_at = db.Column(db.DateTime, nullable=True)

    # Bumped on logout and password change; remember-me tokens carry the value they were issued with
    remember_version = db.Column(db.Integer, nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, server_default=db.func.now())
    updated_at = db.Column(db.DateTime, nullable=True)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip() or self.username

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "username": self.username,
            "email": self.email,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "full_name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "status": self.status,
            "last_access_at": to_utc_z(self.last_access_at),
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Persisted session for the SQL-backed session store.

    Only the SHA-256 hash of the bearer token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = (
        db.UniqueConstraint("token_hash", name="uq_session_tokens_hash"),
        db.Index("ix_session_tokens_employee", "employee_id"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id"), nullable=False)
    token_hash = db.Column(db.String(64), nullable=False)

    issued_at = db.Column(db.DateTime, nullable=False)
    expires_at = db.Column(db.DateTime, nullable=False, index=True)
    remember_me = db.Column(db.Boolean, nullable=False, default=False)

    ip_address = db.Column(db.String(45), nullable=True)
    user_agent = db.Column(db.String(512), nullable=True)

    employee = db.relationship("Employee", backref=db.backref("sessions", lazy=True))
