# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication, lockout and session management.

SECURITY NOTES:
- Passwords hashed with bcrypt (configurable cost, 12 in production)
- Strength policy: minimum length plus upper, lower, digit and special char
- Unknown identifier and wrong password both answer "Invalid credentials"
- Failed attempts are counted with a single UPDATE ... SET count = count + 1
  that also sets locked_until once the count reaches MAX_LOGIN_ATTEMPTS
- The counter is cleared only by a successful login, never by lock expiry,
  so the first wrong password after a lock runs out locks the account again
- Session tokens are opaque 64-char hex strings held in a SessionStore;
  expiry is checked against the injected clock on every access
- Remember-me tokens are base64 JSON payloads signed with HMAC-SHA256.
  They carry the employee's remember_version, which logout and password
  change bump, so earlier tokens stop resuming sessions
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
import math
import re
import secrets
from dataclasses import dataclass, replace
from datetime import timedelta

import bcrypt
from sqlalchemy import case, func, or_, update

from ..errors import (
    AccountLockedError,
    ConflictError,
    InvalidCredentialsError,
    NotFoundError,
    PasswordMismatchError,
    UnauthenticatedError,
    ValidationError,
    WeakPasswordError,
    WrongCurrentPasswordError,
)
from ..models import EMPLOYEE_ROLES, Employee
from ..permissions import permissions_for_role
from ..time_utils import SystemClock, parse_iso_datetime, to_utc_z
from .permission_service import log_security_event
from .session_service import AuthSession, generate_token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuthSettings:
    secret_key: str
    max_login_attempts: int = 5
    lockout_seconds: int = 900
    session_lifetime_seconds: int = 7200
    remember_me_days: int = 30
    password_min_length: int = 8

    @classmethod
    def from_config(cls, config) -> "AuthSettings":
        return cls(
            secret_key=config["SECRET_KEY"],
            max_login_attempts=config.get("MAX_LOGIN_ATTEMPTS", 5),
            lockout_seconds=config.get("LOCKOUT_SECONDS", 900),
            session_lifetime_seconds=config.get("SESSION_LIFETIME_SECONDS", 7200),
            remember_me_days=config.get("REMEMBER_ME_DAYS", 30),
            password_min_length=config.get("PASSWORD_MIN_LENGTH", 8),
        )


@dataclass
class LoginResult:
    employee: Employee
    session: AuthSession
    permissions: dict
    remember_token: str | None = None


# =============================================================================
# PASSWORDS
# =============================================================================

def validate_password_strength(password: str, min_length: int = 8) -> None:
    """
    Validate password meets strength requirements.

    Requirements:
    - At least min_length characters
    - At least one uppercase letter
    - At least one lowercase letter
    - At least one digit
    - At least one special character (!@#$%^&*(),.'":{}|<>)

    Raises WeakPasswordError if requirements not met.
    """
    if not isinstance(password, str) or len(password) < min_length:
        raise WeakPasswordError(
            f"Password must be at least {min_length} characters long", field="new_password"
        )

    if not re.search(r'[A-Z]', password):
        raise WeakPasswordError("Password must contain at least one uppercase letter", field="new_password")

    if not re.search(r'[a-z]', password):
        raise WeakPasswordError("Password must contain at least one lowercase letter", field="new_password")

    if not re.search(r'\d', password):
        raise WeakPasswordError("Password must contain at least one digit", field="new_password")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise WeakPasswordError("Password must contain at least one special character", field="new_password")


class PasswordHasher:
    def hash(self, password: str) -> str:
        raise NotImplementedError

    def verify(self, password: str, password_hash: str) -> bool:
        raise NotImplementedError


class BcryptPasswordHasher(PasswordHasher):
    def __init__(self, rounds: int = 12):
        self.rounds = rounds

    def hash(self, password: str) -> str:
        salt = bcrypt.gensalt(rounds=self.rounds)
        return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')

    def verify(self, password: str, password_hash: str) -> bool:
        """Constant-time check; malformed stored hashes never verify."""
        if not password or not password_hash:
            return False
        try:
            return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
        except ValueError:
            return False


# =============================================================================
# EMPLOYEE BOOTSTRAP
# =============================================================================

def create_employee(
    gateway,
    hasher: PasswordHasher,
    *,
    username: str,
    email: str,
    password: str,
    role: str = "cashier",
    first_name: str = "",
    last_name: str = "",
    phone: str | None = None,
    min_password_length: int = 8,
) -> Employee:
    """
    Create an active employee with a bcrypt-hashed password.

    Raises ValidationError / WeakPasswordError for bad input and
    ConflictError when the username or email is taken.
    """
    username = (username or "").strip()
    email = (email or "").strip().lower()
    if not username or not email:
        raise ValidationError("username and email are required")
    role = (role or "").strip().lower()
    if role not in EMPLOYEE_ROLES:
        raise ValidationError(f"role must be one of: {', '.join(EMPLOYEE_ROLES)}", field="role")
    validate_password_strength(password, min_password_length)

    def _op():
        taken = gateway.query(Employee.id).filter(
            or_(Employee.username == username, Employee.email == email)
        ).first()
        if taken:
            raise ConflictError("Username or email already exists", {"username": username})
        employee = Employee(
            username=username,
            email=email,
            password_hash=hasher.hash(password),
            role=role,
            first_name=first_name or "",
            last_name=last_name or "",
            phone=phone,
            status="active",
            failed_login_count=0,
        )
        gateway.session.add(employee)
        gateway.session.flush()
        return employee

    employee = gateway.run_in_transaction(_op)
    logger.info("Created employee %s (%s) with role %s", employee.id, username, role)
    return employee


def unlock_employee(gateway, username: str) -> Employee:
    """Administrative unlock: clears the failed-attempt counter and lock."""
    def _op():
        employee = gateway.query(Employee).filter(Employee.username == username).first()
        if employee is None:
            raise NotFoundError(f"Employee {username} not found")
        employee.failed_login_count = 0
        employee.locked_until = None
        gateway.session.flush()
        return employee

    return gateway.run_in_transaction(_op)


# =============================================================================
# SESSION MANAGER
# =============================================================================

class AuthSessionManager:
    def __init__(self, gateway, session_store, hasher: PasswordHasher, settings: AuthSettings, clock=None):
        self.gateway = gateway
        self.store = session_store
        self.hasher = hasher
        self.settings = settings
        self.clock = clock or SystemClock()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _audit(self, event_type: str, success: bool, **kwargs) -> None:
        log_security_event(
            self.gateway.session,
            event_type=event_type,
            success=success,
            occurred_at=self.clock.now(),
            **kwargs,
        )

    def _audit_now(self, event_type: str, success: bool, **kwargs) -> None:
        self.gateway.run_in_transaction(lambda: self._audit(event_type, success, **kwargs))

    def _new_session(self, employee_id: int, *, remember_me: bool, ip_address, user_agent) -> AuthSession:
        now = self.clock.now()
        return AuthSession(
            employee_id=employee_id,
            token=generate_token(),
            issued_at=now,
            expires_at=now + timedelta(seconds=self.settings.session_lifetime_seconds),
            remember_me=remember_me,
            ip_address=ip_address,
            user_agent=user_agent,
        )

    def _register_failure(self, employee: Employee, identifier: str, ip_address, user_agent) -> int:
        """
        Count a failed password in one UPDATE statement.

        locked_until is assigned before failed_login_count so dialects that
        evaluate SET clauses left to right still see the old count.
        """
        now = self.clock.now()
        next_count = func.coalesce(Employee.failed_login_count, 0) + 1
        lock_until = now + timedelta(seconds=self.settings.lockout_seconds)
        stmt = (
            update(Employee)
            .where(Employee.id == employee.id)
            .ordered_values(
                (Employee.locked_until, case(
                    (next_count >= self.settings.max_login_attempts, lock_until),
                    else_=Employee.locked_until,
                )),
                (Employee.failed_login_count, next_count),
            )
            .execution_options(synchronize_session=False)
        )

        def _op():
            self.gateway.session.execute(stmt)
            count = self.gateway.query(Employee.failed_login_count).filter(
                Employee.id == employee.id
            ).scalar()
            locked = count >= self.settings.max_login_attempts
            self._audit(
                "LOGIN_LOCKED" if locked else "LOGIN_FAILED",
                False,
                employee_id=employee.id,
                identifier=identifier,
                reason=f"Invalid password (attempt {count})",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            return count

        count = self.gateway.run_in_transaction(_op)
        self.gateway.session.expire(employee)
        if count >= self.settings.max_login_attempts:
            logger.warning(
                "Employee %s locked after %d failed logins (identifier %r)",
                employee.id, count, identifier,
            )
        else:
            logger.warning("Failed login for employee %s (identifier %r, attempt %d)", employee.id, identifier, count)
        return count

    def _check_lock(self, employee: Employee, identifier: str, ip_address, user_agent) -> None:
        now = self.clock.now()
        if employee.locked_until is not None and employee.locked_until > now:
            remaining = math.ceil((employee.locked_until - now).total_seconds())
            logger.warning("Login attempt on locked account %s (identifier %r)", employee.id, identifier)
            self._audit_now(
                "LOGIN_FAILED",
                False,
                employee_id=employee.id,
                identifier=identifier,
                reason="Account locked",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise AccountLockedError(remaining)

    def _commit_with_store(self, op, *store_writes):
        """
        Run op in one transaction together with the session store writes.

        A store that is not transactional is written only after the commit,
        so a failed transaction never leaves a usable session behind.
        """
        def _all():
            result = op()
            if self.store.transactional:
                for write in store_writes:
                    write()
            return result

        result = self.gateway.run_in_transaction(_all)
        if not self.store.transactional:
            for write in store_writes:
                write()
        return result

    def _revoke_remember_tokens(self, employee_id: int) -> None:
        self.gateway.session.execute(
            update(Employee)
            .where(Employee.id == employee_id)
            .values(remember_version=func.coalesce(Employee.remember_version, 0) + 1)
            .execution_options(synchronize_session=False)
        )

    def _start_session(self, employee: Employee, *, remember_me: bool, ip_address, user_agent,
                       reset_failures: bool, reason: str | None = None) -> AuthSession:
        session = self._new_session(
            employee.id, remember_me=remember_me, ip_address=ip_address, user_agent=user_agent
        )
        now = session.issued_at

        def _op():
            values = {"last_access_at": now}
            if reset_failures:
                values.update(failed_login_count=0, locked_until=None)
            self.gateway.session.execute(
                update(Employee)
                .where(Employee.id == employee.id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            self._audit(
                "LOGIN_SUCCESS",
                True,
                employee_id=employee.id,
                identifier=employee.username,
                reason=reason,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        self._commit_with_store(_op, lambda: self.store.put(session.token, session))
        self.gateway.session.expire(employee)
        return session

    # ------------------------------------------------------------------
    # Login / logout
    # ------------------------------------------------------------------

    def login(
        self,
        identifier,
        password,
        *,
        remember_me: bool = False,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> LoginResult:
        if not isinstance(identifier, str) or not identifier.strip():
            raise ValidationError("username/email and password required", field="username")
        if not isinstance(password, str) or not password:
            raise ValidationError("username/email and password required", field="password")
        identifier = identifier.strip()

        employee = self.gateway.query(Employee).filter(
            or_(Employee.username == identifier, Employee.email == identifier.lower()),
            Employee.status == "active",
        ).first()

        if employee is None:
            logger.warning("Login attempt with unknown identifier %r", identifier)
            self._audit_now(
                "LOGIN_FAILED",
                False,
                identifier=identifier,
                reason="Unknown identifier",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise InvalidCredentialsError()

        self._check_lock(employee, identifier, ip_address, user_agent)

        if not self.hasher.verify(password, employee.password_hash):
            self._register_failure(employee, identifier, ip_address, user_agent)
            raise InvalidCredentialsError()

        session = self._start_session(
            employee,
            remember_me=bool(remember_me),
            ip_address=ip_address,
            user_agent=user_agent,
            reset_failures=True,
        )
        remember_token = self.issue_remember_token(employee) if remember_me else None
        logger.info("Login succeeded for employee %s (%s)", employee.id, employee.username)
        return LoginResult(
            employee=employee,
            session=session,
            permissions=permissions_for_role(employee.role),
            remember_token=remember_token,
        )

    def logout(self, token: str | None, *, ip_address: str | None = None, user_agent: str | None = None) -> bool:
        """Delete the session if present. Idempotent; returns whether one existed."""
        if not token:
            return False
        session = self.store.get(token)

        def _op():
            if session is not None:
                self._revoke_remember_tokens(session.employee_id)
                self._audit(
                    "LOGOUT",
                    True,
                    employee_id=session.employee_id,
                    ip_address=ip_address,
                    user_agent=user_agent,
                )

        self._commit_with_store(_op, lambda: self.store.delete(token))
        if session is not None:
            logger.info("Logout for employee %s", session.employee_id)
        return session is not None

    # ------------------------------------------------------------------
    # Session checks
    # ------------------------------------------------------------------

    def _live_session(self, token: str | None) -> AuthSession | None:
        if not token:
            return None
        session = self.store.get(token)
        if session is None:
            return None
        if session.is_expired(self.clock.now()):
            self._commit_with_store(lambda: None, lambda: self.store.delete(token))
            logger.info("Expired session removed for employee %s", session.employee_id)
            return None
        return session

    def validate_token(self, token: str | None) -> bool:
        return self._live_session(token) is not None

    def require_authentication(self, token: str | None) -> int:
        session = self._live_session(token)
        if session is None:
            raise UnauthenticatedError("Invalid or expired token" if token else "Authentication required")
        return session.employee_id

    def current_employee(self, token: str | None) -> Employee:
        """Resolve the session's employee; inactive employees lose their session."""
        employee_id = self.require_authentication(token)
        employee = self.gateway.get(Employee, employee_id)
        if employee is None or employee.status != "active":
            self._commit_with_store(lambda: None, lambda: self.store.delete(token))
            raise UnauthenticatedError("Invalid or expired token")
        return employee

    def is_authenticated(self, token: str | None) -> bool:
        try:
            self.current_employee(token)
        except UnauthenticatedError:
            return False
        return True

    def status(self, token: str | None) -> dict:
        session = self._live_session(token)
        employee = self.gateway.get(Employee, session.employee_id) if session else None
        if session is None or employee is None or employee.status != "active":
            return {"authenticated": False, "user": None, "session": None, "permissions": {}}
        return {
            "authenticated": True,
            "user": employee.to_dict(),
            "session": session.to_dict(),
            "permissions": permissions_for_role(employee.role),
        }

    def permissions_for_role(self, role: str | None) -> dict:
        return permissions_for_role(role)

    # ------------------------------------------------------------------
    # Session maintenance
    # ------------------------------------------------------------------

    def refresh_session(self, token: str | None, *, ip_address: str | None = None,
                        user_agent: str | None = None) -> AuthSession:
        """Issue a new token with a fresh expiry; the old token stops working."""
        current = self._live_session(token)
        if current is None:
            raise UnauthenticatedError("Invalid or expired token" if token else "Authentication required")

        now = self.clock.now()
        refreshed = replace(
            current,
            token=generate_token(),
            issued_at=now,
            expires_at=now + timedelta(seconds=self.settings.session_lifetime_seconds),
        )

        def _op():
            self._audit(
                "SESSION_REFRESHED",
                True,
                employee_id=current.employee_id,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        self._commit_with_store(
            _op,
            lambda: self.store.delete(token),
            lambda: self.store.put(refreshed.token, refreshed),
        )
        logger.info("Session refreshed for employee %s", current.employee_id)
        return refreshed

    def change_password(
        self,
        token: str | None,
        current_password,
        new_password,
        confirm_password,
        *,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> None:
        employee = self.current_employee(token)

        for field, value in (
            ("current_password", current_password),
            ("new_password", new_password),
            ("confirm_password", confirm_password),
        ):
            if not isinstance(value, str) or not value:
                raise ValidationError(f"{field} is required", field=field)

        if new_password != confirm_password:
            raise PasswordMismatchError("New passwords do not match", field="confirm_password")

        validate_password_strength(new_password, self.settings.password_min_length)

        if not self.hasher.verify(current_password, employee.password_hash):
            logger.warning("Password change with wrong current password for employee %s", employee.id)
            self._audit_now(
                "PASSWORD_CHANGE_FAILED",
                False,
                employee_id=employee.id,
                reason="Current password incorrect",
                ip_address=ip_address,
                user_agent=user_agent,
            )
            raise WrongCurrentPasswordError()

        new_hash = self.hasher.hash(new_password)

        def _op():
            employee.password_hash = new_hash
            employee.updated_at = self.clock.now()
            self.gateway.session.flush()
            self._revoke_remember_tokens(employee.id)
            self._audit(
                "PASSWORD_CHANGED",
                True,
                employee_id=employee.id,
                ip_address=ip_address,
                user_agent=user_agent,
            )

        self.gateway.run_in_transaction(_op)
        self.gateway.session.expire(employee)
        logger.info("Password changed for employee %s", employee.id)

    # ------------------------------------------------------------------
    # Remember me
    # ------------------------------------------------------------------

    def _sign(self, payload: str) -> str:
        return hmac.new(
            self.settings.secret_key.encode("utf-8"),
            payload.encode("ascii"),
            hashlib.sha256,
        ).hexdigest()

    def issue_remember_token(self, employee: Employee) -> str:
        expires = self.clock.now() + timedelta(days=self.settings.remember_me_days)
        payload = json.dumps(
            {
                "user_id": employee.id,
                "version": employee.remember_version or 0,
                "nonce": secrets.token_hex(16),
                "expires": to_utc_z(expires),
            },
            separators=(",", ":"),
        )
        encoded = base64.urlsafe_b64encode(payload.encode("utf-8")).decode("ascii")
        return f"{encoded}.{self._sign(encoded)}"

    def _read_remember_token(self, remember_token) -> tuple[int, int]:
        if not isinstance(remember_token, str) or "." not in remember_token:
            raise UnauthenticatedError("Invalid remember-me token")
        encoded, signature = remember_token.rsplit(".", 1)
        if not hmac.compare_digest(signature, self._sign(encoded)):
            raise UnauthenticatedError("Invalid remember-me token")
        try:
            payload = json.loads(base64.urlsafe_b64decode(encoded.encode("ascii")))
            employee_id = int(payload["user_id"])
            version = int(payload["version"])
            expires = parse_iso_datetime(payload["expires"])
        except (binascii.Error, UnicodeError, ValueError, KeyError, TypeError):
            raise UnauthenticatedError("Invalid remember-me token")
        if expires is None or expires <= self.clock.now():
            raise UnauthenticatedError("Remember-me token expired")
        return employee_id, version

    def resume_session(self, remember_token, *, ip_address: str | None = None,
                       user_agent: str | None = None) -> LoginResult:
        """Start a new session from a valid remember-me token."""
        employee_id, version = self._read_remember_token(remember_token)
        employee = self.gateway.get(Employee, employee_id)
        if employee is None or employee.status != "active":
            raise UnauthenticatedError("Invalid remember-me token")
        if version != (employee.remember_version or 0):
            logger.warning("Revoked remember-me token presented for employee %s", employee.id)
            raise UnauthenticatedError("Invalid remember-me token")
        self._check_lock(employee, employee.username, ip_address, user_agent)

        session = self._start_session(
            employee,
            remember_me=True,
            ip_address=ip_address,
            user_agent=user_agent,
            reset_failures=False,
            reason="Remember-me token",
        )
        logger.info("Session resumed from remember-me token for employee %s", employee.id)
        return LoginResult(
            employee=employee,
            session=session,
            permissions=permissions_for_role(employee.role),
            remember_token=remember_token,
        )
