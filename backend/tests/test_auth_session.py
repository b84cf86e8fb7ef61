"""
Auth session manager tests.

Verifies:
- Generic failure for unknown users and wrong passwords
- Lockout after MAX_LOGIN_ATTEMPTS, its time window and reset on success
- Session expiry, refresh rotation and idempotent logout
- Password change ordering of checks
- Remember-me token signing, expiry and revocation
- SQL session store keeps only token hashes
"""

import re

import pytest

from bakery.errors import (
    AccountLockedError,
    InvalidCredentialsError,
    PasswordMismatchError,
    UnauthenticatedError,
    ValidationError,
    WeakPasswordError,
    WrongCurrentPasswordError,
)
from bakery.models import Employee, SecurityEvent, SessionToken
from bakery.services.auth_service import AuthSessionManager, validate_password_strength
from bakery.services.session_service import SqlSessionStore, hash_token

from conftest import PASSWORD


def _employee(services, username):
    services.gateway.session.expire_all()
    return services.gateway.query(Employee).filter(Employee.username == username).one()


def _fail(services, username, times):
    for _ in range(times):
        with pytest.raises(InvalidCredentialsError):
            services.auth.login(username, "Wrong-pass1!")


def _events(services, event_type):
    services.gateway.session.expire_all()
    return services.gateway.query(SecurityEvent).filter(SecurityEvent.event_type == event_type).all()


# =============================================================================
# LOGIN
# =============================================================================


class TestLogin:

    def test_success_by_username_or_email(self, services, employees):
        by_username = services.auth.login("cashier", PASSWORD)
        by_email = services.auth.login("cashier@bakery.test", PASSWORD)

        assert by_username.employee.id == employees["cashier"].id
        assert by_email.employee.id == employees["cashier"].id
        assert re.fullmatch(r"[0-9a-f]{64}", by_username.session.token)
        assert by_username.session.token != by_email.session.token
        assert by_username.permissions["sales"] == ["create", "read"]
        assert by_username.remember_token is None

    def test_session_lifetime(self, services, employees, clock):
        result = services.auth.login("admin", PASSWORD)
        assert result.session.issued_at == clock.now()
        assert (result.session.expires_at - clock.now()).total_seconds() == 7200

    def test_success_stamps_last_access(self, services, employees, clock):
        services.auth.login("admin", PASSWORD)
        assert _employee(services, "admin").last_access_at == clock.now()

    def test_unknown_identifier_is_generic(self, services, employees):
        with pytest.raises(InvalidCredentialsError) as exc:
            services.auth.login("nobody", PASSWORD)

        assert exc.value.message == "Invalid credentials"
        [event] = _events(services, "LOGIN_FAILED")
        assert event.employee_id is None
        assert event.identifier == "nobody"

    def test_wrong_password_is_generic(self, services, employees):
        with pytest.raises(InvalidCredentialsError) as exc:
            services.auth.login("admin", "Wrong-pass1!")
        assert exc.value.message == "Invalid credentials"

    def test_inactive_employee_cannot_login(self, services, employees):
        employee = _employee(services, "baker")
        employee.status = "inactive"
        services.gateway.session.commit()

        with pytest.raises(InvalidCredentialsError):
            services.auth.login("baker", PASSWORD)

    @pytest.mark.parametrize("identifier,password", [("", PASSWORD), ("admin", ""), (None, None)])
    def test_missing_fields(self, services, employees, identifier, password):
        with pytest.raises(ValidationError):
            services.auth.login(identifier, password)

    def test_password_never_in_security_events(self, services, employees):
        _fail(services, "admin", 2)
        services.auth.login("admin", PASSWORD)

        services.gateway.session.expire_all()
        for event in services.gateway.query(SecurityEvent).all():
            assert "Wrong-pass1!" not in (event.reason or "")
            assert PASSWORD not in (event.reason or "")


# =============================================================================
# LOCKOUT
# =============================================================================


class TestLockout:

    def test_counter_increments(self, services, employees):
        _fail(services, "cashier", 3)

        employee = _employee(services, "cashier")
        assert employee.failed_login_count == 3
        assert employee.locked_until is None

    def test_locks_at_max_attempts(self, services, employees, clock):
        _fail(services, "cashier", 5)

        employee = _employee(services, "cashier")
        assert employee.failed_login_count == 5
        assert (employee.locked_until - clock.now()).total_seconds() == 900
        assert len(_events(services, "LOGIN_LOCKED")) == 1

        with pytest.raises(AccountLockedError) as exc:
            services.auth.login("cashier", PASSWORD)
        assert exc.value.retry_after_seconds == 900
        assert exc.value.status_code == 423

    def test_locked_attempts_do_not_extend_lock(self, services, employees, clock):
        _fail(services, "cashier", 5)
        clock.advance(minutes=10)

        with pytest.raises(AccountLockedError) as exc:
            services.auth.login("cashier", "Wrong-pass1!")
        assert exc.value.retry_after_seconds == 300
        assert _employee(services, "cashier").failed_login_count == 5

    def test_success_before_limit_resets_counter(self, services, employees):
        _fail(services, "cashier", 4)
        services.auth.login("cashier", PASSWORD)

        employee = _employee(services, "cashier")
        assert employee.failed_login_count == 0
        assert employee.locked_until is None

    def test_lock_boundary(self, services, employees, clock):
        _fail(services, "cashier", 5)

        clock.advance(seconds=899)
        with pytest.raises(AccountLockedError) as exc:
            services.auth.login("cashier", PASSWORD)
        assert exc.value.retry_after_seconds == 1

        clock.advance(seconds=1)
        result = services.auth.login("cashier", PASSWORD)
        assert result.employee.username == "cashier"

    def test_success_after_window_resets(self, services, employees, clock):
        _fail(services, "cashier", 5)
        clock.advance(seconds=901)

        services.auth.login("cashier", PASSWORD)

        employee = _employee(services, "cashier")
        assert employee.failed_login_count == 0
        assert employee.locked_until is None

    def test_failure_after_window_relocks(self, services, employees, clock):
        _fail(services, "cashier", 5)
        clock.advance(seconds=901)

        _fail(services, "cashier", 1)

        employee = _employee(services, "cashier")
        assert employee.failed_login_count == 6
        assert (employee.locked_until - clock.now()).total_seconds() == 900
        with pytest.raises(AccountLockedError):
            services.auth.login("cashier", PASSWORD)

    def test_lock_is_per_employee(self, services, employees):
        _fail(services, "cashier", 5)
        assert services.auth.login("manager", PASSWORD).employee.username == "manager"


# =============================================================================
# SESSIONS
# =============================================================================


class TestSessions:

    def test_require_authentication(self, services, employees):
        token = services.auth.login("manager", PASSWORD).session.token

        assert services.auth.require_authentication(token) == employees["manager"].id
        assert services.auth.validate_token(token) is True
        assert services.auth.is_authenticated(token) is True

    @pytest.mark.parametrize("token", [None, "", "f" * 64])
    def test_unknown_token(self, services, employees, token):
        assert services.auth.validate_token(token) is False
        assert services.auth.is_authenticated(token) is False
        with pytest.raises(UnauthenticatedError):
            services.auth.require_authentication(token)

    def test_expiry_boundary(self, services, employees, clock):
        token = services.auth.login("manager", PASSWORD).session.token

        clock.advance(seconds=7199)
        assert services.auth.validate_token(token) is True

        clock.advance(seconds=1)
        assert services.auth.validate_token(token) is False
        assert services.auth.store.get(token) is None

    def test_logout_is_idempotent(self, services, employees):
        token = services.auth.login("manager", PASSWORD).session.token

        assert services.auth.logout(token) is True
        assert services.auth.logout(token) is False
        assert services.auth.logout(None) is False
        assert services.auth.validate_token(token) is False
        assert len(_events(services, "LOGOUT")) == 1

    def test_refresh_rotates_token(self, services, employees, clock):
        old = services.auth.login("manager", PASSWORD).session
        clock.advance(hours=1)

        new = services.auth.refresh_session(old.token)

        assert new.token != old.token
        assert (new.expires_at - clock.now()).total_seconds() == 7200
        assert services.auth.validate_token(old.token) is False
        assert services.auth.require_authentication(new.token) == employees["manager"].id

    def test_refresh_requires_live_session(self, services, employees, clock):
        token = services.auth.login("manager", PASSWORD).session.token
        clock.advance(hours=3)

        with pytest.raises(UnauthenticatedError):
            services.auth.refresh_session(token)

    def test_failed_login_transaction_leaves_no_session(self, services, employees, monkeypatch):
        def failing_audit(*args, **kwargs):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(services.auth, "_audit", failing_audit)

        with pytest.raises(RuntimeError):
            services.auth.login("manager", PASSWORD)

        assert len(services.auth.store) == 0

    def test_failed_refresh_keeps_old_token(self, services, employees, monkeypatch):
        token = services.auth.login("manager", PASSWORD).session.token

        def failing_audit(*args, **kwargs):
            raise RuntimeError("audit table unavailable")

        monkeypatch.setattr(services.auth, "_audit", failing_audit)

        with pytest.raises(RuntimeError):
            services.auth.refresh_session(token)

        assert len(services.auth.store) == 1
        assert services.auth.validate_token(token) is True

    def test_deactivated_employee_loses_session(self, services, employees):
        token = services.auth.login("baker", PASSWORD).session.token
        employee = _employee(services, "baker")
        employee.status = "inactive"
        services.gateway.session.commit()

        assert services.auth.validate_token(token) is True
        assert services.auth.is_authenticated(token) is False
        assert services.auth.validate_token(token) is False

    def test_status(self, services, employees):
        assert services.auth.status(None)["authenticated"] is False

        token = services.auth.login("admin", PASSWORD).session.token
        status = services.auth.status(token)

        assert status["authenticated"] is True
        assert status["user"]["username"] == "admin"
        assert status["session"]["expires_at"] == "2026-03-02T11:00:00Z"
        assert "delete" in status["permissions"]["inventory"]


# =============================================================================
# PASSWORD CHANGE
# =============================================================================


class TestChangePassword:

    def test_success_keeps_session(self, services, employees):
        token = services.auth.login("cashier", PASSWORD).session.token

        services.auth.change_password(token, PASSWORD, "NewSecret9$", "NewSecret9$")

        assert services.auth.validate_token(token) is True
        assert services.auth.login("cashier", "NewSecret9$").employee.username == "cashier"
        with pytest.raises(InvalidCredentialsError):
            services.auth.login("cashier", PASSWORD)

    def test_mismatch_checked_first(self, services, employees):
        token = services.auth.login("cashier", PASSWORD).session.token
        with pytest.raises(PasswordMismatchError):
            services.auth.change_password(token, "not-even-right", "weak", "different")

    def test_weak_checked_before_current(self, services, employees):
        token = services.auth.login("cashier", PASSWORD).session.token
        with pytest.raises(WeakPasswordError):
            services.auth.change_password(token, "not-even-right", "weak", "weak")

    def test_wrong_current(self, services, employees):
        token = services.auth.login("cashier", PASSWORD).session.token

        with pytest.raises(WrongCurrentPasswordError):
            services.auth.change_password(token, "Wrong-pass1!", "NewSecret9$", "NewSecret9$")

        assert len(_events(services, "PASSWORD_CHANGE_FAILED")) == 1
        assert services.auth.login("cashier", PASSWORD).employee.username == "cashier"

    def test_requires_session(self, services, employees):
        with pytest.raises(UnauthenticatedError):
            services.auth.change_password(None, PASSWORD, "NewSecret9$", "NewSecret9$")

    @pytest.mark.parametrize(
        "password",
        ["Sh0rt!", "alllower1!", "ALLUPPER1!", "NoDigits!!", "NoSpecial11"],
    )
    def test_strength_policy(self, password):
        with pytest.raises(WeakPasswordError):
            validate_password_strength(password, 8)

    def test_strength_policy_accepts(self):
        validate_password_strength("Password123!", 8)


# =============================================================================
# REMEMBER ME
# =============================================================================


class TestRememberMe:

    def test_resume_issues_new_session(self, services, employees):
        login = services.auth.login("manager", PASSWORD, remember_me=True)
        assert login.remember_token
        assert login.session.remember_me is True

        resumed = services.auth.resume_session(login.remember_token)

        assert resumed.employee.id == employees["manager"].id
        assert resumed.session.token != login.session.token
        assert services.auth.validate_token(resumed.session.token) is True

    def test_resume_keeps_token_usable(self, services, employees):
        token = services.auth.login("manager", PASSWORD, remember_me=True).remember_token

        services.auth.resume_session(token)

        assert services.auth.resume_session(token).employee.username == "manager"

    def test_logout_revokes_token(self, services, employees):
        login = services.auth.login("cashier", PASSWORD, remember_me=True)

        services.auth.logout(login.session.token)

        with pytest.raises(UnauthenticatedError):
            services.auth.resume_session(login.remember_token)

    def test_password_change_revokes_token(self, services, employees):
        login = services.auth.login("cashier", PASSWORD, remember_me=True)

        services.auth.change_password(login.session.token, PASSWORD, "NewSecret9$", "NewSecret9$")

        with pytest.raises(UnauthenticatedError):
            services.auth.resume_session(login.remember_token)

        fresh = services.auth.login("cashier", "NewSecret9$", remember_me=True).remember_token
        assert services.auth.resume_session(fresh).employee.username == "cashier"

    def test_logout_of_other_session_revokes_token(self, services, employees):
        remembered = services.auth.login("cashier", PASSWORD, remember_me=True).remember_token
        other = services.auth.login("cashier", PASSWORD).session.token

        services.auth.logout(other)

        with pytest.raises(UnauthenticatedError):
            services.auth.resume_session(remembered)

    def test_tampered_token(self, services, employees):
        token = services.auth.login("manager", PASSWORD, remember_me=True).remember_token
        payload, signature = token.rsplit(".", 1)
        forged = payload + "." + ("0" if signature[0] != "0" else "1") + signature[1:]

        with pytest.raises(UnauthenticatedError):
            services.auth.resume_session(forged)

    @pytest.mark.parametrize("token", [None, "", "garbage", "abc.def"])
    def test_malformed_token(self, services, employees, token):
        with pytest.raises(UnauthenticatedError):
            services.auth.resume_session(token)

    def test_expired_token(self, services, employees, clock):
        token = services.auth.login("manager", PASSWORD, remember_me=True).remember_token
        clock.advance(days=30)

        with pytest.raises(UnauthenticatedError):
            services.auth.resume_session(token)

    def test_inactive_employee(self, services, employees):
        token = services.auth.login("baker", PASSWORD, remember_me=True).remember_token
        employee = _employee(services, "baker")
        employee.status = "inactive"
        services.gateway.session.commit()

        with pytest.raises(UnauthenticatedError):
            services.auth.resume_session(token)


# =============================================================================
# SQL SESSION STORE
# =============================================================================


class TestSqlSessionStore:

    @pytest.fixture
    def sql_auth(self, services):
        return AuthSessionManager(
            services.gateway,
            SqlSessionStore(services.gateway),
            services.auth.hasher,
            services.auth.settings,
            clock=services.auth.clock,
        )

    def test_stores_only_hash(self, services, employees, sql_auth):
        token = sql_auth.login("admin", PASSWORD).session.token

        services.gateway.session.expire_all()
        [row] = services.gateway.query(SessionToken).all()
        assert row.token_hash == hash_token(token)
        assert row.token_hash != token
        assert sql_auth.require_authentication(token) == employees["admin"].id

    def test_refresh_and_logout(self, services, employees, sql_auth):
        old = sql_auth.login("admin", PASSWORD).session.token
        new = sql_auth.refresh_session(old).token

        assert sql_auth.validate_token(old) is False
        assert sql_auth.validate_token(new) is True

        sql_auth.logout(new)
        services.gateway.session.expire_all()
        assert services.gateway.query(SessionToken).count() == 0

    def test_expired_row_deleted_on_access(self, services, employees, clock, sql_auth):
        token = sql_auth.login("admin", PASSWORD).session.token
        clock.advance(hours=2)

        assert sql_auth.validate_token(token) is False
        services.gateway.session.expire_all()
        assert services.gateway.query(SessionToken).count() == 0
