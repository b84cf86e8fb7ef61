# Overview: Service-layer operations for permission checks and security audit events.

"""
Permission checks and security event logging.

DESIGN PRINCIPLES:
- Fail closed: a module/action not in the role table is denied
- Log denials only: grants are not written to security_events
- Never record password material in an event
"""

from __future__ import annotations

import logging

from ..errors import ForbiddenError
from ..models import SecurityEvent
from ..permissions import has_permission

logger = logging.getLogger(__name__)


def log_security_event(
    session,
    *,
    event_type: str,
    success: bool,
    employee_id: int | None = None,
    identifier: str | None = None,
    reason: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    occurred_at=None,
) -> SecurityEvent:
    """
    Add a security event to the current transaction (caller commits).

    event_type examples:
    - LOGIN_SUCCESS / LOGIN_FAILED / LOGIN_LOCKED
    - LOGOUT, SESSION_REFRESHED
    - PASSWORD_CHANGED / PASSWORD_CHANGE_FAILED
    - PERMISSION_DENIED
    """
    event = SecurityEvent(
        employee_id=employee_id,
        event_type=event_type,
        identifier=identifier,
        success=success,
        reason=reason,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:512] or None,
    )
    if occurred_at is not None:
        event.occurred_at = occurred_at
    session.add(event)
    return event


def require_permission(
    gateway,
    employee,
    module: str,
    action: str,
    *,
    resource: str | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
) -> None:
    """Raise ForbiddenError (after logging the denial) if the role lacks module:action."""
    if has_permission(employee.role, module, action):
        return

    logger.warning(
        "Permission denied: employee %s (role %s) needs %s:%s on %s",
        employee.id, employee.role, module, action, resource,
    )

    def _log():
        log_security_event(
            gateway.session,
            event_type="PERMISSION_DENIED",
            success=False,
            employee_id=employee.id,
            identifier=employee.username,
            reason=f"Missing permission: {module}:{action} ({resource})",
            ip_address=ip_address,
            user_agent=user_agent,
        )

    gateway.run_in_transaction(_log)
    raise ForbiddenError(
        "Permission denied",
        {"required_permission": f"{module}:{action}"},
    )
