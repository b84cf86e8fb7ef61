# Overview: Request and permission decorators for API routes.

from functools import wraps
from flask import request, g

from .errors import UnauthenticatedError
from .services import get_services
from .services import permission_service


def bearer_token() -> str | None:
    """Token from 'Authorization: Bearer <token>', or None."""
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def client_context() -> dict:
    return {
        "ip_address": request.remote_addr,
        "user_agent": request.headers.get("User-Agent"),
    }


def require_auth(f):
    """
    Require a live session.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated Employee
    - g.auth_token: The bearer token of the request

    Raises UnauthenticatedError (401) if:
    - No Authorization header
    - Invalid or expired token
    - Employee deactivated
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = bearer_token()
        if token is None:
            raise UnauthenticatedError("Authentication required")

        g.current_user = get_services().auth.current_employee(token)
        g.auth_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_permission(module: str, action: str):
    """Require module:action for the current employee's role (after @require_auth)."""
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not hasattr(g, "current_user"):
                raise UnauthenticatedError("Authentication required")

            permission_service.require_permission(
                get_services().gateway,
                g.current_user,
                module,
                action,
                resource=request.path,
                **client_context(),
            )
            return f(*args, **kwargs)

        return decorated_function
    return decorator
