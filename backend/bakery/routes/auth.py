# Overview: Flask API routes for auth operations; parses input and returns JSON responses.

# backend/bakery/routes/auth.py
"""
Authentication API routes

SECURITY FEATURES:
- Generic "Invalid credentials" answer for unknown users and wrong passwords
- Account lockout after MAX_LOGIN_ATTEMPTS failed attempts (423 + retry_after)
- Opaque bearer tokens; refresh rotates the token
- Remember-me token delivered as an HttpOnly cookie
"""

from flask import Blueprint, current_app, g, jsonify, request

from ..decorators import bearer_token, client_context, require_auth
from ..services import get_services


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")


def _login_response(result, message: str):
    response = jsonify({
        "user": result.employee.to_dict(),
        "permissions": result.permissions,
        "token": result.session.token,
        "session": result.session.to_dict(),
        "message": message,
    })
    if result.remember_token:
        response.set_cookie(
            current_app.config["REMEMBER_ME_COOKIE"],
            result.remember_token,
            max_age=current_app.config["REMEMBER_ME_DAYS"] * 24 * 60 * 60,
            httponly=True,
            samesite="Lax",
            secure=not current_app.testing and not current_app.debug,
        )
    return response, 200


@auth_bp.post("/login")
def login_route():
    """
    Authenticate an employee by username or email and create a session.

    Token must be included in the Authorization header for protected routes.
    """
    data = request.get_json(silent=True) or {}
    identifier = data.get("username") or data.get("email") or data.get("identifier")

    result = get_services().auth.login(
        identifier,
        data.get("password"),
        remember_me=bool(data.get("remember_me")),
        **client_context(),
    )
    return _login_response(result, "Login successful")


@auth_bp.post("/logout")
def logout_route():
    """Idempotent: succeeds with or without a live session."""
    get_services().auth.logout(bearer_token(), **client_context())

    response = jsonify({"message": "Logged out"})
    response.delete_cookie(current_app.config["REMEMBER_ME_COOKIE"])
    return response, 200


@auth_bp.post("/change-password")
@require_auth
def change_password_route():
    data = request.get_json(silent=True) or {}
    get_services().auth.change_password(
        g.auth_token,
        data.get("current_password"),
        data.get("new_password"),
        data.get("confirm_password"),
        **client_context(),
    )
    return jsonify({"message": "Password changed successfully"}), 200


@auth_bp.post("/refresh-session")
@require_auth
def refresh_session_route():
    """Rotate the bearer token; the previous token stops working."""
    session = get_services().auth.refresh_session(g.auth_token, **client_context())
    return jsonify({
        "token": session.token,
        "session": session.to_dict(),
        "message": "Session refreshed",
    }), 200


@auth_bp.post("/validate-token")
def validate_token_route():
    data = request.get_json(silent=True) or {}
    token = data.get("token") or bearer_token()
    return jsonify({"valid": get_services().auth.validate_token(token)}), 200


@auth_bp.post("/resume")
def resume_session_route():
    """Start a new session from the remember-me cookie."""
    data = request.get_json(silent=True) or {}
    remember_token = request.cookies.get(current_app.config["REMEMBER_ME_COOKIE"]) or data.get("remember_token")

    result = get_services().auth.resume_session(remember_token, **client_context())
    return _login_response(result, "Session resumed")


@auth_bp.get("/status")
def status_route():
    return jsonify(get_services().auth.status(bearer_token())), 200


@auth_bp.get("/permissions")
@require_auth
def permissions_route():
    employee = g.current_user
    return jsonify({
        "role": employee.role,
        "permissions": get_services().auth.permissions_for_role(employee.role),
    }), 200
