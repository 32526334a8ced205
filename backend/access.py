"""Authentication and role checks for routes.

``authenticate`` turns the bearer token of the current request into the
request identity; ``roles_required`` additionally checks the identity's role.
Both either let the view run unchanged or raise before it starts.
"""

from functools import wraps
from typing import Callable, Dict, Iterable, Optional

from flask import current_app, g, request

from .credentials import parse_token
from .errors import Forbidden, InvalidToken, Unauthorized
from .validation import USER_ROLES

ACCOUNT_STATUS_EXTENSION = "account_status"
DEACTIVATED_ACCOUNT_MESSAGE = "This account has been deactivated."


def normalize_role(value: Optional[str]) -> str:
    normalized = str(value or "").strip().lower()
    return normalized if normalized in USER_ROLES else ""


def extract_bearer_token() -> Optional[str]:
    header = request.headers.get("Authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


def authenticate() -> Dict:
    token = extract_bearer_token()
    if not token:
        raise Unauthorized("Access denied. No token provided.")
    try:
        claims = parse_token(token)
    except InvalidToken as exc:
        current_app.logger.warning("Rejected bearer token: %s", exc)
        raise Unauthorized("Invalid token.") from exc

    identity = {
        "id": claims.get("sub"),
        "role": normalize_role(claims.get("role")),
        "isActive": bool(claims.get("isActive", True)),
        "profile": claims.get("profile") or {},
    }
    if not identity["isActive"] or not account_is_active(identity["id"]):
        current_app.logger.warning("Rejected token of deactivated user %s", identity["id"])
        raise Forbidden(DEACTIVATED_ACCOUNT_MESSAGE)

    g.identity = identity
    return g.identity


def register_account_status(app, lookup: Callable[[str], bool]) -> None:
    """Install ``lookup(user_id) -> bool`` used to re-check the stored account flag."""
    app.extensions[ACCOUNT_STATUS_EXTENSION] = lookup


def account_is_active(user_id: Optional[str]) -> bool:
    lookup = current_app.extensions.get(ACCOUNT_STATUS_EXTENSION)
    if lookup is None:
        return True
    return bool(lookup(user_id))


def current_identity() -> Dict:
    identity = g.get("identity")
    if identity is None:
        raise Unauthorized()
    return identity


def authorize(identity: Dict, allowed_roles: Iterable[str]) -> Dict:
    allowed = {normalize_role(role) for role in allowed_roles} - {""}
    if identity.get("role") not in allowed:
        current_app.logger.warning(
            "Denied %s %s to user %s with role %r",
            request.method,
            request.path,
            identity.get("id"),
            identity.get("role"),
        )
        raise Forbidden()
    return identity


def auth_required(view):
    @wraps(view)
    def wrapper(*args, **kwargs):
        authenticate()
        return view(*args, **kwargs)

    return wrapper


def roles_required(*roles: str):
    def decorator(view):
        @wraps(view)
        def wrapper(*args, **kwargs):
            authorize(authenticate(), roles)
            return view(*args, **kwargs)

        return wrapper

    return decorator


admin_required = roles_required("admin")
