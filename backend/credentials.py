from datetime import timedelta
from typing import Dict, Optional

import bcrypt
from flask_jwt_extended import create_access_token, decode_token
from flask_jwt_extended.exceptions import JWTExtendedException
from jwt.exceptions import PyJWTError

from .errors import InvalidToken

BCRYPT_ROUNDS = 10
PROFILE_CLAIM_FIELDS = ("firstName", "lastName", "avatar")


def hash_password(password: str) -> str:
    hashed = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(BCRYPT_ROUNDS))
    return hashed.decode("utf-8")


def verify_password(password: str, hashed_password) -> bool:
    if not password or not hashed_password:
        return False
    if isinstance(hashed_password, str):
        hashed_password = hashed_password.encode("utf-8")
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed_password)
    except ValueError:
        # Stored value is not a bcrypt hash.
        return False


def build_claims(user_document) -> Dict:
    profile = user_document.get("profile") or {}
    return {
        "role": user_document.get("role"),
        "isActive": bool(user_document.get("isActive", True)),
        "profile": {
            key: profile[key] for key in PROFILE_CLAIM_FIELDS if key in profile
        },
    }


def issue_token(identity_id, claims: Dict, ttl: Optional[timedelta] = None) -> str:
    """Sign ``claims`` for ``identity_id`` with the app's secret.

    Without ``ttl`` the token gets ``JWT_ACCESS_TOKEN_EXPIRES`` from config.
    Must run inside an application context. A token always carries ``exp``.
    """
    if ttl is not None and ttl <= timedelta(0):
        raise ValueError(f"Token lifetime must be positive, got {ttl!r}")
    if ttl is None:
        return create_access_token(identity=str(identity_id), additional_claims=claims)
    return create_access_token(
        identity=str(identity_id), additional_claims=claims, expires_delta=ttl
    )


def parse_token(token: str) -> Dict:
    if not token:
        raise InvalidToken("Token is missing.")
    try:
        return decode_token(token)
    except (PyJWTError, JWTExtendedException) as exc:
        raise InvalidToken(str(exc)) from exc
