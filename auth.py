"""
Authentication and authorization for SafeTails.

Sessions are signed JWTs (PyJWT) kept in the HTTP-only ``token`` cookie. Every
authenticated request re-reads the user record so that blocking or
deactivating an account takes effect on the next request, not at token expiry.
"""
import os
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional, Tuple

import jwt
from fastapi import Depends, Request, Response
from passlib.context import CryptContext
from pydantic import BaseModel, ValidationError
from pymongo.database import Database

from database import get_by_id, get_db
from errors import AccountBlocked, AuthenticationRequired, Forbidden, InvalidToken, TooManyRequests
from schemas import Role

DEFAULT_JWT_SECRET = "safetails-dev-secret-key-2024-change-in-production"
JWT_SECRET = os.environ.get("JWT_SECRET") or DEFAULT_JWT_SECRET
JWT_ALGORITHM = "HS256"
JWT_ISSUER = "safetails"
JWT_AUDIENCE = "safetails-users"
TOKEN_MAX_AGE = 7 * 24 * 60 * 60  # seconds

COOKIE_NAME = "token"
ENVIRONMENT = os.environ.get("ENVIRONMENT", "development")

# Password hasher
# pbkdf2_sha256 is primary (no 72-byte limit); bcrypt hashes still verify.
pwd_context = CryptContext(
    schemes=["pbkdf2_sha256", "bcrypt"],
    deprecated="auto",
)

# Simple in-memory rate limiter for login (per-IP). 0 attempts disables it.
LOGIN_ATTEMPTS: Dict[str, list] = {}
LOGIN_WINDOW = int(os.environ.get("LOGIN_WINDOW", "300"))  # seconds
LOGIN_MAX_ATTEMPTS = int(os.environ.get("LOGIN_MAX_ATTEMPTS", "0"))


class SessionClaims(BaseModel):
    """Identity carried by the session token."""
    id: str
    email: str
    role: Role


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return pwd_context.verify(password, hashed)
    except ValueError:
        # unknown / malformed hash
        return False


# --- Tokens ---

def create_token(user: Dict[str, Any]) -> str:
    issued = datetime.now(timezone.utc)
    payload = {
        "id": str(user["_id"]),
        "email": user["email"],
        "role": user.get("role", "user"),
        "iss": JWT_ISSUER,
        "aud": JWT_AUDIENCE,
        "iat": issued,
        "exp": issued + timedelta(seconds=TOKEN_MAX_AGE),
    }
    return jwt.encode(payload, JWT_SECRET, algorithm=JWT_ALGORITHM)


def verify_token(token: Optional[str]) -> SessionClaims:
    """Validate signature, issuer, audience and expiry and return typed claims."""
    if not token:
        raise AuthenticationRequired()
    try:
        payload = jwt.decode(
            token,
            JWT_SECRET,
            algorithms=[JWT_ALGORITHM],
            issuer=JWT_ISSUER,
            audience=JWT_AUDIENCE,
        )
        return SessionClaims(id=payload["id"], email=payload["email"], role=payload["role"])
    except jwt.ExpiredSignatureError:
        raise InvalidToken("Session expired")
    except (jwt.InvalidTokenError, KeyError, ValidationError):
        raise InvalidToken()


def blocked_message(db: Database, user: Dict[str, Any]) -> str:
    blocker = get_by_id(db, "user", user.get("blockedBy")) if user.get("blockedBy") else None
    who = (blocker or {}).get("name") or (blocker or {}).get("email") or "an administrator"
    reason = f" Reason: {user['blockReason']}." if user.get("blockReason") else ""
    return f"Your account has been blocked by {who}.{reason}"


def verify_token_and_check_blocked(db: Database, token: Optional[str]) -> Tuple[SessionClaims, Dict[str, Any]]:
    """Verify the token and load a fresh copy of the user it names."""
    claims = verify_token(token)
    user = get_by_id(db, "user", claims.id)
    if not user or not user.get("isActive", True):
        raise InvalidToken()
    if user.get("isBlocked"):
        raise AccountBlocked(blocked_message(db, user), reason=user.get("blockReason"))
    # role changes apply without re-login
    claims = SessionClaims(id=str(user["_id"]), email=user["email"], role=user.get("role", "user"))
    return claims, user


def set_session_cookie(response: Response, token: str):
    response.set_cookie(
        COOKIE_NAME,
        token,
        max_age=TOKEN_MAX_AGE,
        path="/",
        httponly=True,
        secure=ENVIRONMENT == "production",
        samesite="strict",
    )


def clear_session_cookie(response: Response):
    response.delete_cookie(
        COOKIE_NAME,
        path="/",
        httponly=True,
        secure=ENVIRONMENT == "production",
        samesite="strict",
    )


# --- Login rate limiting ---

def check_login_rate(request: Request) -> Tuple[str, list, float]:
    client_host = request.client.host if request.client else "unknown"
    now_ts = datetime.now(timezone.utc).timestamp()
    # purge old attempts
    attempts = [ts for ts in LOGIN_ATTEMPTS.get(client_host, []) if now_ts - ts < LOGIN_WINDOW]
    if LOGIN_MAX_ATTEMPTS and len(attempts) >= LOGIN_MAX_ATTEMPTS:
        raise TooManyRequests("Too many login attempts. Please try again later.")
    return client_host, attempts, now_ts


def record_login_failure(client_host: str, attempts: list, now_ts: float):
    attempts.append(now_ts)
    LOGIN_ATTEMPTS[client_host] = attempts


def reset_login_attempts(client_host: str):
    LOGIN_ATTEMPTS[client_host] = []


# --- Guards ---

class CurrentUser(BaseModel):
    """Resolved session: typed claims plus the fresh user document."""
    model_config = {"arbitrary_types_allowed": True}

    claims: SessionClaims
    user: Dict[str, Any]

    @property
    def id(self) -> str:
        return self.claims.id

    @property
    def role(self) -> str:
        return self.claims.role

    @property
    def is_admin(self) -> bool:
        return self.claims.role == "admin"


def _role_message(roles) -> str:
    if len(roles) == 1:
        return f"{roles[0].capitalize()} access required"
    return "Insufficient permissions"


def require_user(*roles: str):
    """Dependency factory: authenticated user, optionally restricted to ``roles``.

        @app.get("/api/admin/users")
        def list_users(current: CurrentUser = Depends(require_user("admin"))):
            ...
    """

    def dependency(request: Request, db: Database = Depends(get_db)) -> CurrentUser:
        claims, user = verify_token_and_check_blocked(db, request.cookies.get(COOKIE_NAME))
        if roles and claims.role not in roles:
            raise Forbidden(_role_message(roles))
        return CurrentUser(claims=claims, user=user)

    return dependency


def ensure_owner_or_role(current: CurrentUser, owner_id: Any, *roles: str, message: str = "Not authorized"):
    if owner_id is not None and str(owner_id) == current.id:
        return
    if current.role in roles:
        return
    raise Forbidden(message)
