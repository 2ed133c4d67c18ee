"""
Bearer token authentication.

Tokens carry only user_id; role and vendor profile are read from the store on
every request so a role change takes effect immediately.
"""

import jwt
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional
from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .exceptions import AuthenticationError, PermissionDeniedError, UserNotFoundError
from .database import DatabaseManager, db_manager, load_json
from ..config.settings import settings
from ..models.user import Actor, Role, User


class SecurityManager:
    """Issues and verifies JWTs"""

    def __init__(self, secret_key: Optional[str] = None, algorithm: Optional[str] = None):
        self.secret_key = secret_key or settings.jwt_secret_key
        self.algorithm = algorithm or settings.jwt_algorithm

    def create_jwt_token(self, user_id: int, additional_claims: Dict[str, Any] = None) -> str:
        now = datetime.now(timezone.utc)
        payload = {
            "user_id": user_id,
            "exp": now + timedelta(hours=settings.jwt_expire_hours),
            "iat": now,
        }
        if additional_claims:
            payload.update(additional_claims)
        return jwt.encode(payload, self.secret_key, algorithm=self.algorithm)

    def decode_jwt_token(self, token: str) -> Dict[str, Any]:
        try:
            return jwt.decode(token, self.secret_key, algorithms=[self.algorithm])
        except jwt.ExpiredSignatureError:
            raise AuthenticationError("Token has expired")
        except jwt.InvalidTokenError as e:
            raise AuthenticationError(f"Invalid token: {e}")

    def get_user_id_from_token(self, token: str) -> int:
        payload = self.decode_jwt_token(token)
        user_id = payload.get("user_id")
        if user_id is None:
            raise AuthenticationError("Token missing user_id")
        return int(user_id)


# Global security manager
security_manager = SecurityManager()


def create_access_token(user_id: int) -> str:
    return security_manager.create_jwt_token(user_id)


def load_actor(user_id: int, db: DatabaseManager = None) -> Actor:
    """Resolve role and vendor profile for a user id"""
    db = db or db_manager
    row = db.fetch_one("SELECT id, name, role, push_tokens, created_at FROM users WHERE id = ?", [user_id])
    if not row:
        raise UserNotFoundError(user_id)
    user = User(**{**row, "push_tokens": load_json(row["push_tokens"], [])})

    vendor_id = None
    if user.role == Role.VENDOR:
        vendor = db.fetch_one(
            "SELECT vendor_id FROM vendors WHERE user_id = ? AND is_active = TRUE",
            [user_id]
        )
        if not vendor:
            raise PermissionDeniedError("Vendor profile not found or inactive")
        vendor_id = vendor["vendor_id"]

    return Actor(user_id=user.id, role=user.role, vendor_id=vendor_id)


bearer_scheme = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)
) -> Actor:
    """FastAPI dependency: the authenticated caller"""
    if credentials is None:
        raise AuthenticationError("Authorization header missing")
    user_id = security_manager.get_user_id_from_token(credentials.credentials)
    try:
        return load_actor(user_id)
    except UserNotFoundError:
        raise AuthenticationError("Unknown user")
