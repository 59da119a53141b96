"""JWT session service"""

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta

import jwt

logger = logging.getLogger(__name__)

VIEWER_SCOPE = "viewer"


@dataclass
class SessionUser:
    """Claims carried by a session token."""

    user_id: str
    user_login: str
    display_name: str
    scope: str | None = None

    @property
    def is_viewer(self) -> bool:
        return self.scope == VIEWER_SCOPE


class AuthService:
    """Handle JWT session token creation and validation"""

    def __init__(
        self,
        secret_key: str,
        algorithm: str = "HS256",
        expire_days: int = 7,
        *,
        issuer: str = "chatvibes-auth",
        audience: str = "chatvibes-api",
    ):
        if not secret_key:
            raise ValueError("JWT secret key cannot be empty")

        self.secret_key = secret_key
        self.algorithm = algorithm
        self.expire_days = expire_days
        self.issuer = issuer
        self.audience = audience

    def create_session_token(
        self,
        user_id: str,
        user_login: str,
        display_name: str,
        scope: str | None = None,
    ) -> str:
        """Create a JWT for a broadcaster, or for a viewer when scope is ``viewer``."""
        now = datetime.now(UTC)
        payload = {
            "sub": user_id,
            "user_login": user_login.lower(),
            "display_name": display_name,
            "iss": self.issuer,
            "aud": self.audience,
            "iat": now,
            "exp": now + timedelta(days=self.expire_days),
        }
        if scope:
            payload["scope"] = scope

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        logger.debug(f"JWT created for {user_login} (scope={scope or 'broadcaster'})")
        return token

    def verify_token(self, token: str) -> SessionUser | None:
        """Verify a JWT and return its user, or None when invalid"""
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
                issuer=self.issuer,
                audience=self.audience,
            )
        except jwt.ExpiredSignatureError:
            logger.warning("Token expired")
            return None
        except jwt.InvalidTokenError as e:
            logger.warning(f"Invalid token: {e}")
            return None

        user_id = payload.get("sub")
        user_login = payload.get("user_login")
        if not user_id or not user_login:
            logger.warning("Token missing sub or user_login")
            return None

        return SessionUser(
            user_id=str(user_id),
            user_login=str(user_login),
            display_name=str(payload.get("display_name") or user_login),
            scope=payload.get("scope"),
        )
