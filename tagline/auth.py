"""
Password login, access-token signing and refresh-token lifecycle.

Access tokens are short-lived signed JWTs that are never stored. Refresh
tokens are opaque random strings tracked in a TokenStore so they can be
revoked on logout or rotation. Logout does not revoke access tokens that are
already issued; they stay valid until their own expiry.
"""

from __future__ import annotations

import hmac
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

from jose import JWTError, jwt

from tagline.config import Settings
from tagline.errors import UnauthorizedError
from tagline.tokens import RefreshTokenRecord, TokenStore

logger = logging.getLogger(__name__)

OWNER_SUBJECT = "owner"
ACCESS_TOKEN_TYPE = "access"

INVALID_CREDENTIALS = "Invalid credentials"
INVALID_ACCESS_TOKEN = "Invalid or expired access token"
INVALID_REFRESH_TOKEN = "Invalid or expired refresh token"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenPair:
    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class AuthService:
    """Issues and checks credentials for the single configured owner."""

    def __init__(
        self,
        *,
        password: str,
        token_secret: str,
        token_store: TokenStore,
        algorithm: str = "HS256",
        access_token_ttl: timedelta = timedelta(minutes=30),
        refresh_token_ttl: timedelta = timedelta(days=14),
        rotate_refresh_tokens: bool = True,
        clock: Callable[[], datetime] = _utcnow,
    ):
        if not password or not token_secret:
            raise ValueError("password and token_secret are required")
        self._password = password.encode("utf-8")
        self._token_secret = token_secret
        self.token_store = token_store
        self.algorithm = algorithm
        self.access_token_ttl = access_token_ttl
        self.refresh_token_ttl = refresh_token_ttl
        self.rotate_refresh_tokens = rotate_refresh_tokens
        self._clock = clock

    @classmethod
    def from_settings(cls, settings: Settings, token_store: TokenStore) -> "AuthService":
        return cls(
            password=settings.password.get_secret_value(),
            token_secret=settings.token_secret.get_secret_value(),
            token_store=token_store,
            algorithm=settings.token_algorithm,
            access_token_ttl=timedelta(minutes=settings.access_token_ttl_minutes),
            refresh_token_ttl=timedelta(days=settings.refresh_token_ttl_days),
            rotate_refresh_tokens=settings.rotate_refresh_tokens,
        )

    def verify_password(self, candidate: str) -> bool:
        return hmac.compare_digest(candidate.encode("utf-8"), self._password)

    def login(self, password: str) -> TokenPair:
        if not self.verify_password(password):
            logger.info("Rejected login attempt")
            raise UnauthorizedError(INVALID_CREDENTIALS)
        return TokenPair(
            access_token=self.create_access_token(OWNER_SUBJECT),
            refresh_token=self.issue_refresh_token(OWNER_SUBJECT),
        )

    def create_access_token(
        self,
        subject: str = OWNER_SUBJECT,
        expires_delta: Optional[timedelta] = None,
    ) -> str:
        """Create a signed access token for ``subject``.

        Args:
            subject: Value of the ``sub`` claim.
            expires_delta: Optional TTL; defaults to the configured access TTL.
        """
        now = self._clock()
        claims = {
            "sub": subject,
            "type": ACCESS_TOKEN_TYPE,
            "iat": now,
            "exp": now + (expires_delta if expires_delta is not None else self.access_token_ttl),
        }
        return jwt.encode(claims, self._token_secret, algorithm=self.algorithm)

    def verify_access_token(self, token: str) -> dict[str, Any]:
        """Decode ``token`` and return its claims.

        Raises:
            UnauthorizedError: If the signature is bad, the token is expired
                or malformed, or it is not an access token.
        """
        try:
            claims = jwt.decode(
                token,
                self._token_secret,
                algorithms=[self.algorithm],
                options={"require_exp": True, "require_sub": True},
            )
        except JWTError as exc:
            raise UnauthorizedError(INVALID_ACCESS_TOKEN) from exc
        if claims.get("type") != ACCESS_TOKEN_TYPE:
            raise UnauthorizedError(INVALID_ACCESS_TOKEN)
        return claims

    def issue_refresh_token(self, subject: str = OWNER_SUBJECT) -> str:
        token = secrets.token_urlsafe(48)
        now = self._clock()
        self.token_store.save(
            RefreshTokenRecord.for_token(
                token,
                subject=subject,
                issued_at=now,
                expires_at=now + self.refresh_token_ttl,
            )
        )
        return token

    def refresh(self, refresh_token: Optional[str]) -> TokenPair:
        """Mint a new access token, rotating the refresh token if configured."""
        record = self.token_store.get(refresh_token) if refresh_token else None
        if record is None or not record.is_active(self._clock()):
            logger.info("Rejected refresh token")
            raise UnauthorizedError(INVALID_REFRESH_TOKEN)

        next_refresh_token = refresh_token
        if self.rotate_refresh_tokens:
            # Only the caller that revokes the old token may mint its successor.
            if not self.token_store.revoke(refresh_token):
                logger.info("Refresh token was revoked concurrently")
                raise UnauthorizedError(INVALID_REFRESH_TOKEN)
            next_refresh_token = self.issue_refresh_token(record.subject)

        return TokenPair(
            access_token=self.create_access_token(record.subject),
            refresh_token=next_refresh_token,
        )

    def logout(self, refresh_token: Optional[str]) -> None:
        if refresh_token:
            self.token_store.revoke(refresh_token)
