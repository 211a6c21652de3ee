"""
Refresh-token store.

Supports an in-memory store for tests/local runs and a Redis-backed
implementation for production. Tokens are keyed by their SHA-256 digest so
the clear-text credential is never persisted.
"""

from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

import redis
from redis import exceptions as redis_exceptions
from redis.backoff import NoBackoff
from redis.retry import Retry

from tagline.errors import BackendUnavailableError

logger = logging.getLogger(__name__)

TOKEN_STORE_UNAVAILABLE = "Token store unavailable"

# Flags the token revoked only if it still exists; returns 1 for the caller
# that performed the revocation and 0 for everyone else.
_REVOKE_SCRIPT = """
if redis.call('EXISTS', KEYS[1]) == 0 then
    return 0
end
return redis.call('HSETNX', KEYS[1], 'revoked', ARGV[1])
"""


def token_digest(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class RefreshTokenRecord:
    digest: str
    subject: str
    issued_at: datetime
    expires_at: datetime
    revoked: bool = False

    @classmethod
    def for_token(
        cls, token: str, subject: str, issued_at: datetime, expires_at: datetime
    ) -> "RefreshTokenRecord":
        return cls(
            digest=token_digest(token),
            subject=subject,
            issued_at=issued_at,
            expires_at=expires_at,
        )

    def is_active(self, now: datetime) -> bool:
        return not self.revoked and now < self.expires_at


class TokenStore(Protocol):
    """Minimal interface for tracking issued refresh tokens."""

    def save(self, record: RefreshTokenRecord) -> None:
        ...

    def get(self, token: str) -> Optional[RefreshTokenRecord]:
        ...

    def revoke(self, token: str) -> bool:
        ...


@dataclass
class InMemoryTokenStore:
    """
    Dictionary-backed store for testing/dev.

    Expired records are dropped whenever a token is saved, so the store only
    holds tokens that could still be presented.
    """

    records: Dict[str, RefreshTokenRecord] = field(default_factory=dict)

    def __post_init__(self):
        self._lock = threading.Lock()

    def save(self, record: RefreshTokenRecord) -> None:
        now = datetime.now(timezone.utc)
        with self._lock:
            expired = [
                digest for digest, stored in self.records.items() if stored.expires_at <= now
            ]
            for digest in expired:
                del self.records[digest]
            self.records[record.digest] = record

    def get(self, token: str) -> Optional[RefreshTokenRecord]:
        with self._lock:
            return self.records.get(token_digest(token))

    def revoke(self, token: str) -> bool:
        digest = token_digest(token)
        with self._lock:
            record = self.records.get(digest)
            if record is None or record.revoked:
                return False
            self.records[digest] = replace(record, revoked=True)
            return True


@dataclass
class RedisTokenStore:
    """
    Redis-backed store using one hash per token.

    Keys expire together with the token, so the store never grows beyond the
    set of unexpired tokens. Connection problems fail fast and are never
    retried.
    """

    url: str
    key_prefix: str = "tagline:refresh"
    timeout_seconds: float = 5.0
    client: Optional[redis.Redis] = None

    def __post_init__(self):
        if self.client is None:
            self.client = redis.Redis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=self.timeout_seconds,
                socket_connect_timeout=self.timeout_seconds,
                retry=Retry(NoBackoff(), 0),
            )
        self._revoke = self.client.register_script(_REVOKE_SCRIPT)

    def _key(self, digest: str) -> str:
        return f"{self.key_prefix}:{digest}"

    def _unavailable(self, operation: str, exc: Exception) -> BackendUnavailableError:
        logger.warning("Redis %s failed: %s", operation, exc)
        return BackendUnavailableError(TOKEN_STORE_UNAVAILABLE)

    def save(self, record: RefreshTokenRecord) -> None:
        key = self._key(record.digest)
        mapping = {
            "subject": record.subject,
            "issued_at": record.issued_at.isoformat(),
            "expires_at": record.expires_at.isoformat(),
        }
        if record.revoked:
            mapping["revoked"] = "1"
        try:
            pipe = self.client.pipeline()
            pipe.hset(key, mapping=mapping)
            pipe.expireat(key, record.expires_at)
            pipe.execute()
        except redis_exceptions.RedisError as exc:
            raise self._unavailable("save", exc) from exc

    def get(self, token: str) -> Optional[RefreshTokenRecord]:
        digest = token_digest(token)
        try:
            data = self.client.hgetall(self._key(digest))
        except redis_exceptions.RedisError as exc:
            raise self._unavailable("get", exc) from exc
        if not data:
            return None
        return RefreshTokenRecord(
            digest=digest,
            subject=data["subject"],
            issued_at=_parse_time(data["issued_at"]),
            expires_at=_parse_time(data["expires_at"]),
            revoked=data.get("revoked") == "1",
        )

    def revoke(self, token: str) -> bool:
        try:
            result = self._revoke(keys=[self._key(token_digest(token))], args=["1"])
        except redis_exceptions.RedisError as exc:
            raise self._unavailable("revoke", exc) from exc
        return int(result) == 1


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
