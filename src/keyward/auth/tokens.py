"""Access token issuance, validation and revocation.

Learn: Tokens are signed JWTs (PyJWT) carrying a random `jti`, but the
signature alone never makes a token valid. Every issued token also gets
a server-side record keyed by its jti:

    jti → {subject, client_id, expires_at}

Validation = verify signature → look up record → check expiry against
the record. Deleting the record revokes the token immediately, which a
purely stateless JWT can't do.

Two record stores:
- MemoryTokenStore: process-local dict (default, single instance)
- RedisTokenStore: shared across instances, keys expire on their own
"""

import hmac
import json
import secrets
import threading
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping, Optional, Protocol

import jwt
import structlog

from keyward.errors import InvalidClient, TokenExpired, TokenInvalid

logger = structlog.get_logger()

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class AccessTokenRecord:
    """Server-side state of one issued token."""

    token_id: str
    subject: str
    client_id: str
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def to_json(self) -> str:
        return json.dumps({
            "token_id": self.token_id,
            "subject": self.subject,
            "client_id": self.client_id,
            "expires_at": self.expires_at.isoformat(),
        })

    @classmethod
    def from_json(cls, raw: str) -> "AccessTokenRecord":
        data = json.loads(raw)
        return cls(
            token_id=data["token_id"],
            subject=data["subject"],
            client_id=data["client_id"],
            expires_at=datetime.fromisoformat(data["expires_at"]),
        )


@dataclass(frozen=True)
class IssuedToken:
    token: str
    expires_at: datetime
    expires_in: int
    token_type: str = "bearer"


# ─── Stores ──────────────────────────────────────────────


class TokenStore(Protocol):
    async def put(self, record: AccessTokenRecord, ttl_seconds: int) -> None: ...

    async def get(self, token_id: str) -> Optional[AccessTokenRecord]: ...

    async def delete(self, token_id: str) -> bool: ...

    def purge_expired(self, now: datetime) -> int: ...


class MemoryTokenStore:
    """Process-local token records.

    Reads are a single dict lookup and take no lock; writes hold the lock
    only for the one mutation.
    """

    def __init__(self):
        self._records: dict[str, AccessTokenRecord] = {}
        self._lock = threading.Lock()

    async def put(self, record: AccessTokenRecord, ttl_seconds: int) -> None:
        with self._lock:
            self._records[record.token_id] = record

    async def get(self, token_id: str) -> Optional[AccessTokenRecord]:
        return self._records.get(token_id)

    async def delete(self, token_id: str) -> bool:
        with self._lock:
            return self._records.pop(token_id, None) is not None

    def purge_expired(self, now: datetime) -> int:
        """Drop records past expiry. Returns how many were removed."""
        with self._lock:
            stale = [k for k, r in self._records.items() if r.is_expired(now)]
            for key in stale:
                del self._records[key]
        return len(stale)

    def __len__(self) -> int:
        return len(self._records)


class RedisTokenStore:
    """Token records in Redis: keyward:token:{jti} → JSON.

    Learn: Keys outlive the token by `grace_seconds` so a request made
    shortly after expiry still gets "expired" rather than "invalid".
    Redis then reclaims the key on its own.
    """

    def __init__(self, redis, prefix: str = "keyward:token:", grace_seconds: int = 3600):
        self.redis = redis
        self.prefix = prefix
        self.grace_seconds = grace_seconds

    async def put(self, record: AccessTokenRecord, ttl_seconds: int) -> None:
        await self.redis.set(
            self.prefix + record.token_id,
            record.to_json(),
            ex=max(1, ttl_seconds) + self.grace_seconds,
        )

    async def get(self, token_id: str) -> Optional[AccessTokenRecord]:
        raw = await self.redis.get(self.prefix + token_id)
        if raw is None:
            return None
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8")
        return AccessTokenRecord.from_json(raw)

    async def delete(self, token_id: str) -> bool:
        return bool(await self.redis.delete(self.prefix + token_id))

    def purge_expired(self, now: datetime) -> int:
        # Keys carry their own TTL; Redis reclaims them.
        return 0


# ─── Service ─────────────────────────────────────────────


class TokenService:
    """Issues, validates and revokes bearer access tokens."""

    def __init__(
        self,
        store: TokenStore,
        clients: Mapping[str, str],
        secret: str,
        algorithm: str = "HS256",
        ttl: timedelta = timedelta(minutes=120),
        clock: Clock = utcnow,
    ):
        self.store = store
        self.clients = dict(clients)
        self.secret = secret
        self.algorithm = algorithm
        self.ttl = ttl
        self.clock = clock

    # ─── Clients ────────────────────────────────────────

    def is_registered_client(self, client_id: str) -> bool:
        return client_id in self.clients

    def verify_client(self, client_id: str, client_secret: str) -> None:
        """Raise InvalidClient unless the id/secret pair is registered."""
        expected = self.clients.get(client_id or "")
        if expected is None or not hmac.compare_digest(
            expected.encode("utf-8"), (client_secret or "").encode("utf-8")
        ):
            raise InvalidClient()

    # ─── Tokens ─────────────────────────────────────────

    async def issue_token(self, account_id: uuid.UUID | str, client_id: str) -> IssuedToken:
        if not self.is_registered_client(client_id):
            raise InvalidClient()

        now = self.clock()
        expires_at = now + self.ttl
        token_id = secrets.token_urlsafe(24)
        token = jwt.encode(
            {
                "sub": str(account_id),
                "cid": client_id,
                "jti": token_id,
                "iat": int(now.timestamp()),
                "exp": int(expires_at.timestamp()),
            },
            self.secret,
            algorithm=self.algorithm,
        )
        record = AccessTokenRecord(
            token_id=token_id,
            subject=str(account_id),
            client_id=client_id,
            expires_at=expires_at,
        )
        await self.store.put(record, int(self.ttl.total_seconds()))

        logger.info("token.issued", account_id=str(account_id), client_id=client_id)
        return IssuedToken(
            token=token,
            expires_at=expires_at,
            expires_in=int(self.ttl.total_seconds()),
        )

    async def validate_token(self, token: str) -> AccessTokenRecord:
        """Return the token's record, or raise TokenInvalid / TokenExpired."""
        payload = self._decode(token)

        record = await self.store.get(payload["jti"])
        if record is None or record.subject != payload["sub"]:
            raise TokenInvalid()
        if record.is_expired(self.clock()):
            raise TokenExpired()
        return record

    async def revoke_token(self, token: str) -> bool:
        """Remove the token's record. Unknown or malformed tokens are a no-op."""
        try:
            payload = self._decode(token)
        except TokenInvalid:
            return False
        removed = await self.store.delete(payload["jti"])
        if removed:
            logger.info("token.revoked", account_id=payload["sub"])
        return removed

    def purge_expired(self) -> int:
        """Drop records whose tokens have expired, by this service's clock."""
        removed = self.store.purge_expired(self.clock())
        if removed:
            logger.info("token.purged", count=removed)
        return removed

    def _decode(self, token: str) -> dict:
        # Expiry is judged against the server-side record (and our clock),
        # so only the signature and claim shape are checked here.
        try:
            return jwt.decode(
                token,
                self.secret,
                algorithms=[self.algorithm],
                options={
                    "verify_exp": False,
                    "verify_iat": False,
                    "require": ["sub", "jti", "exp"],
                },
            )
        except jwt.InvalidTokenError:
            raise TokenInvalid()
