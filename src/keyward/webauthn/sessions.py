"""Ceremony sessions — server-held state between begin and finish.

Learn: A registration ceremony spans two HTTP round trips. The challenge
issued at begin must still be known at finish, so it is kept here, on
the server, under a random opaque reference. The client only ever holds
the reference, never the challenge state itself.

Lifecycle of one session:

    bind()     → challenge_issued   (any older session of the account is dropped)
    consume()  → completed | invalidated   (always removed, success or not)
    TTL passes → swept by SessionSweeper

Every map operation holds the lock for that one operation only — never
across an await and never across the two ceremony phases.
"""

import asyncio
import enum
import secrets
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Optional

import structlog

from keyward.auth.tokens import TokenService
from keyward.errors import SessionExpired, SessionNotFound

logger = structlog.get_logger()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class CeremonyStatus(str, enum.Enum):
    CHALLENGE_ISSUED = "challenge_issued"
    COMPLETED = "completed"
    INVALIDATED = "invalidated"


@dataclass
class CeremonySession:
    reference: str
    account_id: uuid.UUID
    challenge: bytes
    created_at: datetime
    expires_at: datetime
    state: dict[str, Any] = field(default_factory=dict)
    status: CeremonyStatus = CeremonyStatus.CHALLENGE_ISSUED

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


class SessionBinder:
    """In-memory, single-use, TTL-bound ceremony sessions."""

    def __init__(
        self,
        ttl: timedelta = timedelta(minutes=5),
        clock: Callable[[], datetime] = utcnow,
    ):
        self.ttl = ttl
        self.clock = clock
        self._sessions: dict[str, CeremonySession] = {}
        self._by_account: dict[uuid.UUID, str] = {}
        self._lock = threading.Lock()

    def bind(
        self,
        account_id: uuid.UUID,
        challenge: bytes,
        state: Optional[dict[str, Any]] = None,
    ) -> CeremonySession:
        """Create the account's live session. Any earlier one stops being live."""
        now = self.clock()
        session = CeremonySession(
            reference=secrets.token_urlsafe(32),
            account_id=account_id,
            challenge=challenge,
            created_at=now,
            expires_at=now + self.ttl,
            state=dict(state or {}),
        )
        with self._lock:
            previous = self._by_account.pop(account_id, None)
            if previous is not None:
                dropped = self._sessions.pop(previous, None)
                if dropped is not None:
                    dropped.status = CeremonyStatus.INVALIDATED
            self._sessions[session.reference] = session
            self._by_account[account_id] = session.reference

        if previous is not None:
            logger.info("webauthn.session_superseded", account_id=str(account_id))
        return session

    def consume(self, reference: str) -> CeremonySession:
        """Remove and return a session. It can never be resolved again.

        Raises SessionNotFound for unknown (or already used / superseded)
        references and SessionExpired once the TTL has passed.
        """
        with self._lock:
            session = self._sessions.pop(reference or "", None)
            if session is not None and self._by_account.get(session.account_id) == reference:
                del self._by_account[session.account_id]

        if session is None:
            raise SessionNotFound()
        session.status = CeremonyStatus.INVALIDATED
        if session.is_expired(self.clock()):
            raise SessionExpired()
        return session

    def purge_expired(self) -> int:
        """Drop every expired session. Returns how many were removed."""
        now = self.clock()
        with self._lock:
            stale = [ref for ref, s in self._sessions.items() if s.is_expired(now)]
            for ref in stale:
                session = self._sessions.pop(ref)
                session.status = CeremonyStatus.INVALIDATED
                if self._by_account.get(session.account_id) == ref:
                    del self._by_account[session.account_id]
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)


class SessionSweeper:
    """Background task that reclaims abandoned ceremony sessions.

    Learn: The same loop also reclaims expired access-token records when
    given a token service; the in-memory token store has no TTL of its own.

    Usage:
        sweeper = SessionSweeper(binder, interval=30, tokens=token_service)
        asyncio.create_task(sweeper.run_loop())
    """

    def __init__(self, binder: SessionBinder, interval: float = 30.0, tokens: Optional[TokenService] = None):
        self.binder = binder
        self.interval = interval
        self.tokens = tokens
        self._running = False

    def sweep(self) -> tuple[int, int]:
        """One pass. Returns (sessions removed, token records removed)."""
        sessions = self.binder.purge_expired()
        tokens = self.tokens.purge_expired() if self.tokens is not None else 0
        if sessions or tokens:
            logger.info("session_sweeper.purged", sessions=sessions, tokens=tokens)
        return sessions, tokens

    async def run_loop(self) -> None:
        self._running = True
        logger.info("session_sweeper.started", interval=self.interval)

        while self._running:
            try:
                self.sweep()
            except Exception:
                logger.exception("session_sweeper.error")
            await asyncio.sleep(self.interval)

    def stop(self) -> None:
        self._running = False
        logger.info("session_sweeper.stopping")
