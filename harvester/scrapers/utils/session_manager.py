"""Browser session registry: identity, cookies and request accounting."""

import random
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional

import structlog

from harvester.core.exceptions import SessionError
from harvester.scrapers.utils.user_agents import DESKTOP_IDENTITIES, get_random_identity

logger = structlog.get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class Session:
    """One logical browsing identity reused across attempts of a job."""

    id: str
    identity: str
    platform: str = "unknown"
    created_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    request_count: int = 0
    cookies: List[dict] = field(default_factory=list)
    proxy: Optional[str] = None  # "host:port" of the proxy it was opened through
    active: bool = True


class SessionManager:
    """In-memory session registry.

    Sessions never share mutable state with each other and every operation
    here completes without awaiting, so calls from concurrent jobs cannot
    interleave inside one update.
    """

    def __init__(
        self,
        identities: Optional[List[str]] = None,
        rotate_every: int = 50,
        clock: Callable[[], datetime] = _utcnow,
        rng: Optional[random.Random] = None,
    ):
        """Initialize the registry.

        Args:
            identities: Identity pool, defaults to the desktop identities
            rotate_every: Requests after which a session's identity is rotated
            clock: Time source returning aware datetimes
            rng: Random source for identity draws
        """
        if rotate_every < 1:
            raise ValueError("rotate_every must be at least 1")
        self._identities: List[str] = list(DESKTOP_IDENTITIES if identities is None else identities)
        self.rotate_every = rotate_every
        self._clock = clock
        self._rng = rng or random.Random()
        self._sessions: Dict[str, Session] = {}

    def _new_id(self) -> str:
        millis = int(self._clock().timestamp() * 1000)
        return f"session_{millis}_{secrets.token_hex(5)}"

    def _draw_identity(self) -> str:
        if not self._identities:
            raise SessionError("identity pool is empty")
        return get_random_identity(self._identities, self._rng)

    def create(self, platform: Optional[str] = None, proxy: Optional[str] = None) -> str:
        """Open a new session.

        Args:
            platform: Marketplace the session browses
            proxy: ``host:port`` of the proxy bound to the session

        Returns:
            The new session id

        Raises:
            SessionError: If the identity pool is empty
        """
        now = self._clock()
        session = Session(
            id=self._new_id(),
            identity=self._draw_identity(),
            platform=platform or "unknown",
            created_at=now,
            last_activity=now,
            proxy=proxy,
        )
        self._sessions[session.id] = session
        logger.info("session_created", session_id=session.id, platform=session.platform)
        return session.id

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    def touch(self, session_id: str) -> None:
        """Count one request against the session, rotating its identity periodically."""
        session = self._sessions.get(session_id)
        if not session:
            return
        session.last_activity = self._clock()
        session.request_count += 1

        if session.request_count % self.rotate_every == 0 and self._identities:
            session.identity = self._draw_identity()
            logger.info(
                "session_identity_rotated",
                session_id=session_id,
                request_count=session.request_count,
            )

    def add_cookies(self, session_id: str, cookies: List[dict]) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.cookies = session.cookies + list(cookies)
            logger.debug("session_cookies_added", session_id=session_id, count=len(cookies))

    def get_cookies(self, session_id: str) -> List[dict]:
        session = self._sessions.get(session_id)
        return list(session.cookies) if session else []

    def clear_cookies(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.cookies = []
            logger.debug("session_cookies_cleared", session_id=session_id)

    def deactivate(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.active = False
            logger.info("session_deactivated", session_id=session_id)

    def reactivate(self, session_id: str) -> None:
        session = self._sessions.get(session_id)
        if session:
            session.active = True
            session.last_activity = self._clock()
            logger.info("session_reactivated", session_id=session_id)

    def active(self) -> List[Session]:
        return [s for s in self._sessions.values() if s.active]

    def sweep(self, max_age: timedelta = timedelta(hours=24)) -> int:
        """Remove sessions older than ``max_age``, active or not.

        Returns:
            Number of sessions removed
        """
        now = self._clock()
        expired = [sid for sid, s in self._sessions.items() if now - s.created_at > max_age]
        for sid in expired:
            del self._sessions[sid]
        if expired:
            logger.info("sessions_swept", removed=len(expired))
        return len(expired)

    def stats(self) -> dict:
        """Get registry statistics.

        Returns:
            Dictionary with total, active, inactive, average_age_hours, total_requests
        """
        sessions = list(self._sessions.values())
        active = sum(1 for s in sessions if s.active)
        now = self._clock()
        if sessions:
            total_age = sum((now - s.created_at).total_seconds() for s in sessions)
            average_age_hours = round(total_age / len(sessions) / 3600)
        else:
            average_age_hours = 0
        return {
            "total": len(sessions),
            "active": active,
            "inactive": len(sessions) - active,
            "average_age_hours": average_age_hours,
            "total_requests": sum(s.request_count for s in sessions),
        }

    # Identity pool

    def add_identity(self, identity: str) -> None:
        self._identities.append(identity)
        logger.info("identity_added", identity=identity[:50])

    def remove_identity(self, identity: str) -> bool:
        before = len(self._identities)
        self._identities = [i for i in self._identities if i != identity]
        removed = len(self._identities) != before
        if removed:
            logger.info("identity_removed", identity=identity[:50])
        return removed

    def identities(self) -> List[str]:
        return list(self._identities)
