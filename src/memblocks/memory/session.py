"""
Session lifecycle - inactivity-driven expiry with fold-into-history.

ACTIVE -> EXPIRING -> CLOSED happens within a single call: the stale
session's turns are folded into one summary (when there are enough of them),
its stored turns are dropped, and a fresh session takes over the turn log.
"""

import secrets
import string
from datetime import datetime, timedelta

from memblocks.core.events import EventBus, SessionClosed, SessionStarted
from memblocks.core.logging import get_logger
from memblocks.core.types import Session, SessionState, Turn
from memblocks.core.typing import Clock
from memblocks.memory.compactor import summarize
from memblocks.memory.persistence import PersistenceAdapter
from memblocks.memory.recall import TurnLog, parse_turns, recall_key
from memblocks.memory.summaries import SummaryArchive

logger = get_logger("memory.session")

SESSION_KEY = "last_session"
MIN_TURNS_TO_SUMMARIZE = 3  # sessions with 2 or fewer turns are dropped unsummarized

_BASE36 = string.digits + string.ascii_lowercase


class SessionNotStartedError(RuntimeError):
    """A turn was recorded before the stored session was loaded."""


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def generate_session_id(now: datetime | None = None) -> str:
    """Opaque id: ses_<base36 epoch millis>_<6 random chars>."""
    now = now or datetime.now()
    millis = int(now.timestamp() * 1000)
    suffix = "".join(secrets.choice(_BASE36) for _ in range(6))
    return f"ses_{_to_base36(millis)}_{suffix}"


class SessionController:
    """Owns the active session and decides between resume and rollover."""

    def __init__(
        self,
        persistence: PersistenceAdapter,
        events: EventBus,
        recall: TurnLog,
        archive: SummaryArchive,
        inactivity_timeout: timedelta = timedelta(minutes=30),
        clock: Clock = datetime.now,
    ):
        self._persistence = persistence
        self._events = events
        self._recall = recall
        self._archive = archive
        self.inactivity_timeout = inactivity_timeout
        self._clock = clock
        self.state = SessionState.CLOSED
        self.current: Session | None = None
        recall.bind_session(self)

    @property
    def session_id(self) -> str | None:
        return self.current.session_id if self.current else None

    def is_stale(self, session: Session | None = None, now: datetime | None = None) -> bool:
        """True once the session has been idle for the inactivity timeout."""
        session = session or self.current
        if session is None:
            return True
        now = now or self._clock()
        return now - session.last_touched_at >= self.inactivity_timeout

    async def start(self) -> Session:
        """Resume the last session if still fresh, otherwise roll over."""
        now = self._clock()
        previous = self._parse_session(await self._persistence.load(SESSION_KEY))

        if previous is not None and not self.is_stale(previous, now):
            data = await self._persistence.load(recall_key(previous.session_id))
            self._recall.restore(previous.session_id, previous.started_at, data)
            self.current = previous
            self.state = SessionState.ACTIVE
            self.touch()
            self._events.publish(SessionStarted(session_id=previous.session_id, resumed=True))
            logger.info(f"Resumed session {previous.session_id} ({self._recall.count()} turns)")
            return previous

        if previous is not None:
            data = await self._persistence.load(recall_key(previous.session_id))
            self._close(previous, self._parse_turns(previous.session_id, data))

        return self._open(now)

    def ensure_current(self) -> None:
        """Roll over a session that went stale while the process kept running.

        Raises:
            SessionNotStartedError: If start() has not run yet
        """
        if self.current is None:
            raise SessionNotStartedError("No active session. Call start() (or init()) first.")
        if self.is_stale():
            logger.info(f"Session {self.current.session_id} expired while idle")
            self._close(self.current, self._recall.all())
            self._open(self._clock())

    def touch(self) -> None:
        """Refresh last activity time for the active session."""
        if self.current is None:
            return
        self.current.last_touched_at = self._clock()
        self._save()

    def restart(self) -> Session:
        """Discard the current session without summarizing it (reset only)."""
        if self.current is not None:
            self._persistence.remove(recall_key(self.current.session_id))
            self.state = SessionState.CLOSED
        return self._open(self._clock())

    def _close(self, session: Session, turns: list[Turn]) -> None:
        self.state = SessionState.EXPIRING
        summarized = len(turns) >= MIN_TURNS_TO_SUMMARIZE
        if summarized:
            record = summarize(
                turns,
                session_id=session.session_id,
                source_context=self._recall.source_context,
                created_at=self._clock(),
            )
            self._archive.add(record)

        self._persistence.remove(recall_key(session.session_id))
        self.state = SessionState.CLOSED
        self._events.publish(
            SessionClosed(session_id=session.session_id, turns=len(turns), summarized=summarized)
        )
        logger.info(
            f"Closed session {session.session_id} ({len(turns)} turns"
            + (", summarized)" if summarized else ")")
        )

    def _open(self, now: datetime) -> Session:
        session = Session(session_id=generate_session_id(now), started_at=now, last_touched_at=now)
        self.current = session
        self._recall.reset(session.session_id, now)
        self.state = SessionState.ACTIVE
        self._save()
        self._events.publish(SessionStarted(session_id=session.session_id, resumed=False))
        logger.info(f"Started session {session.session_id}")
        return session

    def _save(self) -> None:
        if self.current is not None:
            self._persistence.save(SESSION_KEY, self.current.to_dict())

    @staticmethod
    def _parse_session(data: object) -> Session | None:
        if data is None:
            return None
        try:
            return Session.from_dict(data)  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed session snapshot, starting fresh: {e}")
            return None

    @staticmethod
    def _parse_turns(session_id: str, data: object) -> list[Turn]:
        if data is None:
            return []
        try:
            return parse_turns(data)  # type: ignore[arg-type]
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Malformed recall snapshot for {session_id}, nothing to fold: {e}")
            return []
