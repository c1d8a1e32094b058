"""Per-call session state and the in-memory session store.

Each inbound call gets a CallSession keyed by its Twilio CallSid.  The
session is created lazily on the first turn, mutated by the extractor
(slots) and the orchestrator (transcript), and deleted as soon as the lead
is handed to the notifier.  Calls that go quiet are evicted after an idle
timeout so the store cannot grow without bound.

Nothing here survives a process restart; a deployment that needs durable
calls has to put a different store behind the same interface.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Iterator, Literal, Optional

from pydantic import BaseModel

from receptionist.workflows.schema import IntakeSchema

log = logging.getLogger("receptionist.session")


def redact_pii(value: str) -> str:
    """Mask PII for logging: show first 3 and last 2 chars only."""
    if not value or len(value) <= 5:
        return "***"
    return value[:3] + "***" + value[-2:]


class Turn(BaseModel):
    """One transcript line."""

    role: Literal["user", "assistant"]
    content: str


class CallSession(BaseModel):
    """Accumulated slot-fill state and transcript for a single call."""

    call_sid: str = ""
    caller_number: str = ""
    slots: dict[str, Optional[str]] = {}
    transcript: list[Turn] = []
    created_at: float = 0.0
    last_seen: float = 0.0

    def add_turn(self, role: str, content: str) -> None:
        self.transcript.append(Turn(role=role, content=content))

    def filled_slots(self) -> dict[str, str]:
        return {k: v for k, v in self.slots.items() if v}

    def to_dict(self, detail: bool = False) -> dict[str, Any]:
        """Serialize for the admin API.

        With detail=False: summary suitable for listing.
        With detail=True: adds slot values and the recent transcript.
        """
        d: dict[str, Any] = {
            "call_sid": self.call_sid,
            "caller_number": redact_pii(self.caller_number),
            "filled": sorted(self.filled_slots()),
            "turns": len(self.transcript),
            "created_at": self.created_at,
            "last_seen": self.last_seen,
        }
        if detail:
            d["slots"] = dict(self.slots)
            d["recent_transcript"] = [t.model_dump() for t in self.transcript[-6:]]
        return d


class SessionStore:
    """Process-wide map of call identifier to CallSession.

    ``get`` creates on first access; ``delete`` removes on completion.
    Sessions idle for longer than ``idle_timeout`` seconds are evicted
    lazily on every ``get`` and by the periodic sweep in the app.
    """

    def __init__(
        self,
        schema: IntakeSchema,
        idle_timeout: float = 900.0,
        clock: Callable[[], float] = time.monotonic,
        on_evict: Optional[Callable[[str], None]] = None,
    ) -> None:
        self._schema = schema
        self._idle_timeout = idle_timeout
        self._clock = clock
        self._on_evict = on_evict
        self._sessions: dict[str, CallSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, call_sid: object) -> bool:
        return call_sid in self._sessions

    def sessions(self) -> Iterator[CallSession]:
        return iter(list(self._sessions.values()))

    def new_session(self, call_sid: str = "", caller_number: str = "") -> CallSession:
        """Build an empty session without registering it."""
        now = self._clock()
        return CallSession(
            call_sid=call_sid,
            caller_number=caller_number,
            slots=self._schema.empty_slots(),
            created_at=now,
            last_seen=now,
        )

    def get(self, call_sid: str, caller_number: str = "") -> CallSession:
        """Return the session for ``call_sid``, creating an empty one if absent."""
        self.evict_idle()

        session = self._sessions.get(call_sid)
        if session is None:
            session = self.new_session(call_sid, caller_number)
            self._sessions[call_sid] = session
            log.info(
                "Session created: %s from=%s (active: %d)",
                call_sid, redact_pii(caller_number), len(self._sessions),
            )
        else:
            session.last_seen = self._clock()
            if caller_number and not session.caller_number:
                session.caller_number = caller_number
        return session

    def peek(self, call_sid: str) -> Optional[CallSession]:
        """Look up a session without creating or refreshing it."""
        return self._sessions.get(call_sid)

    def delete(self, call_sid: str) -> None:
        """Remove a session. Unknown ids are ignored."""
        if self._sessions.pop(call_sid, None) is not None:
            log.info("Session deleted: %s (active: %d)", call_sid, len(self._sessions))

    def evict_idle(self) -> list[str]:
        """Drop sessions idle for longer than the timeout; return their ids."""
        if self._idle_timeout <= 0:
            return []
        cutoff = self._clock() - self._idle_timeout
        expired = [sid for sid, s in self._sessions.items() if s.last_seen < cutoff]
        for sid in expired:
            del self._sessions[sid]
            if self._on_evict:
                self._on_evict(sid)
        if expired:
            log.info("Evicted %d idle session(s): %s", len(expired), ", ".join(expired))
        return expired
