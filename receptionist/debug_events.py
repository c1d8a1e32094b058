"""Live call traces for the admin debug WebSocket.

A ``CallTrace`` records what the orchestrator did on each turn of one call
and fans it out to any admin watching.  The trace lives exactly as long as
the call: it is opened on the first traced turn and closed when the call
completes or its session is evicted.  Closing pushes ``None`` to every
watcher queue so a streaming WebSocket knows to hang up instead of waiting
for events that will never arrive.

    trace = open_trace("CA123")
    q = trace.watch()
    trace.record("slot_filled", "", {"field": "name", "value": "Dana"})
    close_trace("CA123")          # q now ends with None
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Optional, TypedDict

log = logging.getLogger("receptionist.debug_events")

EVENT_TYPES = frozenset(
    {"turn", "slot_filled", "llm_call", "llm_fallback", "notify", "complete", "error"}
)


class CallEvent(TypedDict):
    type: str
    timestamp: float
    call_sid: str
    pending_field: str
    data: dict


class CallTrace:
    """Bounded event history for one call plus its live watchers."""

    HISTORY = 500
    WATCH_QUEUE_SIZE = 200

    def __init__(self, call_sid: str) -> None:
        self.call_sid = call_sid
        self._history: deque[CallEvent] = deque(maxlen=self.HISTORY)
        self._watchers: list[asyncio.Queue[Optional[CallEvent]]] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def history(self) -> list[CallEvent]:
        return list(self._history)

    @property
    def watcher_count(self) -> int:
        return len(self._watchers)

    def watch(self, replay: bool = True) -> asyncio.Queue[Optional[CallEvent]]:
        """Return a queue of this call's events, ending with ``None`` on close.

        With ``replay`` the queue starts with the most recent history, so an
        admin who connects mid-call sees the turns so far.
        """
        q: asyncio.Queue[Optional[CallEvent]] = asyncio.Queue(maxsize=self.WATCH_QUEUE_SIZE)
        if replay:
            for event in list(self._history)[-(self.WATCH_QUEUE_SIZE - 1):]:
                q.put_nowait(event)
        if self._closed:
            q.put_nowait(None)
            return q
        self._watchers.append(q)
        log.info("Trace watcher added for call %s (total: %d)", self.call_sid, len(self._watchers))
        return q

    def unwatch(self, q: asyncio.Queue[Optional[CallEvent]]) -> None:
        if q in self._watchers:
            self._watchers.remove(q)
            log.info("Trace watcher removed for call %s (total: %d)",
                     self.call_sid, len(self._watchers))

    def record(self, event_type: str, pending_field: str, data: dict) -> None:
        """Append an event and push it to every watcher.

        Raises ValueError for an unknown event type.  Events recorded after
        the call has closed are dropped.
        """
        if event_type not in EVENT_TYPES:
            raise ValueError(f"Unknown call event type: {event_type!r}")
        if self._closed:
            log.debug("Dropping %s event for closed call %s", event_type, self.call_sid)
            return
        event: CallEvent = {
            "type": event_type,
            "timestamp": time.time(),
            "call_sid": self.call_sid,
            "pending_field": pending_field,
            "data": data,
        }
        self._history.append(event)
        for q in self._watchers:
            _push(q, event)

    def close(self) -> None:
        """End the trace; every watcher receives ``None`` and is released."""
        if self._closed:
            return
        self._closed = True
        for q in self._watchers:
            _push(q, None)
        log.info("Trace closed for call %s (%d watchers released)",
                 self.call_sid, len(self._watchers))
        self._watchers.clear()


def _push(q: asyncio.Queue[Optional[CallEvent]], item: Optional[CallEvent]) -> None:
    """Enqueue without blocking; a full queue loses its oldest event."""
    if q.full():
        q.get_nowait()
    q.put_nowait(item)


# ── Registry of open traces, keyed by CallSid ───────────────────────

_traces: dict[str, CallTrace] = {}


def open_trace(call_sid: str) -> CallTrace:
    """Return the live trace for a call, starting a fresh one if needed."""
    trace = _traces.get(call_sid)
    if trace is None or trace.closed:
        trace = _traces[call_sid] = CallTrace(call_sid)
    return trace


def find_trace(call_sid: str) -> CallTrace | None:
    return _traces.get(call_sid)


def close_trace(call_sid: str) -> None:
    """Close and forget a call's trace.  Unknown calls are ignored."""
    trace = _traces.pop(call_sid, None)
    if trace is not None:
        trace.close()
