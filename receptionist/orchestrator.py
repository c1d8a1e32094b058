"""Per-turn call orchestrator: the receptionist's state machine.

One webhook hit is one turn:

  no speech  → re-ask the pending field (scripted), session untouched
  speech     → append to transcript, extract slots, consult the policy
               Ask(field)  → compose the next question, keep gathering
               Complete    → compose the closing, notify, delete session

The pending field is always recomputed from the session's slots, so a
silent turn or an out-of-order answer can never desynchronise the
question from what is actually missing.  Errors in extraction or
composition degrade to the scripted prompt; the caller always hears
something and the call only ends by completing.

Typical lifecycle::

    orchestrator = CallOrchestrator(schema, store, extractor, composer, notifier)
    response = await orchestrator.handle_turn(
        TurnRequest(call_sid="CA...", caller_number="+1...", speech="My name is Dana"),
    )
    # → response.text is spoken, response.action is "continue" or "end"
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel

from receptionist.composer import ReplyComposer
from receptionist.debug_events import close_trace, open_trace
from receptionist.extraction import HeuristicExtractor
from receptionist.fallback import bounded
from receptionist.notify import LeadRecord, Notifier
from receptionist.policy import Ask, Complete, NextAction, next_action
from receptionist.session import CallSession, SessionStore, redact_pii
from receptionist.workflows.schema import IntakeSchema

log = logging.getLogger("receptionist.orchestrator")

CONTINUE = "continue"
END = "end"


class TurnState(str, Enum):
    AWAITING_FIRST_UTTERANCE = "awaiting_first_utterance"
    PROCESSING_UTTERANCE = "processing_utterance"


class TurnRequest(BaseModel):
    """One inbound webhook turn. Every field may be missing."""

    call_sid: str = ""
    caller_number: str = ""
    speech: str = ""


class TurnResponse(BaseModel):
    """What to say, and whether to keep gathering or hang up."""

    text: str
    action: Literal["continue", "end"] = CONTINUE
    state: TurnState = TurnState.AWAITING_FIRST_UTTERANCE
    pending_field: Optional[str] = None


class CallOrchestrator:
    def __init__(
        self,
        schema: IntakeSchema,
        store: SessionStore,
        extractor: HeuristicExtractor,
        composer: ReplyComposer,
        notifier: Notifier,
        notify_timeout: float = 5.0,
    ) -> None:
        self._schema = schema
        self._store = store
        self._extractor = extractor
        self._composer = composer
        self._notifier = notifier
        self._notify_timeout = notify_timeout

    @property
    def schema(self) -> IntakeSchema:
        return self._schema

    @property
    def store(self) -> SessionStore:
        return self._store

    # ── Public API ────────────────────────────────────────────

    async def handle_turn(self, request: TurnRequest) -> TurnResponse:
        call_sid = (request.call_sid or "").strip()
        caller = (request.caller_number or "").strip()
        speech = (request.speech or "").strip()

        if call_sid:
            session = self._store.get(call_sid, caller)
        else:
            # No call id: answer from a throwaway session that is never stored
            log.warning("Turn without CallSid, using a transient session")
            session = self._store.new_session("", caller)

        if not speech:
            return self._reprompt(session)
        return await self._process_utterance(session, speech, caller)

    # ── Internal: turn branches ──────────────────────────────

    def _reprompt(self, session: CallSession) -> TurnResponse:
        """Silence / no-input: repeat the pending question without mutating state."""
        action = next_action(self._schema, session.slots)
        text = self._safe_scripted(session, action)
        self._emit(session, action, "turn", {"speech": "", "reply": text})
        return TurnResponse(
            text=text,
            action=CONTINUE,
            state=TurnState.AWAITING_FIRST_UTTERANCE,
            pending_field=_field_name(action),
        )

    async def _process_utterance(
        self, session: CallSession, speech: str, caller: str,
    ) -> TurnResponse:
        session.add_turn("user", speech)
        log.info(
            "Turn call=%s from=%s speech=%r",
            session.call_sid, redact_pii(caller), speech[:80],
        )

        before = dict(session.slots)
        extraction_failed = False
        try:
            self._extractor.extract(session, speech, caller)
        except Exception as e:
            log.exception("Extraction failed (call=%s)", session.call_sid)
            session.slots = before
            extraction_failed = True
            self._emit(session, None, "error", {"stage": "extract", "error": str(e)})

        for name, value in session.slots.items():
            if value and not before.get(name):
                self._emit(session, None, "slot_filled", {"field": name, "value": value})

        action = next_action(self._schema, session.slots)

        if extraction_failed:
            text = self._retry_text(session, action)
        else:
            text = await self._compose(session, action)

        session.add_turn("assistant", text)
        self._emit(session, action, "turn", {"speech": speech, "reply": text})

        if isinstance(action, Complete):
            await self._complete(session)
            return TurnResponse(
                text=text,
                action=END,
                state=TurnState.PROCESSING_UTTERANCE,
                pending_field=None,
            )

        return TurnResponse(
            text=text,
            action=CONTINUE,
            state=TurnState.PROCESSING_UTTERANCE,
            pending_field=_field_name(action),
        )

    async def _compose(self, session: CallSession, action: NextAction) -> str:
        try:
            reply = await self._composer.compose_reply(session, action)
        except Exception as e:
            log.exception("Reply composition failed (call=%s)", session.call_sid)
            self._emit(session, action, "error", {"stage": "compose", "error": str(e)})
            return self._safe_scripted(session, action)

        if reply.error:
            self._emit(session, action, "llm_fallback", {"error": reply.error})
        elif reply.source == "llm":
            self._emit(session, action, "llm_call", {"reply": reply.text})
        return reply.text

    async def _complete(self, session: CallSession) -> None:
        """Hand the lead to the notifier once, then forget the call."""
        record = LeadRecord.from_session(self._schema, session)
        outcome = await bounded(
            self._notifier.notify(record),
            timeout=self._notify_timeout,
            fallback=None,
            what="Lead notification",
        )
        if outcome.ok:
            log.info("Call complete, lead delivered (call=%s)", session.call_sid)
        else:
            log.error(
                "Call complete, lead NOT delivered (call=%s): %s",
                session.call_sid, outcome.error,
            )
        self._emit(session, None, "notify", {"ok": outcome.ok, "error": outcome.error})
        self._emit(session, None, "complete", {"fields": record.values})

        if session.call_sid:
            self._store.delete(session.call_sid)
            close_trace(session.call_sid)

    # ── Internal: fallbacks ──────────────────────────────────

    def _safe_scripted(self, session: CallSession, action: NextAction) -> str:
        try:
            return self._composer.scripted(session, action)
        except Exception:
            log.exception("Scripted prompt failed (call=%s)", session.call_sid)
            return self._schema.retry_prompt

    def _retry_text(self, session: CallSession, action: NextAction) -> str:
        prompt = self._safe_scripted(session, action)
        if isinstance(action, Ask) and self._schema.retry_prompt and prompt != self._schema.retry_prompt:
            return f"{self._schema.retry_prompt} {prompt}"
        return prompt

    # ── Internal: debug tracing ──────────────────────────────

    def _emit(
        self, session: CallSession, action: Optional[NextAction], event_type: str, data: dict,
    ) -> None:
        if not session.call_sid:
            return
        open_trace(session.call_sid).record(event_type, _field_name(action) or "", data)


def _field_name(action: Optional[NextAction]) -> Optional[str]:
    return action.field_name if isinstance(action, Ask) else None
