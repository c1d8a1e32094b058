"""End-to-end turn handling through CallOrchestrator.

Each test drives the orchestrator the way the webhook does: one TurnRequest
per Twilio hit, a silent first hit to open the call, then caller speech.
"""

import asyncio
import os
import sys

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from conftest import CALLER, FakeLLM
from receptionist.debug_events import find_trace, open_trace
from receptionist.extraction import MATCHERS, HeuristicExtractor
from receptionist.notify import LeadRecord
from receptionist.orchestrator import CONTINUE, END, TurnRequest, TurnState

SID = "CA-orch-1"


def turn(speech: str = "", call_sid: str = SID, caller: str = CALLER) -> TurnRequest:
    return TurnRequest(call_sid=call_sid, caller_number=caller, speech=speech)


async def _run(orch, *utterances: str):
    responses = [await orch.handle_turn(turn())]
    for text in utterances:
        responses.append(await orch.handle_turn(turn(text)))
    return responses


# ── Scenario walk-throughs ──────────────────────────────────────────


class TestCallFlow:
    async def test_first_hit_greets_and_asks_name(self, make_orchestrator, store):
        orch = make_orchestrator()
        resp = await orch.handle_turn(turn())

        assert resp.action == CONTINUE
        assert resp.state == TurnState.AWAITING_FIRST_UTTERANCE
        assert resp.pending_field == "name"
        assert resp.text == "Mike's Plumbing, how can I help you today? May I have your name, please?"
        assert SID in store
        assert store.peek(SID).transcript == []

    async def test_name_then_address_prompt(self, make_orchestrator, store):
        orch = make_orchestrator()
        _, resp = await _run(orch, "My name is Dana")

        assert resp.action == CONTINUE
        assert resp.state == TurnState.PROCESSING_UTTERANCE
        assert resp.pending_field == "address"
        assert resp.text == "Thanks. What's the service address?"
        session = store.peek(SID)
        assert session.slots["name"] == "Dana"
        assert [t.role for t in session.transcript] == ["user", "assistant"]

    async def test_two_slots_in_one_utterance(self, make_orchestrator, store):
        orch = make_orchestrator()
        *_, resp = await _run(orch, "My name is Dana", "123 Oak Street, there's a leak under the sink")

        slots = store.peek(SID).slots
        assert slots["address"] == "123 Oak Street"
        assert slots["issue"] == "there's a leak under the sink"
        assert resp.pending_field == "window"
        assert resp.text.startswith("When would you like the technician to arrive?")

    async def test_full_call_completes_and_notifies(self, make_orchestrator, store, notifier, schema):
        orch = make_orchestrator()
        *_, before_last, last = await _run(
            orch,
            "My name is Dana",
            "123 Oak Street, there's a leak under the sink",
            "tomorrow morning",
            "yes, use the number I'm calling from",
        )

        assert before_last.pending_field == "callback"
        assert last.action == END
        assert last.pending_field is None
        assert last.text == schema.closing

        notifier.notify.assert_awaited_once()
        record = notifier.notify.await_args.args[0]
        assert isinstance(record, LeadRecord)
        assert record.call_sid == SID
        assert record.caller_id == CALLER
        assert record.values == {
            "name": "Dana",
            "address": "123 Oak Street",
            "issue": "there's a leak under the sink",
            "window": "tomorrow morning",
            "callback": CALLER,
        }

        assert SID not in store
        # A later hit with the same CallSid starts a brand-new call
        again = await orch.handle_turn(turn())
        assert again.pending_field == "name"
        assert store.peek(SID).transcript == []
        assert all(v is None for v in store.peek(SID).slots.values())

    async def test_out_of_order_answers(self, make_orchestrator, store):
        orch = make_orchestrator()
        _, resp = await _run(
            orch,
            "Hi, this is Dana, I'm at 9 Elm Drive and my toilet is clogged, "
            "can you come tomorrow afternoon?",
        )
        slots = store.peek(SID).slots
        assert slots["name"] == "Dana"
        assert slots["address"] == "9 Elm Drive"
        assert slots["window"] == "tomorrow afternoon"
        assert resp.pending_field == "callback"

    async def test_explicit_callback_number(self, make_orchestrator, store, notifier):
        orch = make_orchestrator()
        *_, last = await _run(
            orch,
            "My name is Dana",
            "123 Oak Street, the toilet is clogged",
            "today 2 to 4 PM",
            "Please text 516-555-0199 instead",
        )
        assert last.action == END
        record = notifier.notify.await_args.args[0]
        assert record.values["callback"] == "5165550199"
        assert record.values["window"] == "today 2 to 4 pm"

    async def test_assent_answers_only_the_current_question(self, make_orchestrator, store, notifier):
        orch = make_orchestrator()
        *_, window_reply, last = await _run(
            orch,
            "My name is Dana",
            "123 Oak Street, the toilet is clogged",
            "Tomorrow morning, that's fine",
            "That's fine",
        )
        assert window_reply.action == CONTINUE
        assert window_reply.pending_field == "callback"
        assert last.action == END
        record = notifier.notify.await_args.args[0]
        assert record.values["window"] == "tomorrow morning"
        assert record.values["callback"] == CALLER

    async def test_confirmation_without_caller_id_keeps_asking(self, make_orchestrator, store):
        orch = make_orchestrator()
        responses = [await orch.handle_turn(turn(caller=""))]
        for text in (
            "My name is Dana",
            "123 Oak Street, the toilet is clogged",
            "tomorrow morning",
            "yes, that's fine",
        ):
            responses.append(await orch.handle_turn(turn(text, caller="")))

        last = responses[-1]
        assert last.action == CONTINUE
        assert last.pending_field == "callback"
        assert store.peek(SID).slots["callback"] is None


# ── Silence and no-input ─────────────────────────────────────────────


class TestSilence:
    async def test_silence_repeats_pending_question_without_mutation(self, make_orchestrator, store):
        orch = make_orchestrator()
        await _run(orch, "My name is Dana")
        session = store.peek(SID)
        slots_before = dict(session.slots)
        transcript_before = list(session.transcript)

        first = await orch.handle_turn(turn())
        second = await orch.handle_turn(turn("   "))

        assert first == second
        assert first.pending_field == "address"
        assert first.text == "Thanks. What's the service address?"
        assert first.state == TurnState.AWAITING_FIRST_UTTERANCE
        assert session.slots == slots_before
        assert session.transcript == transcript_before

    async def test_silence_never_calls_llm(self, make_orchestrator):
        llm = FakeLLM(reply="Hi!")
        orch = make_orchestrator(llm=llm)
        await orch.handle_turn(turn())
        await orch.handle_turn(turn())
        assert llm.calls == []


# ── Degraded collaborators ──────────────────────────────────────────


class TestFallbacks:
    async def test_llm_failure_uses_scripted_prompt(self, make_orchestrator, store):
        orch = make_orchestrator(llm=FakeLLM(exc=RuntimeError("model down")))
        _, resp = await _run(orch, "Hmm, let me think")

        assert resp.action == CONTINUE
        assert resp.pending_field == "name"
        assert resp.text == "May I have your name, please?"
        assert all(v is None for v in store.peek(SID).slots.values())

    async def test_llm_timeout_uses_scripted_prompt(self, make_orchestrator):
        orch = make_orchestrator(llm=FakeLLM(reply="late", delay=0.5), llm_timeout=0.05)
        _, resp = await _run(orch, "My name is Dana")
        assert resp.text == "Thanks. What's the service address?"

    async def test_llm_reply_used_when_available(self, make_orchestrator, store):
        orch = make_orchestrator(llm=FakeLLM(reply="Nice to meet you, Dana. What's the address?"))
        _, resp = await _run(orch, "My name is Dana")
        assert resp.text == "Nice to meet you, Dana. What's the address?"
        assert store.peek(SID).transcript[-1].content == resp.text

    async def test_llm_completion_appends_closing(self, make_orchestrator, schema):
        orch = make_orchestrator(llm=FakeLLM(reply="Great, you're all set."))
        *_, last = await _run(
            orch,
            "My name is Dana",
            "123 Oak Street, the toilet is clogged",
            "tomorrow morning",
            "use this number",
        )
        assert last.action == END
        assert last.text == f"Great, you're all set. {schema.closing}"

    async def test_extraction_error_restores_slots_and_retries(
        self, make_orchestrator, store, schema,
    ):
        def boom(text, caller):
            raise RuntimeError("matcher broke")

        matchers = dict(MATCHERS, address=boom)
        orch = make_orchestrator(extractor=HeuristicExtractor(schema, matchers=matchers))
        _, resp = await _run(orch, "My name is Dana")

        assert resp.action == CONTINUE
        assert resp.pending_field == "name"
        assert resp.text == f"{schema.retry_prompt} May I have your name, please?"
        assert store.peek(SID).slots["name"] is None

    async def test_composer_exception_uses_scripted_prompt(self, make_orchestrator, monkeypatch):
        orch = make_orchestrator()

        async def explode(session, action):
            raise RuntimeError("composer bug")

        monkeypatch.setattr(orch._composer, "compose_reply", explode)
        _, resp = await _run(orch, "My name is Dana")
        assert resp.text == "Thanks. What's the service address?"

    async def test_notifier_failure_still_ends_call(self, make_orchestrator, store, notifier):
        notifier.notify.side_effect = RuntimeError("twilio down")
        orch = make_orchestrator()
        *_, last = await _run(
            orch,
            "My name is Dana",
            "123 Oak Street, the toilet is clogged",
            "tomorrow morning",
            "use this number",
        )
        assert last.action == END
        assert SID not in store

    async def test_notifier_hang_is_bounded(self, make_orchestrator, store, notifier):
        async def hang(record):
            await asyncio.sleep(5)

        notifier.notify = hang
        orch = make_orchestrator(notify_timeout=0.05)
        *_, last = await _run(
            orch,
            "My name is Dana",
            "123 Oak Street, the toilet is clogged",
            "tomorrow morning",
            "use this number",
        )
        assert last.action == END
        assert SID not in store


# ── Identifier edge cases ────────────────────────────────────────────


class TestMissingIdentifiers:
    async def test_no_call_sid_is_not_stored(self, make_orchestrator, store):
        orch = make_orchestrator()
        resp = await orch.handle_turn(TurnRequest(speech="My name is Dana"))
        assert resp.action == CONTINUE
        assert resp.pending_field == "address"
        assert len(store) == 0

    async def test_no_call_sid_silence(self, make_orchestrator, store):
        orch = make_orchestrator()
        resp = await orch.handle_turn(TurnRequest())
        assert resp.pending_field == "name"
        assert len(store) == 0

    async def test_inputs_are_trimmed(self, make_orchestrator, store):
        orch = make_orchestrator()
        await orch.handle_turn(TurnRequest(call_sid="  CA-trim ", caller_number=f" {CALLER} "))
        assert store.peek("CA-trim").caller_number == CALLER


# ── Debug tracing ────────────────────────────────────────────────────


class TestDebugEvents:
    async def test_events_emitted_while_subscribed(self, make_orchestrator):
        sid = "CA-debug-1"
        orch = make_orchestrator()
        await orch.handle_turn(turn(call_sid=sid))
        q = open_trace(sid).watch(replay=False)

        await orch.handle_turn(turn("My name is Dana", call_sid=sid))

        events = []
        while not q.empty():
            events.append(q.get_nowait())
        types = [e["type"] for e in events]
        assert "slot_filled" in types
        assert "turn" in types
        filled = next(e for e in events if e["type"] == "slot_filled")
        assert filled["data"] == {"field": "name", "value": "Dana"}
        turn_event = next(e for e in events if e["type"] == "turn")
        assert turn_event["pending_field"] == "address"

    async def test_trace_closed_on_completion(self, make_orchestrator):
        sid = "CA-debug-2"
        orch = make_orchestrator()
        await orch.handle_turn(turn(call_sid=sid))
        q = open_trace(sid).watch()
        for text in (
            "My name is Dana",
            "123 Oak Street, the toilet is clogged",
            "tomorrow morning",
            "use this number",
        ):
            await orch.handle_turn(turn(text, call_sid=sid))

        events = []
        while not q.empty():
            events.append(q.get_nowait())
        assert events[0]["type"] == "turn"
        assert events[-1] is None
        assert [e["type"] for e in events[-3:-1]] == ["notify", "complete"]
        assert find_trace(sid) is None

    async def test_llm_fallback_event(self, make_orchestrator):
        sid = "CA-debug-3"
        orch = make_orchestrator(llm=FakeLLM(exc=RuntimeError("model down")))
        await orch.handle_turn(turn(call_sid=sid))
        q = open_trace(sid).watch(replay=False)
        await orch.handle_turn(turn("My name is Dana", call_sid=sid))
        types = []
        while not q.empty():
            types.append(q.get_nowait()["type"])
        assert "llm_fallback" in types
