"""Reply composer: phrases the policy's decision as a spoken line.

Two strategies:

  scripted: the canned prompt for the pending field (prefixed by the
            greeting on a fresh call), or the closing line on Complete.
  assisted: the LLM writes the line from the transcript, the system
            instruction and a summary of what is still missing.  Any
            failure, timeout or empty reply falls back to the scripted
            line for that turn.

The composer never decides whether the call is complete; it only phrases
the action it is given.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Optional

from receptionist.fallback import bounded
from receptionist.llm import LLMClient
from receptionist.policy import Ask, Complete, NextAction
from receptionist.session import CallSession
from receptionist.workflows.schema import IntakeSchema

log = logging.getLogger("receptionist.composer")

SCRIPTED = "scripted"
ASSISTED = "assisted"

_MARKUP_RE = re.compile(r"[*_#`]+")
_WS_RE = re.compile(r"\s+")


@dataclass
class Reply:
    text: str
    source: str                   # "scripted" or "llm"
    error: Optional[str] = None   # set when an LLM attempt fell back


class ReplyComposer:
    def __init__(
        self,
        schema: IntakeSchema,
        llm: Optional[LLMClient] = None,
        strategy: str = ASSISTED,
        timeout: float = 4.0,
        max_history: int = 20,
    ) -> None:
        self._schema = schema
        self._llm = llm
        self._strategy = strategy
        self._timeout = timeout
        self._max_history = max_history

    @property
    def assisted(self) -> bool:
        return self._strategy == ASSISTED and self._llm is not None

    # ── Scripted ──────────────────────────────────────────────

    def scripted(self, session: CallSession, action: NextAction) -> str:
        if isinstance(action, Complete):
            return self._schema.closing or "Thank you for calling. Goodbye."
        prompt = action.field.prompt or (
            f"Could you tell me your {action.field.display_label.lower()}?"
        )
        if not session.transcript and self._schema.greeting:
            return f"{self._schema.greeting} {prompt}"
        return prompt

    # ── Assisted ──────────────────────────────────────────────

    def render_system_prompt(self) -> str:
        required = [f.display_label.upper() for f in self._schema.fields if f.required]
        if len(required) > 1:
            required_text = ", ".join(required[:-1]) + ", and " + required[-1]
        else:
            required_text = "".join(required)
        prompt = self._schema.system_prompt
        replacements = {
            "{business_name}": self._schema.business_name,
            "{greeting}": self._schema.greeting,
            "{required_fields}": required_text,
        }
        for placeholder, value in replacements.items():
            prompt = prompt.replace(placeholder, value)
        return prompt

    def context_summary(self, session: CallSession, action: NextAction) -> str:
        known = ", ".join(
            f"{f.name}={session.slots.get(f.name) or '?'}" for f in self._schema.fields
        )
        missing = [
            f.display_label for f in self._schema.fields
            if not f.is_filled(session.slots.get(f.name))
        ]
        lines = [f"Known so far: {known}."]
        if isinstance(action, Ask):
            lines.append(f"Still needed: {', '.join(missing)}.")
            lines.append(
                f"Acknowledge the caller briefly, then ask for: {action.field.display_label} "
                f"(for example: \"{action.field.prompt}\")."
            )
        else:
            lines.append(
                "Everything is collected. Confirm the details back in one short sentence. "
                "Do not say goodbye."
            )
        return "\n".join(lines)

    def _history(self, session: CallSession) -> list[dict[str, str]]:
        turns = session.transcript[-self._max_history:]
        return [{"role": t.role, "content": t.content} for t in turns]

    @staticmethod
    def _clean(text: str) -> str:
        return _WS_RE.sub(" ", _MARKUP_RE.sub("", text or "")).strip()

    async def compose_reply(self, session: CallSession, action: NextAction) -> Reply:
        fallback = self.scripted(session, action)
        if not self.assisted:
            return Reply(fallback, SCRIPTED)

        system = (
            self.render_system_prompt()
            + "\n\nCALL CONTEXT:\n"
            + self.context_summary(session, action)
        )
        outcome = await bounded(
            self._llm.generate(system, self._history(session)),
            timeout=self._timeout,
            fallback="",
            what=f"LLM reply ({self._llm.name})",
        )
        text = self._clean(outcome.value) if outcome.ok else ""
        if not text:
            return Reply(fallback, SCRIPTED, error=outcome.error or "empty reply")

        if isinstance(action, Complete):
            text = f"{text} {self.scripted(session, action)}"
        return Reply(text, "llm")

    async def compose(self, session: CallSession, action: NextAction) -> str:
        return (await self.compose_reply(session, action)).text
