"""Heuristic slot extraction from caller transcripts.

Each slot has one matcher function registered in ``MATCHERS``.  A matcher
takes the utterance and the inbound caller ID and returns a candidate value
or ``None``.  ``extract`` runs the matchers for every unfilled slot in
schema order and keeps a candidate only if it passes the slot's fill
predicate.  A filled slot is never overwritten for the rest of the call, so
a noisy transcript cannot flip an answer the caller already gave.

No I/O and no randomness: the same session and utterance always give the
same slots.
"""

from __future__ import annotations

import logging
import re
from typing import Callable, Mapping, Optional

from receptionist.policy import pending_field
from receptionist.session import CallSession
from receptionist.workflows.schema import CALLER_ID, FieldSpec, IntakeSchema

log = logging.getLogger("receptionist.extraction")

Matcher = Callable[[str, str], Optional[str]]


# ── Patterns ──────────────────────────────────────────────────────

# Intro phrase is case-insensitive; the name itself must be capitalised,
# which is how STT engines emit proper nouns.
_NAME_RE = re.compile(
    r"\b(?i:my name is|my name['’]s|name is|name['’]s|this is)\s+"
    r"([A-Z][a-z'\-]+(?:\s[A-Z][a-z'\-]+){0,2})"
)

_STREET_TYPES = (
    "Street|St|Avenue|Ave|Road|Rd|Lane|Ln|Drive|Dr|Court|Ct|Place|Pl|"
    "Boulevard|Blvd|Terrace|Way|Hwy|Highway|Parkway|Pkwy"
)
# House number, one or two street-name tokens (capitalised words or
# ordinals like "5th"), then the street type.  Tokens are joined by plain
# whitespace only, so a match never runs across a comma or full stop.
_STREET_NAME = r"(?:[A-Z][A-Za-z'\-]*|\d{1,3}(?:st|nd|rd|th))"
_ADDRESS_RE = re.compile(
    r"\b(\d{1,5}\s+(?:" + _STREET_NAME + r"\s+){1,2}(?i:" + _STREET_TYPES + r"))\b\.?"
)

# Longer phrases first so "water heater" wins over "heater".
_ISSUE_KEYWORDS = (
    "no hot water", "water heater", "leak", "clog", "toilet", "heater",
    "pipe", "burst", "drip", "sink", "shower", "boiler", "drain", "sewer",
    "faucet",
)
_ISSUE_RE = re.compile(
    r"\b(" + "|".join(re.escape(k) for k in _ISSUE_KEYWORDS) + r")",
    re.IGNORECASE,
)
_CLAUSE_SPLIT_RE = re.compile(r"[,.;!?]")

_DAY_RE = re.compile(
    r"\b(today|tomorrow|tonight|monday|tuesday|wednesday|thursday|friday|saturday|sunday)\b",
    re.IGNORECASE,
)
_PART_RE = re.compile(
    r"\b(morning|afternoon|evening"
    r"|(?:\d{1,2}|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)"
    r"\s*(?:-|–|to)\s*"
    r"(?:\d{1,2}|one|two|three|four|five|six|seven|eight|nine|ten|eleven|twelve)"
    r"(?:\s*(?:[ap]\.?m\.?))?)(?![a-z])"
    r"(?!\s*(?:days?|weeks?|hours?|minutes?|months?|years?|times?)\b)",
    re.IGNORECASE,
)
_ASAP_RE = re.compile(r"\b(asap|as soon as possible|right away|right now)\b", re.IGNORECASE)

_PHONE_RE = re.compile(r"(?<!\d)(\+?1?[\s.\-]?\(?\d{3}\)?[\s.\-]?\d{3}[\s.\-]?\d{4})(?!\d)")
_USE_CALLER_ID_RE = re.compile(
    r"use (?:this|the|that|my) number"
    r"|number (?:i['’]m|i am|you['’]re|you are) calling from"
    r"|same number|this number is fine",
    re.IGNORECASE,
)
# Bare assent; only meaningful as the answer to the question just asked.
_ASSENT_RE = re.compile(
    r"\b(?:that['’]s fine|that is fine|this one is fine|that one is fine|that works|sounds good)\b",
    re.IGNORECASE,
)


# ── Matchers ──────────────────────────────────────────────────────

def match_name(text: str, caller_id: str) -> Optional[str]:
    m = _NAME_RE.search(text)
    return m.group(1) if m else None


def match_address(text: str, caller_id: str) -> Optional[str]:
    m = _ADDRESS_RE.search(text)
    return m.group(1).strip() if m else None


def match_issue(text: str, caller_id: str) -> Optional[str]:
    """Return the clause that contains the first issue keyword."""
    for clause in _CLAUSE_SPLIT_RE.split(text):
        if _ISSUE_RE.search(clause):
            return clause.strip()
    return None


def match_window(text: str, caller_id: str) -> Optional[str]:
    if _ASAP_RE.search(text):
        return "as soon as possible"
    tokens = []
    for regex in (_DAY_RE, _PART_RE):
        m = regex.search(text)
        if m:
            tokens.append((m.start(), m.group(1).lower()))
    if not tokens:
        return None
    return " ".join(tok for _, tok in sorted(tokens))


def normalize_phone(raw: str) -> str:
    digits = re.sub(r"\D", "", raw)
    return ("+" + digits) if raw.strip().startswith("+") else digits


def match_callback(text: str, caller_id: str) -> Optional[str]:
    """Explicit number wins; a confirmation phrase reuses the caller ID."""
    m = _PHONE_RE.search(text)
    if m:
        return normalize_phone(m.group(1))
    if caller_id and _USE_CALLER_ID_RE.search(text):
        return caller_id
    return None


MATCHERS: dict[str, Matcher] = {
    "name": match_name,
    "address": match_address,
    "issue": match_issue,
    "window": match_window,
    "callback": match_callback,
}


# ── Extraction ────────────────────────────────────────────────────

class HeuristicExtractor:
    """Fill unfilled slots from one utterance using a matcher table."""

    def __init__(
        self,
        schema: IntakeSchema,
        matchers: Mapping[str, Matcher] | None = None,
    ) -> None:
        self._schema = schema
        self._matchers = dict(MATCHERS if matchers is None else matchers)

    def _matcher_for(self, field: FieldSpec) -> Optional[Matcher]:
        matcher = self._matchers.get(field.name)
        if matcher is None and field.default_source == CALLER_ID:
            return match_callback
        return matcher

    @staticmethod
    def _assent_default(field: FieldSpec, text: str, caller_id: str) -> Optional[str]:
        """An assent to the caller-ID question means "use the caller ID"."""
        if field.default_source == CALLER_ID and caller_id and _ASSENT_RE.search(text):
            return caller_id
        return None

    def extract(
        self, session: CallSession, text: str, caller_id_hint: str = "",
    ) -> dict[str, Optional[str]]:
        """Update ``session.slots`` in place and return them.

        Only unfilled slots are considered; each takes its first valid match.
        A bare assent only answers the field the caller was just asked.
        """
        slots = session.slots
        if not text or not text.strip():
            return slots

        caller_id = caller_id_hint or ""
        asked = pending_field(self._schema, slots)
        for field in self._schema.fields:
            if field.is_filled(slots.get(field.name)):
                continue
            matcher = self._matcher_for(field)
            candidate = matcher(text, caller_id) if matcher else None
            if not candidate and field is asked:
                candidate = self._assent_default(field, text, caller_id)
            if candidate and field.is_filled(candidate):
                slots[field.name] = candidate
                log.info("Slot filled: %s (call=%s)", field.name, session.call_sid)
        return slots
