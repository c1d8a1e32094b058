"""Lead notification: hands the completed intake to a human operator.

The default channel is an SMS to the business owner sent through the
Twilio Messages REST API.  When SMS is not configured the lead is written
to the log instead so nothing is silently lost.  Sending is attempted
once; the orchestrator bounds it with a timeout and never retries.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

import aiohttp
from pydantic import BaseModel

from receptionist.config import Settings
from receptionist.session import CallSession, redact_pii
from receptionist.workflows.schema import IntakeSchema

log = logging.getLogger("receptionist.notify")

TWILIO_API_BASE = "https://api.twilio.com/2010-04-01"


class LeadRecord(BaseModel):
    """The filled slots of one completed call plus the raw caller ID."""

    business_name: str = ""
    call_sid: str = ""
    caller_id: str = ""
    values: dict[str, str] = {}
    labels: dict[str, str] = {}

    @classmethod
    def from_session(cls, schema: IntakeSchema, session: CallSession) -> "LeadRecord":
        return cls(
            business_name=schema.business_name,
            call_sid=session.call_sid,
            caller_id=session.caller_number,
            values={f.name: session.slots.get(f.name) or "" for f in schema.fields},
            labels={f.name: f.display_label for f in schema.fields},
        )

    def summary(self) -> str:
        """Plain-text body for the operator SMS."""
        header = "New Lead"
        if self.business_name:
            header += f" - {self.business_name}"
        lines = [header]
        for name, value in self.values.items():
            lines.append(f"{self.labels.get(name, name)}: {value}")
        lines.append(f"CallerID: {self.caller_id or 'unknown'}")
        return "\n".join(lines)


class Notifier(ABC):
    """Out-of-band channel for completed leads."""

    @abstractmethod
    async def notify(self, record: LeadRecord) -> None:
        """Deliver ``record``. Raises on failure."""


class LogNotifier(Notifier):
    """Writes the lead to the log when SMS is not configured."""

    async def notify(self, record: LeadRecord) -> None:
        log.info("Lead captured (SMS disabled) call=%s\n%s", record.call_sid, record.summary())


class TwilioSmsNotifier(Notifier):
    """Send the lead summary as an SMS via Twilio's Messages API."""

    def __init__(self, account_sid: str, auth_token: str, from_number: str, to_number: str) -> None:
        self._account_sid = account_sid
        self._auth_token = auth_token
        self._from = from_number
        self._to = to_number

    @property
    def url(self) -> str:
        return f"{TWILIO_API_BASE}/Accounts/{self._account_sid}/Messages.json"

    async def notify(self, record: LeadRecord) -> None:
        form = {"From": self._from, "To": self._to, "Body": record.summary()}
        async with aiohttp.ClientSession() as session:
            async with session.post(
                self.url,
                data=form,
                auth=aiohttp.BasicAuth(self._account_sid, self._auth_token),
            ) as resp:
                if resp.status != 201:
                    body = await resp.text()
                    raise RuntimeError(f"Twilio SMS failed ({resp.status}): {body[:200]}")
                data = await resp.json()
        log.info(
            "Lead SMS sent to %s (sid=%s, call=%s)",
            redact_pii(self._to), data.get("sid", "?"), record.call_sid,
        )


def create_notifier(settings: Settings) -> Notifier:
    if settings.sms_enabled:
        return TwilioSmsNotifier(
            account_sid=settings.twilio_account_sid,
            auth_token=settings.twilio_auth_token,
            from_number=settings.twilio_sms_from,
            to_number=settings.owner_mobile,
        )
    log.warning("SMS not configured, leads will be logged only")
    return LogNotifier()
