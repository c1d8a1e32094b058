"""Shared fixtures: the bundled schema, a controllable clock and fake collaborators."""

import asyncio
import os
import sys
from unittest.mock import AsyncMock, MagicMock

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from receptionist.composer import ReplyComposer
from receptionist.extraction import HeuristicExtractor
from receptionist.llm import LLMClient
from receptionist.orchestrator import CallOrchestrator
from receptionist.session import SessionStore
from receptionist.workflows.plumbing_intake import INTAKE_SCHEMA

CALLER = "+15165551234"


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeLLM(LLMClient):
    """Scripted LLM: returns ``reply``, raises ``exc``, or stalls for ``delay``."""

    name = "fake"

    def __init__(self, reply: str = "", exc: Exception | None = None, delay: float = 0.0):
        self.reply = reply
        self.exc = exc
        self.delay = delay
        self.calls: list[tuple[str, list[dict]]] = []

    async def generate(self, system, messages):
        self.calls.append((system, messages))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.exc:
            raise self.exc
        return self.reply


@pytest.fixture
def schema():
    return INTAKE_SCHEMA


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(schema, clock):
    return SessionStore(schema, idle_timeout=900, clock=clock)


@pytest.fixture
def notifier():
    n = MagicMock()
    n.notify = AsyncMock(return_value=None)
    return n


@pytest.fixture
def make_orchestrator(schema, store, notifier):
    def _make(llm=None, strategy="assisted", llm_timeout=1.0, extractor=None, notify_timeout=1.0):
        composer = ReplyComposer(schema, llm=llm, strategy=strategy, timeout=llm_timeout)
        return CallOrchestrator(
            schema=schema,
            store=store,
            extractor=extractor or HeuristicExtractor(schema),
            composer=composer,
            notifier=notifier,
            notify_timeout=notify_timeout,
        )
    return _make
