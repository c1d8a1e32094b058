"""FastAPI application: Twilio webhook + admin endpoints for the receptionist.

Endpoints:

  POST /twilio/voice                    Twilio webhook: one turn in, TwiML out
  GET  /                                Liveness text
  GET  /health                          Health check
  GET  /api/schema                      Active intake schema
  GET  /api/sessions                    In-flight calls (admin)
  GET  /api/sessions/{call_sid}         One call's slots and transcript (admin)
  WS   /api/sessions/{call_sid}/debug   Live debug events for one call (admin)

The Twilio flow:
  1. Incoming call hits POST /twilio/voice with no SpeechResult
  2. We answer with <Gather input="speech"> asking the first question
  3. Twilio posts the transcript back to /twilio/voice (SpeechResult)
  4. Repeat until every slot is filled, then <Say> closing + <Hangup/>
  5. The lead is texted to the owner and the session is dropped
"""

from __future__ import annotations

# Load .env into os.environ early so SDK clients that read their own
# environment variables see the same values as Settings.
from dotenv import load_dotenv
load_dotenv()

import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from typing import AsyncIterator, Optional

# Configure root logger early so all receptionist.* loggers have a handler
# when run via `uvicorn receptionist.app:app`.
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(name)-26s %(levelname)-7s %(message)s",
)

from fastapi import Depends, FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, PlainTextResponse, Response

from receptionist.auth import require_admin_token, require_admin_ws
from receptionist.composer import ReplyComposer
from receptionist.config import Settings, settings
from receptionist.debug_events import CallTrace, close_trace, open_trace
from receptionist.extraction import HeuristicExtractor
from receptionist.llm import create_llm_client
from receptionist.notify import create_notifier
from receptionist.orchestrator import CallOrchestrator, TurnRequest
from receptionist.session import SessionStore
from receptionist.twiml import render_turn
from receptionist.workflows.plumbing_intake import load_configured_schema

log = logging.getLogger("receptionist.app")

VOICE_PATH = "/twilio/voice"

_START_TIME = time.time()


def build_orchestrator(cfg: Settings) -> CallOrchestrator:
    """Wire schema, store, extractor, composer and notifier from settings."""
    schema = load_configured_schema(cfg.schema_path)
    store = SessionStore(
        schema,
        idle_timeout=cfg.session_idle_timeout_seconds,
        on_evict=close_trace,
    )
    composer = ReplyComposer(
        schema,
        llm=create_llm_client(cfg),
        strategy=cfg.reply_strategy,
        timeout=cfg.llm_timeout_seconds,
    )
    return CallOrchestrator(
        schema=schema,
        store=store,
        extractor=HeuristicExtractor(schema),
        composer=composer,
        notifier=create_notifier(cfg),
        notify_timeout=cfg.notify_timeout_seconds,
    )


async def _sweep_idle_sessions(store: SessionStore, interval: float) -> None:
    """Periodically evict abandoned calls."""
    while True:
        await asyncio.sleep(interval)
        store.evict_idle()


async def stream_trace(websocket: WebSocket, trace: CallTrace) -> None:
    """Forward a call's trace events until the call ends or the admin leaves."""
    queue = trace.watch()
    try:
        while True:
            event = await queue.get()
            if event is None:
                await websocket.close(code=1000, reason="Call ended")
                return
            await websocket.send_json(event)
    except WebSocketDisconnect:
        pass
    except Exception as e:
        log.warning("Debug stream error for %s: %s", trace.call_sid, e)
    finally:
        trace.unwatch(queue)


def create_app(
    orchestrator: Optional[CallOrchestrator] = None,
    cfg: Optional[Settings] = None,
) -> FastAPI:
    """Create and configure the FastAPI application."""
    cfg = cfg or settings
    orch = orchestrator or build_orchestrator(cfg)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        for warning in cfg.validate_startup():
            log.warning(warning)
        sweeper = None
        if cfg.session_sweep_interval_seconds > 0:
            sweeper = asyncio.create_task(
                _sweep_idle_sessions(orch.store, cfg.session_sweep_interval_seconds)
            )
        try:
            yield
        finally:
            if sweeper:
                sweeper.cancel()
                with suppress(asyncio.CancelledError):
                    await sweeper

    app = FastAPI(
        title="Phone Receptionist",
        description="Voice front-desk intake over Twilio speech gather",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.orchestrator = orch

    # ── Health check ───────────────────────────────────────────

    @app.get("/")
    async def index() -> PlainTextResponse:
        business = orch.schema.business_name or "Phone"
        return PlainTextResponse(f"{business} Receptionist running")

    @app.get("/health")
    async def health() -> JSONResponse:
        """Lightweight health check that confirms the event loop is responsive."""
        uptime = round(time.time() - _START_TIME, 1)
        return JSONResponse({
            "status": "ok",
            "uptime": uptime,
            "active_sessions": len(orch.store),
        })

    # ── Twilio voice webhook ───────────────────────────────────

    @app.post(VOICE_PATH)
    async def twilio_voice(request: Request) -> Response:
        """One conversational turn.

        Twilio posts form-encoded fields; CallSid, From and SpeechResult
        may each be absent (first hit of a call has no SpeechResult).
        """
        form = await request.form()
        turn = TurnRequest(
            call_sid=str(form.get("CallSid") or ""),
            caller_number=str(form.get("From") or ""),
            speech=str(form.get("SpeechResult") or ""),
        )

        result = await orch.handle_turn(turn)
        log.info(
            "Turn reply (call=%s action=%s pending=%s): %s",
            turn.call_sid or "-", result.action, result.pending_field, result.text[:100],
        )

        twiml = render_turn(
            result,
            action_url=VOICE_PATH,
            voice=cfg.tts_voice,
            language=cfg.speech_language,
        )
        return Response(content=twiml, media_type="application/xml")

    # ── Schema & session inspection ────────────────────────────

    @app.get("/api/schema")
    async def get_schema() -> JSONResponse:
        """Return the active intake schema."""
        return JSONResponse(orch.schema.model_dump())

    @app.get("/api/sessions", dependencies=[Depends(require_admin_token)])
    async def list_sessions() -> JSONResponse:
        """Return a summary of every in-flight call."""
        sessions = [s.to_dict() for s in orch.store.sessions()]
        return JSONResponse({"sessions": sessions, "count": len(sessions)})

    @app.get("/api/sessions/{call_sid}", dependencies=[Depends(require_admin_token)])
    async def get_session(call_sid: str) -> JSONResponse:
        """Return slots and recent transcript of one call."""
        session = orch.store.peek(call_sid)
        if not session:
            raise HTTPException(status_code=404, detail="Session not found")
        return JSONResponse(session.to_dict(detail=True))

    @app.websocket("/api/sessions/{call_sid}/debug")
    async def debug_stream(websocket: WebSocket, call_sid: str) -> None:
        """Stream debug events for one call as they happen."""
        if not await require_admin_ws(websocket, websocket.query_params.get("token", "")):
            return
        if orch.store.peek(call_sid) is None:
            await websocket.close(code=4004, reason="Session not found")
            return

        await websocket.accept()
        await stream_trace(websocket, open_trace(call_sid))

    return app


# ── Module-level app instance for uvicorn ──────────────────────

app = create_app()


if __name__ == "__main__":
    import uvicorn

    log_config = uvicorn.config.LOGGING_CONFIG
    log_config["formatters"]["default"]["fmt"] = (
        "%(asctime)s %(name)-12s %(levelname)-8s %(message)s"
    )

    uvicorn.run(
        "receptionist.app:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_config=log_config,
    )
