from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, HTTPException, Request

from jugadwake.config import AppSettings, load_settings
from jugadwake.host.foreground import LogAnnouncer
from jugadwake.lease.local import LocalLeaseProvider
from jugadwake.lease.manager import LeaseManager
from jugadwake.orchestrator.event_bus import EventBus
from jugadwake.orchestrator.supervisor import SessionSupervisor
from jugadwake.recognition.base import RecognitionEngine
from jugadwake.storage.preferences import PreferenceStore
from jugadwake.telemetry.logging import configure_logging, get_logger
from jugadwake.telemetry.tracing import configure_tracing
from jugadwake.ui.websocket import EventStreamBridge

logger = get_logger(__name__)


class Runtime:
    def __init__(self, supervisor: SessionSupervisor, preferences: PreferenceStore | None = None) -> None:
        self.supervisor = supervisor
        self._preferences = preferences

    @property
    def bus(self) -> EventBus:
        return self.supervisor.events

    async def start(self) -> None:
        # Resume listening if it was on when the process last went down.
        if self._preferences is not None and self._preferences.was_running():
            logger.info("runtime.autostart")
            await self.supervisor.start()
        logger.info("runtime.started", state=self.supervisor.state.value)

    async def shutdown(self) -> None:
        logger.info("runtime.shutdown.start")
        await self.supervisor.close()
        logger.info("runtime.shutdown.complete")


def build_engine(settings: AppSettings) -> RecognitionEngine:
    recognition = settings.recognition
    if recognition.engine == "vosk":
        try:
            from jugadwake.recognition.vosk import VoskRecognitionEngine
        except ModuleNotFoundError as exc:
            raise RuntimeError("vosk engine requested but its bindings are not installed; install jugadwake[vosk].") from exc
        if not recognition.model_path:
            raise RuntimeError("VOSK_MODEL_PATH must point at an unpacked Vosk model.")
        return VoskRecognitionEngine(model_path=recognition.model_path, device=recognition.input_device)
    raise ValueError(f"unsupported recognition engine {recognition.engine!r}")


async def bootstrap_runtime(settings: AppSettings | None = None) -> Runtime:
    settings = settings or load_settings()
    preferences = PreferenceStore(settings.storage.preferences_path)
    supervisor = SessionSupervisor(
        build_engine(settings),
        LeaseManager(LocalLeaseProvider(), policy=settings.lease),
        EventBus(),
        recognition=settings.recognition,
        wake_phrase=settings.wakeword.phrase,
        restart_policy=settings.session,
        announcer=LogAnnouncer(title=f"Listening for '{settings.wakeword.phrase}'"),
        preferences=preferences,
    )
    runtime = Runtime(supervisor, preferences)
    await runtime.start()
    return runtime


def create_app(bootstrap: Callable[[], Awaitable[Runtime]] = bootstrap_runtime) -> FastAPI:
    app = FastAPI(title="JugadWake Listener")

    def current_runtime() -> Runtime | None:
        return getattr(app.state, "runtime", None)

    def require_runtime(request: Request) -> Runtime:
        runtime = getattr(request.app.state, "runtime", None)
        if runtime is None:
            raise HTTPException(status_code=503, detail="runtime unavailable")
        return runtime

    def current_bus() -> EventBus | None:
        runtime = current_runtime()
        return runtime.bus if runtime else None

    bridge = EventStreamBridge(current_bus)
    app.include_router(bridge.router)

    @app.on_event("startup")
    async def startup_event() -> None:
        app.state.runtime = await bootstrap()

    @app.on_event("shutdown")
    async def shutdown_event() -> None:
        runtime = current_runtime()
        if runtime:
            await runtime.shutdown()
            app.state.runtime = None

    @app.post("/listen/start")
    async def listen_start(request: Request) -> dict[str, str]:
        runtime = require_runtime(request)
        state = await runtime.supervisor.start()
        logger.info("control.start", state=state.value)
        return {"status": "ok", "state": state.value}

    @app.post("/listen/stop")
    async def listen_stop(request: Request) -> dict[str, str]:
        runtime = require_runtime(request)
        state = await runtime.supervisor.stop()
        logger.info("control.stop", state=state.value)
        return {"status": "ok", "state": state.value}

    @app.get("/listen/status")
    async def listen_status() -> dict[str, Any]:
        runtime = current_runtime()
        if runtime is None:
            return {"running": False, "state": "unavailable", "session_id": None, "lease_expires_in": None}
        return runtime.supervisor.snapshot()

    return app


settings = load_settings()
configure_logging(settings.telemetry.log_level)
configure_tracing("jugadwake", settings.telemetry.otlp_endpoint)

app = create_app()

__all__ = ["Runtime", "bootstrap_runtime", "build_engine", "create_app", "app"]
