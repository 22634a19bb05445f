"""
HTTP server for the call control API.
Can be run standalone (`python -m call_signaling`) or mounted in another app.
"""
from contextlib import asynccontextmanager

from fastapi import FastAPI

from logging_setup import get_logger, Component

from .config import get_config
from .control_api import configure, router as calls_router
from .coordinator import CallCoordinator
from .notifications import CallNotifier
from .rtc import AiortcMediaCapture, AiortcPeerConnection, RecorderSink
from .store import InMemoryDocumentStore


logger = get_logger(Component.CONTROL_API)


def build_coordinator() -> CallCoordinator:
    """Coordinator over a process-local store and the aiortc adapters."""
    config = get_config()
    store = InMemoryDocumentStore()
    return CallCoordinator(
        store,
        AiortcMediaCapture(config),
        AiortcPeerConnection,
        config=config,
        notifier=CallNotifier(store),
        sink_factory=lambda _name: RecorderSink(),
    )


coordinator = build_coordinator()
configure(coordinator)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    logger.info("Control API started")
    yield
    # Hang up whatever is still live so peers see status=ended
    active = len(coordinator.list_active())
    await coordinator.shutdown()
    logger.info("Control API stopped", calls_ended=active)


app = FastAPI(title="Call Signaling Control API", lifespan=lifespan)
app.include_router(calls_router)


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {
        "status": "ok",
        "component": "call_signaling",
        "active_calls": len(coordinator.list_active()),
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
