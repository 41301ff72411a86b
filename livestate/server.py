from __future__ import annotations

import argparse
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, StreamingResponse

from .actions import ActionDispatcher, parse_action_body
from .backends import KeyValueBackend, build_backend
from .config import LiveStateSettings
from .errors import BackendUnavailableError, InvalidActionRequest
from .models import RealtimeSnapshot
from .notifier import ChangeNotifier
from .publisher import SnapshotStreamPublisher
from .store import RealtimeStore

logger = logging.getLogger(__name__)

STREAM_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


def create_app(
    *,
    settings: Optional[LiveStateSettings] = None,
    backend: Optional[KeyValueBackend] = None,
    notifier: Optional[ChangeNotifier] = None,
    store: Optional[RealtimeStore] = None,
) -> FastAPI:
    resolved_settings = settings or LiveStateSettings()
    if store is None:
        resolved_backend = backend or build_backend(resolved_settings)
        resolved_store = RealtimeStore(
            resolved_backend,
            notifier or ChangeNotifier(),
            key=resolved_settings.state_key,
        )
    else:
        resolved_store = store
    resolved_notifier = resolved_store.notifier
    dispatcher = ActionDispatcher(resolved_store)
    keepalive_interval = resolved_settings.keepalive_interval

    @asynccontextmanager
    async def _lifespan(_: FastAPI):
        logger.info("livestate starting key=%s", resolved_store.key)
        try:
            yield
        finally:
            await resolved_store.backend.close()
            logger.info("livestate stopped")

    app = FastAPI(
        title="livestate",
        description="Shared counter, chat and poll state pushed to viewers over an event stream.",
        version="1.0.0",
        lifespan=_lifespan,
    )
    app.state.settings = resolved_settings
    app.state.store = resolved_store
    app.state.notifier = resolved_notifier
    app.state.dispatcher = dispatcher

    @app.exception_handler(InvalidActionRequest)
    async def _invalid_request(_: Request, exc: InvalidActionRequest) -> JSONResponse:
        return JSONResponse({"error": "Invalid request"}, status_code=400)

    @app.exception_handler(BackendUnavailableError)
    async def _backend_unavailable(_: Request, exc: BackendUnavailableError) -> JSONResponse:
        return JSONResponse({"error": "Backing store unavailable"}, status_code=503)

    @app.get("/api/realtime")
    async def stream(request: Request) -> StreamingResponse:
        publisher = SnapshotStreamPublisher(
            resolved_store,
            resolved_notifier,
            keepalive_interval=keepalive_interval,
            is_disconnected=request.is_disconnected,
        )
        return StreamingResponse(
            publisher.frames(),
            media_type="text/event-stream",
            headers=STREAM_HEADERS,
        )

    @app.post("/api/realtime")
    async def act(request: Request) -> dict:
        payload = parse_action_body(await request.body())
        state = await dispatcher.dispatch(payload)
        return RealtimeSnapshot.from_state(state).to_wire()

    @app.get("/api/realtime/snapshot")
    async def snapshot() -> dict:
        return RealtimeSnapshot.from_state(await resolved_store.read()).to_wire()

    @app.get("/api/health")
    async def health() -> dict:
        backend_ok = await resolved_store.backend.ping()
        return {
            "status": "ok" if backend_ok else "degraded",
            "backend": "ok" if backend_ok else "unavailable",
            "subscribers": resolved_notifier.listener_count,
        }

    return app


def _build_parser(defaults: LiveStateSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the livestate realtime server.")
    parser.add_argument("--host", type=str, default=defaults.host)
    parser.add_argument("--port", type=int, default=defaults.port)
    parser.add_argument("--redis-url", type=str, default=defaults.redis_url)
    parser.add_argument("--backend", choices=("redis", "memory"), default=defaults.backend)
    parser.add_argument("--state-key", type=str, default=defaults.state_key)
    parser.add_argument("--keepalive-interval", type=float, default=defaults.keepalive_interval)
    parser.add_argument("--log-level", type=str, default=defaults.log_level)
    return parser


def main(argv: Optional[list[str]] = None) -> None:
    defaults = LiveStateSettings()
    args = _build_parser(defaults).parse_args(argv)
    settings = defaults.model_copy(
        update={
            "host": args.host,
            "port": max(1, int(args.port)),
            "redis_url": args.redis_url,
            "backend": args.backend,
            "state_key": args.state_key,
            "keepalive_interval": max(0.1, float(args.keepalive_interval)),
            "log_level": args.log_level,
        }
    )
    logging.basicConfig(
        level=str(settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(message)s",
    )
    app = create_app(settings=settings)
    import uvicorn

    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        log_level=str(settings.log_level).lower(),
    )


if __name__ == "__main__":
    main()
