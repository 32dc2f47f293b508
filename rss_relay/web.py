from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from . import __version__
from .report import render_report
from .service import RelayService


def create_app(build_service: Callable[[], RelayService]) -> FastAPI:
    """
    Liveness endpoint and plain-text report.

    The service is built inside the lifespan so that its clients bind to the
    server's event loop; the scheduler starts with the app and stops with it.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        service = build_service()
        app.state.service = service
        await service.start()
        try:
            yield
        finally:
            await service.close()

    app = FastAPI(title="rss_relay", version=__version__, lifespan=lifespan)

    @app.get("/health")
    async def health(request: Request):
        service: RelayService = request.app.state.service
        return {"status": "ok", "scheduler_running": service.scheduler.running}

    @app.get("/", response_class=PlainTextResponse)
    async def report(request: Request):
        service: RelayService = request.app.state.service
        return PlainTextResponse(await render_report(service.store, version=__version__))

    return app
