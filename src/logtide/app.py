from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Header, HTTPException, Request
from fastapi.responses import StreamingResponse

from logtide.broadcaster import format_sse
from logtide.config import Settings
from logtide.errors import IngestionError, RunInProgress
from logtide.ingest import body_chunks
from logtide.service import LogService


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    service = LogService(settings or Settings.from_env())

    @asynccontextmanager
    async def lifespan(_app: FastAPI):
        service.start_file_run()
        try:
            yield
        finally:
            await service.stop()

    app = FastAPI(title="logtide", lifespan=lifespan)
    app.state.service = service

    # ----------------------------
    # Pull API
    # ----------------------------
    @app.get("/api/stats")
    def stats():
        return service.broadcaster.stats()

    @app.get("/api/alerts")
    def alerts():
        return service.broadcaster.alerts()

    @app.post("/api/reset")
    def reset():
        service.broadcaster.reset()
        return {"success": True}

    @app.get("/api/run")
    def run_status():
        return service.run_info()

    # ----------------------------
    # Push API (SSE)
    # ----------------------------
    @app.get("/api/events")
    async def events(request: Request):
        sub = service.broadcaster.subscribe()
        keepalive = service.settings.keepalive

        async def gen():
            try:
                while True:
                    if await request.is_disconnected():
                        break
                    try:
                        first = await asyncio.wait_for(sub.get(), timeout=keepalive)
                    except asyncio.TimeoutError:
                        if sub.closed:
                            break
                        yield ": keepalive\n\n"
                        continue
                    # whatever queued up meanwhile goes out in the same write
                    yield "".join(format_sse(kind, data) for kind, data in [first, *sub.drain()])
            finally:
                service.broadcaster.unsubscribe(sub)

        return StreamingResponse(
            gen(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # ----------------------------
    # Ingest
    # ----------------------------
    @app.post("/api/ingest")
    async def ingest(request: Request, name: str = "upload", authorization: str | None = Header(default=None)):
        if authorization != f"Bearer {service.settings.token}":
            raise HTTPException(401, "unauthorized")

        try:
            run = service.new_run(name)
        except RunInProgress as e:
            raise HTTPException(409, str(e))

        try:
            snapshot = await run.run(body_chunks(request.stream()))
        except IngestionError as e:
            raise HTTPException(400, f"ingestion failed: {e}")
        return {"run": run.info(), "stats": snapshot}

    return app


app = create_app()

# Run with:
#   uvicorn logtide.app:app --host 127.0.0.1 --port 7000
