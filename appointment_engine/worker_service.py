"""Service entrypoint for the background worker and periodic scheduler."""

from __future__ import annotations

import asyncio
import contextlib
import os

from fastapi import FastAPI

from appointment_engine.core.config import settings
from appointment_engine.core.structured_logging import configure_logging
from appointment_engine.routers import internal
from appointment_engine.scheduler import PeriodicScheduler
from appointment_engine.worker import worker_loop


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging()
    stop_event = asyncio.Event()
    worker_task = asyncio.create_task(worker_loop(stop_event))
    scheduler = PeriodicScheduler()
    scheduler.start()
    app.state.scheduler = scheduler
    try:
        yield
    finally:
        await scheduler.stop()
        stop_event.set()
        worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker_task


def create_app(run_background: bool = True) -> FastAPI:
    app = FastAPI(
        title="Appointment Engine Worker",
        version=settings.VERSION,
        lifespan=lifespan if run_background else None,
    )

    @app.get("/health")
    def health() -> dict:
        return {"status": "ok", "version": settings.VERSION}

    app.include_router(internal.router)
    return app


app = create_app()


def main() -> None:
    import uvicorn

    port = int(os.getenv("PORT", "8080"))
    host = os.getenv("HOST", "0.0.0.0")
    uvicorn.run("appointment_engine.worker_service:app", host=host, port=port)


if __name__ == "__main__":
    main()
