"""Application entrypoint for glowrs-server."""

from __future__ import annotations

import logging
import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI

from glowrs_server.api.routes import router
from glowrs_server.backends.factory import create_embedding_backend
from glowrs_server.config import get_settings
from glowrs_server.infer.engine import InferEngine
from glowrs_server.telemetry import TelemetryRuntime, setup_telemetry, shutdown_telemetry


def configure_logging() -> None:
    """Configure process logging."""
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s %(message)s")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Create the backend and task engine, and drain it on shutdown."""
    settings = get_settings()
    telemetry_runtime = TelemetryRuntime()

    try:
        telemetry_runtime = setup_telemetry(app, settings)
    except Exception:
        logging.exception("OpenTelemetry initialization failed; continuing without telemetry")

    app.state.telemetry_runtime = telemetry_runtime
    app.state.embeddings_metrics = telemetry_runtime.embeddings_metrics

    engine: InferEngine | None = None
    if settings.embedding.enabled:
        engine = InferEngine(
            create_embedding_backend(settings),
            max_batch_size=settings.queue.max_batch_size,
            max_batch_wait=settings.queue.max_batch_wait,
            capacity=settings.queue.capacity,
            metrics=telemetry_runtime.batch_metrics,
        )
        engine.start()
    app.state.engine = engine

    try:
        yield
    finally:
        if engine is not None:
            await engine.shutdown(grace_seconds=settings.queue.shutdown_grace_seconds)
        try:
            shutdown_telemetry(app, telemetry_runtime)
        except Exception:
            logging.exception("OpenTelemetry shutdown failed")


def create_app() -> FastAPI:
    """Build FastAPI app."""
    settings = get_settings()
    configure_logging()

    app = FastAPI(
        title="glowrs-server",
        description="OpenAI-compatible embedding server with dynamic request batching",
        version=settings.service_version,
        lifespan=lifespan,
    )
    app.include_router(router)
    return app


app = create_app()


def run() -> None:
    """Run uvicorn server."""
    settings = get_settings()
    port = int(os.environ.get("PORT", settings.server.port))
    uvicorn.run(
        "glowrs_server.main:app",
        host=settings.server.host,
        port=port,
        workers=1,
    )


if __name__ == "__main__":
    run()
