"""FastAPI routes for the embedding service."""

from __future__ import annotations

import logging
import math
import time

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from glowrs_server.api.models import (
    EmbeddingData,
    EmbeddingRequest,
    EmbeddingResponse,
    EmbeddingUsage,
    ErrorPayload,
    ErrorResponse,
    HealthResponse,
    ModelInfo,
    ModelListResponse,
    QueueStatus,
)
from glowrs_server.config import get_settings
from glowrs_server.infer.engine import InferEngine
from glowrs_server.infer.errors import (
    BackendError,
    InferError,
    QueueFull,
    ShuttingDown,
    TaskCancelled,
    TaskTimeout,
)
from glowrs_server.telemetry import EmbeddingsMetrics, NoopEmbeddingsMetrics

router = APIRouter()
logger = logging.getLogger(__name__)

# (HTTP status, payload code, metrics status) per core error kind.
ERROR_MAPPING: dict[type[InferError], tuple[int, str, str]] = {
    QueueFull: (429, "queue_full", "queue_full"),
    ShuttingDown: (503, "unavailable", "shutting_down"),
    BackendError: (502, "upstream_error", "upstream_error"),
    TaskTimeout: (504, "upstream_timeout", "upstream_timeout"),
    TaskCancelled: (499, "cancelled", "cancelled"),
}


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """Build canonical error payload."""
    payload = ErrorResponse(error=ErrorPayload(code=code, message=message))
    return JSONResponse(status_code=status_code, content=payload.model_dump())


def get_engine(request: Request) -> InferEngine | None:
    return getattr(request.app.state, "engine", None)


def get_embeddings_metrics(request: Request) -> EmbeddingsMetrics:
    metrics = getattr(request.app.state, "embeddings_metrics", None)
    if metrics is None:
        return NoopEmbeddingsMetrics()
    return metrics


@router.get("/health", response_model=HealthResponse, tags=["Health"])
async def health_check(request: Request) -> HealthResponse:
    """Service health, backend readiness and queue depth."""
    settings = get_settings()
    engine = get_engine(request)
    ready = settings.embedding.enabled and engine is not None and engine.running
    return HealthResponse(
        status="ok" if ready else "error",
        service=settings.service_name,
        version=settings.service_version,
        backend=engine.backend.name if engine is not None else "none",
        embedding_enabled=settings.embedding.enabled,
        queue=QueueStatus(**engine.stats()) if engine is not None else None,
    )


@router.get("/v1/models", response_model=ModelListResponse, tags=["Models"])
async def list_models(request: Request) -> ModelListResponse:
    """List advertised embedding model aliases."""
    created = int(time.time())
    settings = get_settings()
    if not settings.embedding.enabled:
        return ModelListResponse(data=[])

    engine = get_engine(request)
    if engine is None:
        return ModelListResponse(data=[])

    models = [
        ModelInfo(id=model_id, created=created)
        for model_id in engine.backend.advertised_models()
    ]
    return ModelListResponse(data=models)


@router.post(
    "/v1/embeddings",
    response_model=EmbeddingResponse,
    responses={
        400: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
        503: {"model": ErrorResponse},
        504: {"model": ErrorResponse},
    },
    tags=["Embeddings"],
)
async def create_embeddings(request: Request, body: EmbeddingRequest):
    """OpenAI-compatible embeddings endpoint."""
    started_at = time.perf_counter()
    metrics = get_embeddings_metrics(request)

    def record_metrics(status: str, input_count: int, prompt_tokens: int | None) -> None:
        elapsed_ms = (time.perf_counter() - started_at) * 1000.0
        metrics.record(
            model=body.model,
            status=status,
            input_count=input_count,
            prompt_tokens=prompt_tokens,
            duration_ms=elapsed_ms,
        )

    settings = get_settings()
    if not settings.embedding.enabled:
        record_metrics(status="upstream_error", input_count=0, prompt_tokens=None)
        return error_response(
            status_code=503,
            code="unavailable",
            message="Embeddings are disabled.",
        )

    inputs = [body.input] if isinstance(body.input, str) else body.input
    resolved_model = settings.resolve_embedding_model(body.model)
    if resolved_model is None:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=f"Unsupported embedding model '{body.model}'.",
        )

    engine = get_engine(request)
    if engine is None:
        record_metrics(status="upstream_error", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=503,
            code="unavailable",
            message="Embedding backend is unavailable.",
        )

    if not inputs:
        record_metrics(status="invalid_request", input_count=0, prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message="Embedding input list cannot be empty.",
        )
    if len(inputs) > settings.embedding.max_inputs_per_request:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=(
                f"Embedding input count {len(inputs)} exceeds configured limit "
                f"{settings.embedding.max_inputs_per_request}."
            ),
        )

    too_long_idx = next(
        (idx for idx, text in enumerate(inputs) if len(text) > settings.embedding.max_input_chars),
        None,
    )
    if too_long_idx is not None:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=(
                f"Embedding input at index {too_long_idx} exceeds configured character limit "
                f"{settings.embedding.max_input_chars}."
            ),
        )

    total_chars = sum(len(text) for text in inputs)
    if total_chars > settings.embedding.max_total_chars:
        record_metrics(status="invalid_request", input_count=len(inputs), prompt_tokens=None)
        return error_response(
            status_code=400,
            code="invalid_request",
            message=(
                f"Total embedding input size {total_chars} exceeds configured character limit "
                f"{settings.embedding.max_total_chars}."
            ),
        )

    prompt_tokens = sum(len(text.split()) for text in inputs)

    try:
        handle = engine.submit(inputs)
        vectors = await handle.result(timeout=settings.embedding.request_timeout_seconds)
    except InferError as exc:
        status_code, code, status = ERROR_MAPPING.get(type(exc), (500, "internal", "internal"))
        logger.warning("Embedding request failed with %s: %s", exc.code, exc)
        record_metrics(status=status, input_count=len(inputs), prompt_tokens=prompt_tokens)
        return error_response(status_code=status_code, code=code, message=str(exc))
    except Exception:
        logger.exception("Embedding generation failed")
        record_metrics(status="internal", input_count=len(inputs), prompt_tokens=prompt_tokens)
        return error_response(
            status_code=500,
            code="internal",
            message="Embedding generation failed.",
        )

    expected_dimension = engine.backend.dimension if engine.backend.dimension > 0 else None
    for idx, vector in enumerate(vectors):
        if expected_dimension is not None and len(vector) != expected_dimension:
            record_metrics(status="internal", input_count=len(inputs), prompt_tokens=prompt_tokens)
            return error_response(
                status_code=500,
                code="internal",
                message=(
                    f"Embedding backend returned invalid vector dimension at index {idx}: "
                    f"expected {expected_dimension}, got {len(vector)}."
                ),
            )
        try:
            if any(not math.isfinite(float(value)) for value in vector):
                raise ValueError("non-finite")
        except (TypeError, ValueError):
            record_metrics(status="internal", input_count=len(inputs), prompt_tokens=prompt_tokens)
            return error_response(
                status_code=500,
                code="internal",
                message=f"Embedding backend returned non-finite vector values at index {idx}.",
            )

    items = [EmbeddingData(index=i, embedding=vector) for i, vector in enumerate(vectors)]
    record_metrics(status="ok", input_count=len(inputs), prompt_tokens=prompt_tokens)

    return EmbeddingResponse(
        model=body.model,
        data=items,
        usage=EmbeddingUsage(prompt_tokens=prompt_tokens, total_tokens=prompt_tokens),
    )
