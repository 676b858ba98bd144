"""OpenAI-compatible API models for glowrs-server."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel


class EmbeddingRequest(BaseModel):
    """OpenAI-compatible embeddings request."""

    model: str = "all-MiniLM-L6-v2"
    input: str | list[str]
    encoding_format: Literal["float"] = "float"


class EmbeddingData(BaseModel):
    """Embedding item."""

    object: Literal["embedding"] = "embedding"
    index: int
    embedding: list[float]


class EmbeddingUsage(BaseModel):
    prompt_tokens: int
    total_tokens: int


class EmbeddingResponse(BaseModel):
    """OpenAI-compatible embeddings response."""

    object: Literal["list"] = "list"
    model: str
    data: list[EmbeddingData]
    usage: EmbeddingUsage


class ModelInfo(BaseModel):
    """Model item for /v1/models."""

    id: str
    object: Literal["model"] = "model"
    created: int
    owned_by: str = "glowrs-server"


class ModelListResponse(BaseModel):
    object: Literal["list"] = "list"
    data: list[ModelInfo]


class QueueStatus(BaseModel):
    """Backlog depth and dispatcher states."""

    pending_tasks: int = 0
    pending_inputs: int = 0
    capacity: int = 0
    dispatchers: list[str] = []


class HealthResponse(BaseModel):
    """Health response."""

    status: Literal["ok", "error"] = "error"
    service: str = "glowrs-server"
    version: str = "0.1.0"
    backend: str = "none"
    embedding_enabled: bool = False
    queue: QueueStatus | None = None


class ErrorPayload(BaseModel):
    """Canonical error payload."""

    code: Literal[
        "invalid_request",
        "queue_full",
        "unavailable",
        "upstream_error",
        "upstream_timeout",
        "cancelled",
        "internal",
    ]
    message: str


class ErrorResponse(BaseModel):
    error: ErrorPayload
