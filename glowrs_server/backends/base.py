"""Embedding backend protocol."""

from __future__ import annotations

from typing import Protocol

from glowrs_server.infer.errors import BackendError

__all__ = ["BackendError", "EmbeddingBackend"]


class EmbeddingBackend(Protocol):
    """Backend contract for local embedding generation.

    ``infer`` returns one vector per input, in input order, and raises
    ``BackendError`` on failure. ``concurrency`` is the number of batches
    the backend can safely run at once.
    """

    name: str
    model_name: str
    dimension: int
    concurrency: int

    async def infer(self, inputs: list[str]) -> list[list[float]]:
        """Generate one embedding vector for each input text."""

    def advertised_models(self) -> list[str]:
        """Model identifiers to advertise via /v1/models."""
