"""Embedding backend factory."""

from __future__ import annotations

from glowrs_server.backends.base import EmbeddingBackend
from glowrs_server.backends.deterministic import DeterministicEmbeddingBackend
from glowrs_server.backends.sentence_transformers import SentenceTransformersEmbeddingBackend
from glowrs_server.config import Settings


def create_embedding_backend(settings: Settings) -> EmbeddingBackend:
    """Build embedding backend from settings."""
    aliases = settings.public_embedding_models()

    if settings.embedding.backend == "sentence_transformers":
        return SentenceTransformersEmbeddingBackend(
            model_name=settings.embedding.model_name,
            aliases=aliases,
            normalize=settings.embedding.normalize,
            trust_remote_code=settings.embedding.trust_remote_code,
            device=settings.embedding.device,
            concurrency=settings.embedding.concurrency,
        )

    return DeterministicEmbeddingBackend(
        model_name=settings.embedding.model_name,
        aliases=aliases,
        dimension=settings.embedding.dimension,
        normalize=settings.embedding.normalize,
        concurrency=settings.embedding.concurrency,
    )
