"""Sentence-transformers backend for real local embedding generation."""

from __future__ import annotations

import asyncio
import logging
from typing import Iterable

import numpy as np

from glowrs_server.backends.base import BackendError

logger = logging.getLogger(__name__)


class SentenceTransformersEmbeddingBackend:
    """Embeddings backend powered by sentence-transformers."""

    name = "sentence_transformers"

    def __init__(
        self,
        *,
        model_name: str,
        aliases: Iterable[str],
        normalize: bool,
        trust_remote_code: bool,
        device: str | None = None,
        concurrency: int = 1,
    ) -> None:
        try:
            from sentence_transformers import SentenceTransformer
        except ModuleNotFoundError as exc:  # pragma: no cover - depends on optional extra
            raise RuntimeError(
                "sentence-transformers backend selected but dependency is missing. "
                "Install with: pip install -e '.[local]'"
            ) from exc

        self.model_name = model_name
        self.concurrency = concurrency
        self._aliases = list(aliases)
        self._normalize = normalize
        self._model = SentenceTransformer(
            model_name,
            device=device,
            trust_remote_code=trust_remote_code,
        )
        dim = self._model.get_sentence_embedding_dimension()
        self.dimension = int(dim) if dim else 0
        self.device = str(self._model.device)
        logger.info(
            "Loaded %s on %s (dimension=%d, normalize=%s)",
            model_name,
            self.device,
            self.dimension,
            normalize,
        )

    def _encode_sync(self, inputs: list[str]) -> list[list[float]]:
        vectors = self._model.encode(
            inputs,
            batch_size=max(1, len(inputs)),
            normalize_embeddings=self._normalize,
            convert_to_numpy=True,
        )
        if isinstance(vectors, np.ndarray):
            return vectors.astype(np.float32).tolist()
        return [np.asarray(item, dtype=np.float32).tolist() for item in vectors]

    async def infer(self, inputs: list[str]) -> list[list[float]]:
        try:
            return await asyncio.to_thread(self._encode_sync, inputs)
        except (RuntimeError, ValueError) as exc:
            raise BackendError(f"sentence-transformers inference failed: {exc}") from exc

    def advertised_models(self) -> list[str]:
        output = list(self._aliases)
        if self.model_name not in output:
            output.append(self.model_name)
        return output
