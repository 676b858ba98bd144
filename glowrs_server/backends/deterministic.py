"""Deterministic lightweight embedding backend for local testing."""

from __future__ import annotations

import hashlib
from typing import Iterable

import numpy as np


class DeterministicEmbeddingBackend:
    """Stable hash-based embeddings with fixed dimension."""

    name = "deterministic"

    def __init__(
        self,
        *,
        model_name: str,
        aliases: Iterable[str],
        dimension: int,
        normalize: bool,
        concurrency: int = 1,
    ) -> None:
        self.model_name = model_name
        self._aliases = list(aliases)
        self.dimension = dimension
        self.concurrency = concurrency
        self._normalize = normalize

    def _vectorize(self, text: str) -> np.ndarray:
        values = np.zeros(self.dimension, dtype=np.float32)
        if not text:
            return values

        for idx in range(self.dimension):
            digest = hashlib.sha256(f"{text}:{idx}".encode("utf-8")).digest()
            raw = int.from_bytes(digest[:4], byteorder="big", signed=False)
            values[idx] = (raw / 2**31) - 1.0
        return values

    async def infer(self, inputs: list[str]) -> list[list[float]]:
        if not inputs:
            return []
        matrix = np.stack([self._vectorize(item) for item in inputs])
        if self._normalize:
            norms = np.linalg.norm(matrix, axis=1, keepdims=True)
            matrix = np.divide(matrix, norms, out=np.zeros_like(matrix), where=norms > 0)
        return matrix.tolist()

    def advertised_models(self) -> list[str]:
        output = list(self._aliases)
        if self.model_name not in output:
            output.append(self.model_name)
        return output
