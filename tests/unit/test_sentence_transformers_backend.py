from __future__ import annotations

import sys
import types

import numpy as np
import pytest

from glowrs_server.backends.sentence_transformers import SentenceTransformersEmbeddingBackend
from glowrs_server.infer.errors import BackendError


class FakeSentenceTransformer:
    def __init__(self, model_name: str, *, device: str | None, trust_remote_code: bool) -> None:
        self.model_name = model_name
        self.device = device or "cpu"
        self.trust_remote_code = trust_remote_code
        self.encode_calls: list[list[str]] = []

    def get_sentence_embedding_dimension(self) -> int:
        return 3

    def encode(self, inputs, *, batch_size, normalize_embeddings, convert_to_numpy):
        self.encode_calls.append(list(inputs))
        if "oom" in inputs:
            raise RuntimeError("CUDA error: out of memory")
        return np.ones((len(inputs), 3), dtype=np.float64)


@pytest.fixture
def backend(monkeypatch) -> SentenceTransformersEmbeddingBackend:
    module = types.ModuleType("sentence_transformers")
    module.SentenceTransformer = FakeSentenceTransformer
    monkeypatch.setitem(sys.modules, "sentence_transformers", module)
    return SentenceTransformersEmbeddingBackend(
        model_name="sentence-transformers/all-MiniLM-L6-v2",
        aliases=["all-MiniLM-L6-v2"],
        normalize=True,
        trust_remote_code=False,
    )


def test_device_left_to_library_when_unset(backend):
    assert backend.device == "cpu"
    assert backend.dimension == 3
    assert backend._model.trust_remote_code is False


@pytest.mark.asyncio
async def test_infer_returns_float_lists(backend):
    vectors = await backend.infer(["a", "b"])

    assert vectors == [[1.0, 1.0, 1.0], [1.0, 1.0, 1.0]]
    assert backend._model.encode_calls == [["a", "b"]]


@pytest.mark.asyncio
async def test_encode_failure_raised_as_backend_error(backend):
    with pytest.raises(BackendError, match="out of memory"):
        await backend.infer(["fine", "oom"])
