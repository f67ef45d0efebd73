from __future__ import annotations

from dataclasses import dataclass
from types import SimpleNamespace

import numpy as np
import pytest

from reelsearch.semantic.config import EmbeddingSettings
from reelsearch.semantic.embedder import EmbeddingUnavailable, OpenAIEmbedder, is_retryable


def _response(vectors: list[list[object]]) -> SimpleNamespace:
    return SimpleNamespace(data=[SimpleNamespace(embedding=vector) for vector in vectors])


@dataclass
class _HttpError(Exception):
    status_code: int
    detail: str

    def __str__(self) -> str:
        return self.detail


class APIConnectionError(Exception):
    pass


class _FakeEmbeddingsAPI:
    def __init__(self, responses: list[object]) -> None:
        self._responses = list(responses)
        self.calls: list[dict[str, object]] = []

    def create(self, *, model: str, input: list[str], dimensions: int) -> object:
        self.calls.append({"model": model, "input": input, "dimensions": dimensions})
        if not self._responses:
            raise RuntimeError("No fake response configured")
        response = self._responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class _FakeClient:
    def __init__(self, responses: list[object]) -> None:
        self.embeddings = _FakeEmbeddingsAPI(responses)


def _settings(dimensions: int = 3) -> EmbeddingSettings:
    return EmbeddingSettings(api_key="sk-test", model="text-embedding-v4", dimensions=dimensions)


def test_embed_returns_one_float32_vector() -> None:
    client = _FakeClient([_response([[0.1, 0.2, 0.3]])])
    embedder = OpenAIEmbedder(_settings(), client=client)

    vector = embedder.embed("  space opera ")

    assert vector.dtype == np.float32
    assert vector.shape == (3,)
    assert client.embeddings.calls == [{"model": "text-embedding-v4", "input": ["space opera"], "dimensions": 3}]


def test_embed_texts_returns_matrix() -> None:
    client = _FakeClient([_response([[1.0, 0.0], [0.0, 1.0]])])
    embedder = OpenAIEmbedder(_settings(dimensions=2), client=client)

    vectors = embedder.embed_texts(["Solaris", "Stalker"])

    assert vectors.shape == (2, 2)
    assert embedder.model == "text-embedding-v4"
    assert embedder.dimensions == 2


def test_embed_rejects_empty_text() -> None:
    embedder = OpenAIEmbedder(_settings(), client=_FakeClient([]))

    with pytest.raises(ValueError, match="empty"):
        embedder.embed("   ")


def test_provider_error_is_wrapped_with_retryable_flag() -> None:
    client = _FakeClient([_HttpError(status_code=429, detail="rate limited")])
    embedder = OpenAIEmbedder(_settings(), client=client)

    with pytest.raises(EmbeddingUnavailable, match="rate limited") as error:
        embedder.embed("alien")

    assert error.value.retryable is True
    assert error.value.stage == "query"
    assert len(client.embeddings.calls) == 1


def test_client_errors_are_not_retryable() -> None:
    embedder = OpenAIEmbedder(_settings(), client=_FakeClient([_HttpError(status_code=401, detail="bad key")]))

    with pytest.raises(EmbeddingUnavailable) as error:
        embedder.embed("alien")

    assert error.value.retryable is False


@pytest.mark.parametrize(
    ("vectors", "message"),
    [
        ([[0.1, 0.2]], "dimension mismatch"),
        ([[0.1, "x", 0.3]], "non-numeric"),
        ([[0.1, float("nan"), 0.3]], "non-finite"),
        ([[]], "missing numeric vector"),
        ([[0.1, 0.2, 0.3], [0.1, 0.2, 0.3]], "count mismatch"),
    ],
)
def test_malformed_responses_raise(vectors: list[list[object]], message: str) -> None:
    embedder = OpenAIEmbedder(_settings(), client=_FakeClient([_response(vectors)]))

    with pytest.raises(EmbeddingUnavailable, match=message):
        embedder.embed("alien")


def test_retryable_classification() -> None:
    assert is_retryable(_HttpError(status_code=503, detail="unavailable"))
    assert is_retryable(TimeoutError("slow"))
    assert is_retryable(APIConnectionError("reset"))
    assert not is_retryable(_HttpError(status_code=400, detail="bad request"))
    assert not is_retryable(ValueError("nope"))
