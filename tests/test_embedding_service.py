"""Tests for the embedding client wrapper."""

from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest

from docingest.errors import EmbeddingServiceError
from docingest.services.embedding_service import EmbeddingService


def _response(*vectors, reverse=False):
    data = [SimpleNamespace(index=i, embedding=v) for i, v in enumerate(vectors)]
    if reverse:
        data.reverse()
    return SimpleNamespace(data=data)


@pytest.fixture
def client():
    return MagicMock()


def test_embed_batch_orders_by_index(client):
    client.embeddings.create.return_value = _response([0.1], [0.2], reverse=True)
    service = EmbeddingService(model="test-embed", client=client)

    result = service.embed_batch(["first", "second"])

    assert result.ok
    assert result.vectors == [[0.1], [0.2]]
    client.embeddings.create.assert_called_once_with(input=["first", "second"], model="test-embed")


def test_embed_batch_returns_error_instead_of_raising(client):
    client.embeddings.create.side_effect = RuntimeError("connection reset")
    result = EmbeddingService(client=client).embed_batch(["a", "b"])

    assert not result.ok
    assert isinstance(result.error, EmbeddingServiceError)
    assert "connection reset" in str(result.error)


def test_embed_batch_size_mismatch_is_error(client):
    client.embeddings.create.return_value = _response([0.1])
    result = EmbeddingService(client=client).embed_batch(["a", "b"])
    assert not result.ok


def test_empty_batch_makes_no_call(client):
    result = EmbeddingService(client=client).embed_batch([])
    assert result.ok
    assert result.vectors == []
    client.embeddings.create.assert_not_called()


def test_embed_one(client):
    client.embeddings.create.return_value = _response([0.3, 0.4])
    assert EmbeddingService(client=client).embed_one("text") == [0.3, 0.4]


def test_embed_one_raises(client):
    client.embeddings.create.side_effect = RuntimeError("model not loaded")
    with pytest.raises(EmbeddingServiceError):
        EmbeddingService(client=client).embed_one("text")


def test_empty_vector_is_error(client):
    client.embeddings.create.return_value = _response([])
    with pytest.raises(EmbeddingServiceError):
        EmbeddingService(client=client).embed_one("text")
