"""Tests for OpenAIEmbedder with a mocked OpenAI client."""

from unittest.mock import MagicMock

import pytest

from tests.fakes.fake_settings import make_settings
from tutor_guard.core.embeddings import MAX_BATCH, OpenAIEmbedder


@pytest.fixture
def mock_client():
    """OpenAI client whose embeddings.create echoes one vector per input."""

    def _create(model: str, input: list[str], dimension: int = 8):
        response = MagicMock()
        response.data = []
        # Returned out of order; the embedder must sort by index
        for index in reversed(range(len(input))):
            item = MagicMock()
            item.index = index
            item.embedding = [float(index)] * dimension
            response.data.append(item)
        return response

    client = MagicMock()
    client.embeddings.create.side_effect = _create
    return client


def test_vectors_in_input_order(mock_client):
    embedder = OpenAIEmbedder(make_settings(EMBEDDING_DIM=8), client=mock_client)

    vectors = embedder(["first", "second", "third"])

    assert [v[0] for v in vectors] == [0.0, 1.0, 2.0]
    mock_client.embeddings.create.assert_called_once_with(
        model="text-embedding-3-small", input=["first", "second", "third"]
    )


def test_blank_text_sent_as_space(mock_client):
    embedder = OpenAIEmbedder(make_settings(EMBEDDING_DIM=8), client=mock_client)
    embedder(["", "text"])
    assert mock_client.embeddings.create.call_args.kwargs["input"] == [" ", "text"]


def test_empty_input_makes_no_request(mock_client):
    embedder = OpenAIEmbedder(make_settings(EMBEDDING_DIM=8), client=mock_client)
    assert embedder([]) == []
    mock_client.embeddings.create.assert_not_called()


def test_large_input_is_batched(mock_client):
    embedder = OpenAIEmbedder(make_settings(EMBEDDING_DIM=8), client=mock_client)
    vectors = embedder([f"text {i}" for i in range(MAX_BATCH + 3)])

    assert len(vectors) == MAX_BATCH + 3
    assert mock_client.embeddings.create.call_count == 2


def test_dimension_mismatch(mock_client):
    embedder = OpenAIEmbedder(make_settings(EMBEDDING_DIM=1536), client=mock_client)
    with pytest.raises(ValueError, match="dimension mismatch"):
        embedder(["text"])
