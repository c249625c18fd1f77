"""Tests for meeseeks.kb.embedder: TF-IDF and LiteLLM embedders."""

from __future__ import annotations

import math
from unittest.mock import MagicMock, patch

import pytest

from meeseeks.kb.embedder import (
    LiteLLMEmbedder,
    TfidfEmbedder,
    create_embedder,
    embedder_from_state,
    tokenize,
    validate_api_key,
)


def _norm(vector):
    return math.sqrt(sum(v * v for v in vector))


# ------------------------------------------------------------------
# tokenize()
# ------------------------------------------------------------------


def test_tokenize_lowercases_and_strips_punctuation():
    assert tokenize("Wiring, the DMX-512 Controller!") == ["wiring", "dmx", "512", "controller"]


def test_tokenize_drops_short_and_stop_words():
    assert tokenize("it is an ox and the cat") == ["cat"]


def test_tokenize_empty():
    assert tokenize("") == []
    assert tokenize("?! ...") == []


# ------------------------------------------------------------------
# TfidfEmbedder
# ------------------------------------------------------------------


def test_tfidf_vocabulary_ordered_by_document_frequency():
    embedder = TfidfEmbedder()
    embedder.fit(["python snakes", "python code"])
    assert embedder.state()["vocabulary"] == ["python", "code", "snakes"]
    assert embedder.dimensions == 3


def test_tfidf_rare_words_weigh_more():
    embedder = TfidfEmbedder()
    embedder.fit(["python snakes", "python code"])

    python, code, snakes = embedder.embed("python snakes")

    assert code == 0.0
    assert snakes / python == pytest.approx(1 + math.log(1.5))


def test_tfidf_vectors_are_unit_length():
    embedder = TfidfEmbedder()
    embedder.fit(["python snakes", "python code", "garden snakes"])
    for vector in embedder.embed_batch(["python snakes", "garden code python"]):
        assert _norm(vector) == pytest.approx(1.0)


def test_tfidf_unknown_words_give_zero_vector():
    embedder = TfidfEmbedder()
    embedder.fit(["python snakes"])
    assert embedder.embed("completely unrelated") == [0.0, 0.0]


def test_tfidf_empty_corpus_has_one_dimension():
    embedder = TfidfEmbedder()
    embedder.fit([])
    assert embedder.dimensions == 1
    assert embedder.embed("anything") == [0.0]


def test_tfidf_max_vocab_keeps_most_frequent():
    embedder = TfidfEmbedder(max_vocab=1)
    embedder.fit(["python snakes", "python code"])
    assert embedder.state()["vocabulary"] == ["python"]


def test_tfidf_min_df_filters_rare_words():
    embedder = TfidfEmbedder(min_df=2)
    embedder.fit(["python snakes", "python code"])
    assert embedder.state()["vocabulary"] == ["python"]


def test_tfidf_state_round_trip_embeds_identically():
    embedder = TfidfEmbedder()
    embedder.fit(["python snakes", "python code", "garden snakes"])

    restored = TfidfEmbedder.from_state(embedder.state())

    assert restored.dimensions == embedder.dimensions
    assert restored.embed("garden python") == embedder.embed("garden python")


def test_tfidf_corrupt_state_raises():
    with pytest.raises(ValueError, match="corrupt"):
        TfidfEmbedder.from_state({"vocabulary": ["a", "b"], "idf": [1.0]})


def test_tfidf_invalid_arguments():
    with pytest.raises(ValueError):
        TfidfEmbedder(max_vocab=0)
    with pytest.raises(ValueError):
        TfidfEmbedder(min_df=0)


# ------------------------------------------------------------------
# LiteLLMEmbedder
# ------------------------------------------------------------------


def _embedding_response(*vectors):
    response = MagicMock()
    response.data = [{"embedding": list(v)} for v in vectors]
    return response


def test_litellm_embed_batch(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    embedder = LiteLLMEmbedder("openai/text-embedding-3-small", num_retries=5)

    with patch(
        "meeseeks.kb.embedder.litellm.embedding",
        return_value=_embedding_response([0.1, 0.2], [0.3, 0.4]),
    ) as mock_embed:
        vectors = embedder.embed_batch(["one", "two"])

    assert vectors == [[0.1, 0.2], [0.3, 0.4]]
    assert embedder.dimensions == 2
    assert embedder.state() == {"dimensions": 2}
    mock_embed.assert_called_once_with(
        model="openai/text-embedding-3-small", input=["one", "two"], num_retries=5
    )


def test_litellm_empty_batch_makes_no_call():
    with patch("meeseeks.kb.embedder.litellm.embedding") as mock_embed:
        assert LiteLLMEmbedder("ollama/nomic-embed-text").embed_batch([]) == []
    mock_embed.assert_not_called()


def test_litellm_dimensions_unknown_before_first_call():
    with pytest.raises(RuntimeError, match="unknown"):
        LiteLLMEmbedder("ollama/nomic-embed-text").dimensions


def test_litellm_missing_key_raises_before_call(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with patch("meeseeks.kb.embedder.litellm.embedding") as mock_embed:
        with pytest.raises(EnvironmentError, match="OPENAI_API_KEY"):
            LiteLLMEmbedder("text-embedding-3-small").embed("hello")
    mock_embed.assert_not_called()


def test_validate_api_key_local_provider_needs_no_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    validate_api_key("ollama/nomic-embed-text")


def test_validate_api_key_unknown_provider_is_not_checked():
    validate_api_key("someprovider/some-model")


# ------------------------------------------------------------------
# Factories
# ------------------------------------------------------------------


def test_create_embedder():
    assert isinstance(create_embedder("tfidf"), TfidfEmbedder)
    embedder = create_embedder("openai/text-embedding-3-small")
    assert isinstance(embedder, LiteLLMEmbedder)
    assert embedder.model == "openai/text-embedding-3-small"


def test_embedder_from_state_litellm_restores_dimensions():
    embedder = embedder_from_state("openai/text-embedding-3-small", {"dimensions": 1536})
    assert embedder.dimensions == 1536


def test_embedder_from_state_tfidf():
    embedder = embedder_from_state("tfidf", {"vocabulary": ["python"], "idf": [1.0]})
    assert embedder.embed("python") == [1.0]
