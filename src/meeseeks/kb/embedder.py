"""Embedding capability used identically at index time and query time.

Two implementations:

* ``TfidfEmbedder`` (model ``"tfidf"``): local, dependency-free, fitted on
  the knowledge base's own chunks. Its vocabulary and IDF weights are
  persisted with the index so queries are embedded in the same space.
* ``LiteLLMEmbedder``: any LiteLLM embedding model string
  (``provider/model``), with retry/backoff.
"""

from __future__ import annotations

import math
import os
import re
from abc import ABC, abstractmethod
from collections import Counter
from collections.abc import Sequence

import litellm

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

TFIDF_MODEL = "tfidf"

_PROVIDER_ENV: dict[str, str | None] = {
    "openai": "OPENAI_API_KEY",
    "azure": "AZURE_API_KEY",
    "cohere": "COHERE_API_KEY",
    "gemini": "GEMINI_API_KEY",
    "mistral": "MISTRAL_API_KEY",
    "voyage": "VOYAGE_API_KEY",
    "ollama": None,  # Local, no key required
}

_STOP_WORDS = frozenset(
    """
    a an and are as at be by for from has he in is it its of on that the to was were
    will with this but they have had what when where who which why how all each every
    both few more most other some such no nor not only own same so than too very can
    just should now you your we our their them his her she him my me
    """.split()
)


class Embedder(ABC):
    """Text → vector. ``fit`` is called once with the whole corpus before indexing."""

    model: str

    @property
    @abstractmethod
    def dimensions(self) -> int:
        """Vector length produced by ``embed``."""

    @abstractmethod
    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed each text; output order matches input order."""

    def embed(self, text: str) -> list[float]:
        return self.embed_batch([text])[0]

    def fit(self, texts: Sequence[str]) -> None:
        """Prepare the embedder on the index corpus (no-op for pretrained models)."""

    def state(self) -> dict:
        """JSON-serializable state needed to embed queries against this index."""
        return {}


# ------------------------------------------------------------------
# TF-IDF
# ------------------------------------------------------------------


def tokenize(text: str) -> list[str]:
    """Lowercase words longer than two characters, punctuation and stop words removed."""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    return [w for w in words if len(w) > 2 and w not in _STOP_WORDS]


class TfidfEmbedder(Embedder):
    """Smoothed TF-IDF vectors, L2-normalized.

    Args:
        max_vocab: Keep at most this many words, by document frequency.
        min_df: Minimum number of chunks a word must appear in.
    """

    model = TFIDF_MODEL

    def __init__(self, max_vocab: int = 5000, min_df: int = 1) -> None:
        if max_vocab < 1:
            raise ValueError("max_vocab must be >= 1")
        if min_df < 1:
            raise ValueError("min_df must be >= 1")
        self.max_vocab = max_vocab
        self.min_df = min_df
        self._vocabulary: dict[str, int] = {}
        self._idf: list[float] = []

    @property
    def dimensions(self) -> int:
        # An empty vocabulary still yields a (zero) vector of length 1.
        return max(1, len(self._vocabulary))

    def fit(self, texts: Sequence[str]) -> None:
        doc_freq: Counter[str] = Counter()
        for text in texts:
            doc_freq.update(set(tokenize(text)))

        ranked = sorted(
            (word for word, df in doc_freq.items() if df >= self.min_df),
            key=lambda w: (-doc_freq[w], w),
        )[: self.max_vocab]

        n_docs = len(texts)
        self._vocabulary = {word: i for i, word in enumerate(ranked)}
        self._idf = [math.log((n_docs + 1) / (doc_freq[w] + 1)) + 1 for w in ranked]

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        return [self._vector(text) for text in texts]

    def _vector(self, text: str) -> list[float]:
        vector = [0.0] * self.dimensions
        words = tokenize(text)
        if not words:
            return vector

        counts = Counter(w for w in words if w in self._vocabulary)
        for word, count in counts.items():
            idx = self._vocabulary[word]
            vector[idx] = (count / len(words)) * self._idf[idx]

        norm = math.sqrt(sum(v * v for v in vector))
        if norm > 0:
            vector = [v / norm for v in vector]
        return vector

    def state(self) -> dict:
        return {"vocabulary": list(self._vocabulary), "idf": list(self._idf)}

    @classmethod
    def from_state(cls, state: dict) -> TfidfEmbedder:
        words = list(state.get("vocabulary", []))
        idf = [float(v) for v in state.get("idf", [])]
        if len(words) != len(idf):
            raise ValueError("TF-IDF state is corrupt: vocabulary and idf differ in length")
        embedder = cls(max_vocab=max(1, len(words)))
        embedder._vocabulary = {w: i for i, w in enumerate(words)}
        embedder._idf = idf
        return embedder


# ------------------------------------------------------------------
# LiteLLM
# ------------------------------------------------------------------


class LiteLLMEmbedder(Embedder):
    """Embeddings from a hosted or local model through ``litellm.embedding()``."""

    def __init__(self, model: str, num_retries: int = 3, dimensions: int | None = None) -> None:
        self.model = model
        self.num_retries = num_retries
        self._dimensions = dimensions

    @property
    def dimensions(self) -> int:
        if self._dimensions is None:
            raise RuntimeError(f"Dimensions of '{self.model}' are unknown until a text is embedded.")
        return self._dimensions

    def embed_batch(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        validate_api_key(self.model)
        response = litellm.embedding(
            model=self.model,
            input=list(texts),
            num_retries=self.num_retries,
        )
        vectors = [list(item["embedding"]) for item in response.data]
        if vectors and self._dimensions is None:
            self._dimensions = len(vectors[0])
        return vectors

    def state(self) -> dict:
        return {"dimensions": self._dimensions}


def validate_api_key(model: str) -> None:
    """Check that the API key env var required by *model*'s provider is set.

    Raises:
        EnvironmentError: If the required key is missing from the environment.
    """
    provider = model.split("/")[0].lower() if "/" in model else "openai"
    env_var = _PROVIDER_ENV.get(provider)
    if env_var and not os.getenv(env_var):
        raise EnvironmentError(
            f"API key not found for provider '{provider}'. "
            f"Set the {env_var} environment variable."
        )


# ------------------------------------------------------------------
# Factories
# ------------------------------------------------------------------


def create_embedder(model: str) -> Embedder:
    """Return an unfitted embedder for *model* (``"tfidf"`` or a LiteLLM model string)."""
    if model == TFIDF_MODEL:
        return TfidfEmbedder()
    return LiteLLMEmbedder(model)


def embedder_from_state(model: str, state: dict) -> Embedder:
    """Rebuild the embedder an index was built with, for query-time embedding."""
    if model == TFIDF_MODEL:
        return TfidfEmbedder.from_state(state)
    return LiteLLMEmbedder(model, dimensions=state.get("dimensions"))
