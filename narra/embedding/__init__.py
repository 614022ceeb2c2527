"""
Embedding Providers
===================

Text-to-vector collaborators. The analytics core assumes embeddings
already exist; only what-if simulation asks a provider to embed new text.

The sentence-transformers model is loaded lazily and degrades gracefully:
when the library or model is unavailable ``is_available()`` is False and
``embed`` returns None.
"""

from __future__ import annotations
from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from ..contracts.world import Vector, as_vector


class EmbeddingProvider:
    """Interface for text embedding."""

    def embed(self, text: str) -> Optional[Vector]:
        """Embed text, or None when no vector can be produced."""
        raise NotImplementedError

    def is_available(self) -> bool:
        raise NotImplementedError


@dataclass
class EmbeddingProviderConfig:
    """Configuration for the sentence-transformers provider."""
    model_id: str = "all-MiniLM-L6-v2"
    max_sequence_length: int = 256
    use_gpu: bool = False
    normalize: bool = True


class SentenceTransformerProvider(EmbeddingProvider):
    """Lazy sentence-transformers adapter."""

    def __init__(self, config: Optional[EmbeddingProviderConfig] = None):
        self._config = config or EmbeddingProviderConfig()
        self._model = None
        self._model_loaded = False
        self._load_attempted = False

    def _ensure_model_loaded(self) -> bool:
        """Lazy load the embedding model."""
        if self._model_loaded:
            return True
        if self._load_attempted:
            return False
        self._load_attempted = True

        try:
            from sentence_transformers import SentenceTransformer
            self._model = SentenceTransformer(
                self._config.model_id,
                device='cuda' if self._config.use_gpu else 'cpu'
            )
            self._model_loaded = True
        except ImportError:
            # sentence-transformers not installed - graceful degradation
            self._model = None
        except (OSError, RuntimeError, ValueError):
            # Model download or initialisation failed
            self._model = None

        return self._model_loaded

    def is_available(self) -> bool:
        return self._ensure_model_loaded()

    def embed(self, text: str) -> Optional[Vector]:
        if not text or not text.strip():
            return None
        if not self._ensure_model_loaded():
            return None

        # Rough character budget for the model's token window
        truncated = text[:self._config.max_sequence_length * 4]
        embedding = self._model.encode(
            truncated,
            convert_to_numpy=True,
            normalize_embeddings=self._config.normalize
        )
        return as_vector(embedding.tolist())

    @property
    def model_id(self) -> str:
        return self._config.model_id


class StaticEmbeddingProvider(EmbeddingProvider):
    """Fixed text -> vector lookup, for callers with precomputed vectors."""

    def __init__(self, vectors: Mapping[str, Vector]):
        self._vectors: Dict[str, Vector] = {
            text: as_vector(vector) for text, vector in vectors.items()
        }

    def embed(self, text: str) -> Optional[Vector]:
        return self._vectors.get(text)

    def is_available(self) -> bool:
        return True
