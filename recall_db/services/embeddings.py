"""Embedding providers."""
import logging
from typing import List, Optional, Protocol, Sequence, runtime_checkable

import numpy as np
from sentence_transformers import SentenceTransformer

from recall_db.errors import ProviderError

logger = logging.getLogger(__name__)


@runtime_checkable
class EmbeddingProvider(Protocol):
    """Anything that turns text into a fixed-dimension vector."""

    dimension: int

    def embed(self, text: str) -> Sequence[float]:
        ...


class EmbeddingService:
    """Local sentence-transformers provider. The model loads on first use."""

    def __init__(self, model_name: str = "all-MiniLM-L6-v2"):
        """Initialize with a specific model."""
        self.model_name = model_name
        self._model: Optional[SentenceTransformer] = None
        self._dimension: Optional[int] = None

    @property
    def model(self) -> SentenceTransformer:
        if self._model is None:
            logger.info(f"Loading embedding model {self.model_name}")
            try:
                self._model = SentenceTransformer(self.model_name)
            except Exception as e:
                raise ProviderError(f"Could not load embedding model {self.model_name}: {e}") from e
        return self._model

    @property
    def dimension(self) -> int:
        if self._dimension is None:
            self._dimension = self.model.get_sentence_embedding_dimension()
        return self._dimension

    def embed(self, text: str) -> np.ndarray:
        """Generate embedding for a single text."""
        try:
            return self.model.encode(text, convert_to_numpy=True)
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Embedding failed: {e}") from e

    def embed_many(self, texts: List[str], batch_size: int = 8) -> List[np.ndarray]:
        """Generate embeddings for multiple texts in batches."""
        try:
            embeddings = self.model.encode(
                texts,
                batch_size=batch_size,
                convert_to_numpy=True,
                show_progress_bar=len(texts) > 100,
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Batch embedding failed: {e}") from e
        return [embeddings[i] for i in range(len(texts))]

# Global embedding service instance (lazy loaded)
_embedding_service = None

def get_embedding_service(model_name: str = "all-MiniLM-L6-v2") -> EmbeddingService:
    """Get or create the global embedding service."""
    global _embedding_service
    if _embedding_service is None or _embedding_service.model_name != model_name:
        _embedding_service = EmbeddingService(model_name)
    return _embedding_service
