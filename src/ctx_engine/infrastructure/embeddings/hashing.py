import hashlib
import re

import numpy as np
from loguru import logger
from numpy.typing import NDArray

_TOKEN_RE = re.compile(r"[A-Z]?[a-z]+|[A-Z]+(?![a-z])|\d+")


def _tokens(text: str) -> list[str]:
    """Splits identifiers as well as prose: `getUserName` -> get, user, name."""
    return [t.lower() for t in _TOKEN_RE.findall(text)]


class HashingEmbedder:
    """
    Concrete implementation of IEmbedder using signed feature hashing.
    Deterministic and model-free: unigrams and bigrams are hashed into a fixed
    number of buckets and the result is L2-normalized.
    """

    def __init__(self, dimension: int = 256) -> None:
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self._dimension = dimension

    @property
    def dimension(self) -> int:
        return self._dimension

    def _bucket(self, feature: str) -> tuple[int, float]:
        digest = hashlib.blake2b(feature.encode("utf-8"), digest_size=8).digest()
        value = int.from_bytes(digest, "little")
        sign = 1.0 if value & 1 else -1.0
        return (value >> 1) % self._dimension, sign

    def _embed_one(self, text: str) -> NDArray[np.float32]:
        vector = np.zeros(self._dimension, dtype=np.float32)
        tokens = _tokens(text)
        features = tokens + [f"{a}_{b}" for a, b in zip(tokens, tokens[1:])]
        for feature in features:
            index, sign = self._bucket(feature)
            vector[index] += sign

        norm = float(np.linalg.norm(vector))
        if norm > 0:
            vector /= norm
        return vector

    def embed_batch(self, texts: list[str]) -> NDArray[np.float32]:
        """Embeds a batch of texts into a (n, dimension) float32 array."""
        if not texts:
            return np.empty((0, self._dimension), dtype=np.float32)
        return np.vstack([self._embed_one(text) for text in texts]).astype(np.float32)

    def embed_query(self, text: str) -> NDArray[np.float32]:
        if not text.strip():
            raise ValueError("Query text cannot be empty.")

        query_vector = self._embed_one(text)
        if not query_vector.any():
            logger.debug("Query '{}' produced no hashable tokens", text)

        # Critical structural guarantee
        if query_vector.shape != (self._dimension,):
            raise ValueError(f"Expected ({self._dimension},), got {query_vector.shape}")

        return query_vector
