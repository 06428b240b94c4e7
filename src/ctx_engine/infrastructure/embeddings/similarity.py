import numpy as np
from loguru import logger
from numpy.typing import NDArray

from ctx_engine.core.models import Entity
from ctx_engine.core.ports import IEmbedder


def entity_text(entity: Entity) -> str:
    """The text an entity is embedded from."""
    parts = [entity.name, entity.qualified_name, entity.summary, entity.content]
    return "\n".join(p for p in parts if p)


class NumpySimilarityIndex:
    """In-memory cosine-similarity index implementing ISimilarityIndex.

    Vectors are L2-normalized on insert so similarity is a single matrix-vector
    product.
    """

    def __init__(self, embedder: IEmbedder) -> None:
        self.embedder = embedder
        self._ids: list[str] = []
        self._types: list[str] = []
        self._matrix: NDArray[np.float32] = np.empty((0, embedder.dimension), dtype=np.float32)

    def __len__(self) -> int:
        return len(self._ids)

    def clear(self) -> None:
        self._ids = []
        self._types = []
        self._matrix = np.empty((0, self.embedder.dimension), dtype=np.float32)

    def add_entities(self, entities: list[Entity]) -> None:
        if not entities:
            return

        # Re-indexed entities replace their previous rows
        incoming = {e.id for e in entities}
        keep = [i for i, entity_id in enumerate(self._ids) if entity_id not in incoming]
        if len(keep) != len(self._ids):
            self._matrix = self._matrix[keep]
            self._ids = [self._ids[i] for i in keep]
            self._types = [self._types[i] for i in keep]

        vectors = self.embedder.embed_batch([entity_text(e) for e in entities])
        norms = np.linalg.norm(vectors, axis=1, keepdims=True)
        norms[norms == 0] = 1.0
        self._matrix = np.vstack([self._matrix, (vectors / norms).astype(np.float32)])
        self._ids.extend(e.id for e in entities)
        self._types.extend(e.type for e in entities)
        logger.debug("Indexed {} entities (total {})", len(entities), len(self._ids))

    def find_similar(
        self, text: str, limit: int = 10, entity_types: list[str] | None = None
    ) -> list[tuple[str, float]]:
        if not self._ids or not text.strip() or limit <= 0:
            return []

        query = self.embedder.embed_query(text)
        norm = float(np.linalg.norm(query))
        if norm == 0:
            return []

        scores = self._matrix @ (query / norm)
        if entity_types:
            allowed = np.array([t in entity_types for t in self._types])
            scores = np.where(allowed, scores, -np.inf)

        # Stable sort keeps insertion order among equal scores
        order = np.argsort(-scores, kind="stable")
        results: list[tuple[str, float]] = []
        for idx in order[:limit]:
            score = float(scores[idx])
            if not np.isfinite(score) or score <= 0:
                break
            results.append((self._ids[idx], score))
        return results
