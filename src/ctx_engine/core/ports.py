from collections.abc import Iterator
from typing import Protocol

import numpy as np
from numpy.typing import NDArray

from ctx_engine.core.models import (
    ContextSource,
    Direction,
    Edge,
    EdgeInput,
    Entity,
    ParsedQuery,
    RawResult,
    SearchOptions,
    SearchResult,
    SearchStrategy,
)


class IEmbedder(Protocol):
    """Protocol defining how an embedder should behave."""

    @property
    def dimension(self) -> int:
        """Returns the embedding vector dimension size."""
        ...

    def embed_batch(self, texts: list[str]) -> NDArray[np.float32]:
        """Converts a batch of text strings into a contiguous float32 NumPy array."""
        ...

    def embed_query(self, text: str) -> NDArray[np.float32]:
        """Converts a single query string into a flat float32 NumPy array."""
        ...


class IEntityStore(Protocol):
    """Entity lookup and full-text search backend."""

    def get(self, entity_id: str) -> Entity | None: ...

    def get_by_name(self, name: str, entity_type: str | None = None) -> Entity | None: ...

    def get_by_qualified_name(self, qualified_name: str) -> Entity | None: ...

    def search(self, text: str, entity_type: str | None = None, limit: int = 10) -> list[Entity]:
        """Returns entities ranked best-first for the given text."""
        ...

    def count(self) -> int: ...

    def upsert(self, entity: Entity) -> None: ...


class ISimilarityIndex(Protocol):
    """Semantic similarity backend."""

    def find_similar(
        self, text: str, limit: int = 10, entity_types: list[str] | None = None
    ) -> list[tuple[str, float]]:
        """Returns (entity_id, similarity) pairs, most similar first."""
        ...


class IRelationshipStore(Protocol):
    """Relational persistence for directed, typed, weighted edges."""

    def create(self, edge: EdgeInput) -> Edge: ...

    def create_many(self, edges: list[EdgeInput]) -> list[Edge]: ...

    def get(self, edge_id: str) -> Edge | None: ...

    def get_for_entity(
        self,
        entity_id: str,
        direction: Direction = Direction.BOTH,
        relationship_types: list[str] | None = None,
        min_weight: float | None = None,
        limit: int | None = None,
    ) -> list[Edge]: ...

    def get_by_type(self, relationship_type: str, limit: int | None = None) -> list[Edge]: ...

    def exists(self, source_id: str, target_id: str, relationship_type: str | None = None) -> bool: ...

    def delete(self, edge_id: str) -> bool: ...

    def delete_for_entity(self, entity_id: str) -> int: ...

    def delete_between(self, source_id: str, target_id: str) -> int: ...

    def count(self, relationship_type: str | None = None) -> int: ...

    def count_by_type(self) -> dict[str, int]: ...

    def average_degree(self, entity_count: int | None = None) -> float: ...

    def most_connected(self, limit: int = 10) -> list[tuple[str, int]]: ...

    def iter_edges(self) -> Iterator[Edge]: ...

    def entity_ids(self) -> set[str]: ...


class IReranker(Protocol):
    def rerank(self, query: str, results: list[SearchResult]) -> list[SearchResult]:
        """Returns a reordered, rescored subset of `results`."""
        ...


class IStrategyHandler(Protocol):
    """One search strategy; produces strategy-local scores."""

    @property
    def strategy(self) -> SearchStrategy: ...

    def run(self, parsed: ParsedQuery, options: SearchOptions) -> list[RawResult]: ...


class IContextFormatter(Protocol):
    """Renders entities, group headers and the sources footer for one output style."""

    section_separator: str

    def format_group_header(self, title: str) -> str: ...

    def format_group_footer(self, title: str) -> str: ...

    def format_entity(
        self,
        entity: Entity,
        body: str | None,
        truncated: bool = False,
        imports: list[str] | None = None,
    ) -> str: ...

    def format_sources(self, sources: list[ContextSource], max_listed: int = 10) -> str: ...
