from loguru import logger

from ctx_engine.core.models import (
    Direction,
    Entity,
    EntityMention,
    MentionKind,
    ParsedQuery,
    RawResult,
    SearchOptions,
    SearchStrategy,
)
from ctx_engine.core.ports import IEntityStore, ISimilarityIndex
from ctx_engine.services.graph import GraphTraversal

EXACT_MATCH_SCORE = 1.5
EXPANDED_TERM_FACTOR = 0.5
SEMANTIC_EXPANSION_FACTOR = 0.8
STRUCTURAL_RELATIONSHIPS = ["CONTAINS", "EXTENDS", "IMPLEMENTS", "IMPORTS"]

# Mention kinds that map one-to-one onto entity types
_TYPED_KINDS = {MentionKind.FILE, MentionKind.CLASS, MentionKind.FUNCTION, MentionKind.VARIABLE}


def resolve_mention(entity_store: IEntityStore, mention: EntityMention) -> Entity | None:
    """Finds the entity a mention refers to: by name, then qualified name, then top search hit."""
    entity_type = mention.kind.value if mention.kind in _TYPED_KINDS else None
    entity = entity_store.get_by_name(mention.text, entity_type)
    if entity is None:
        entity = entity_store.get_by_qualified_name(mention.text)
    if entity is None:
        hits = entity_store.search(mention.text, limit=1)
        entity = hits[0] if hits else None
    return entity


def _single_type(options: SearchOptions) -> str | None:
    return options.entity_types[0] if len(options.entity_types) == 1 else None


class KeywordStrategy:
    """Full-text matches scored by rank, plus exact mention hits and synonym matches."""

    strategy = SearchStrategy.KEYWORD

    def __init__(self, entity_store: IEntityStore) -> None:
        self.entity_store = entity_store

    def run(self, parsed: ParsedQuery, options: SearchOptions) -> list[RawResult]:
        results: list[RawResult] = []
        entity_type = _single_type(options)

        text = " ".join(parsed.keywords) or parsed.normalized_query
        if text:
            hits = self.entity_store.search(text, entity_type=entity_type, limit=options.limit * 2)
            results.extend(
                RawResult(entity_id=hit.id, score=1.0 / (i + 1), source=self.strategy)
                for i, hit in enumerate(hits)
            )

        for mention in parsed.entity_mentions:
            for hit in self.entity_store.search(mention.text, entity_type=entity_type, limit=5):
                if mention.text in (hit.name, hit.qualified_name, hit.file_path):
                    results.append(
                        RawResult(entity_id=hit.id, score=EXACT_MATCH_SCORE, source=self.strategy)
                    )

        if parsed.expanded_terms:
            hits = self.entity_store.search(
                " ".join(parsed.expanded_terms),
                entity_type=entity_type,
                limit=max(1, options.limit // 2),
            )
            results.extend(
                RawResult(
                    entity_id=hit.id, score=EXPANDED_TERM_FACTOR / (i + 1), source=self.strategy
                )
                for i, hit in enumerate(hits)
            )

        return results


class SemanticStrategy:
    strategy = SearchStrategy.SEMANTIC

    def __init__(self, similarity_index: ISimilarityIndex) -> None:
        self.similarity_index = similarity_index

    def run(self, parsed: ParsedQuery, options: SearchOptions) -> list[RawResult]:
        entity_types = options.entity_types or None
        results = [
            RawResult(entity_id=entity_id, score=score, source=self.strategy)
            for entity_id, score in self.similarity_index.find_similar(
                parsed.normalized_query, limit=options.limit * 2, entity_types=entity_types
            )
        ]

        if parsed.expanded_terms:
            expanded = " ".join([*parsed.keywords, *parsed.expanded_terms])
            results.extend(
                RawResult(
                    entity_id=entity_id,
                    score=score * SEMANTIC_EXPANSION_FACTOR,
                    source=self.strategy,
                )
                for entity_id, score in self.similarity_index.find_similar(
                    expanded, limit=max(1, options.limit // 2), entity_types=entity_types
                )
            )
        return results


class GraphStrategy:
    """Entities around the mentioned ones, scored by inverse distance.

    A neighbor at `hops` reached over an edge of weight `w` scores
    ``1 / (1 + hops / w)``; the best incident edge wins. The mentioned entity
    itself is left to the other strategies.
    """

    strategy = SearchStrategy.GRAPH

    def __init__(self, graph: GraphTraversal, entity_store: IEntityStore) -> None:
        self.graph = graph
        self.entity_store = entity_store

    def run(self, parsed: ParsedQuery, options: SearchOptions) -> list[RawResult]:
        scores: dict[str, float] = {}

        for mention in parsed.entity_mentions:
            entity = resolve_mention(self.entity_store, mention)
            if entity is None:
                logger.debug("Mention '{}' did not resolve to an entity", mention.text)
                continue

            neighborhood = self.graph.get_neighborhood(
                entity.id, max_depth=options.graph_depth, direction=Direction.BOTH
            )
            best_weight: dict[str, float] = {}
            for edge in neighborhood.edges:
                for endpoint in (edge.source_id, edge.target_id):
                    best_weight[endpoint] = max(best_weight.get(endpoint, 0.0), edge.weight)

            for entity_id, hops in neighborhood.depths.items():
                weight = best_weight.get(entity_id, 0.0)
                if hops == 0 or weight <= 0:
                    continue
                score = 1.0 / (1.0 + hops / weight)
                scores[entity_id] = max(scores.get(entity_id, 0.0), score)

        return [
            RawResult(entity_id=entity_id, score=score, source=self.strategy)
            for entity_id, score in scores.items()
        ]


class StructuralStrategy:
    """Direct containment, inheritance and import neighbors of the query's anchor entities."""

    strategy = SearchStrategy.STRUCTURAL

    def __init__(
        self,
        graph: GraphTraversal,
        entity_store: IEntityStore,
        relationship_types: list[str] | None = None,
    ) -> None:
        self.graph = graph
        self.entity_store = entity_store
        self.relationship_types = relationship_types or STRUCTURAL_RELATIONSHIPS

    def _anchors(self, parsed: ParsedQuery) -> list[Entity]:
        anchors = [
            entity
            for mention in parsed.entity_mentions
            if (entity := resolve_mention(self.entity_store, mention)) is not None
        ]
        if not anchors and parsed.keywords:
            anchors = self.entity_store.search(" ".join(parsed.keywords), limit=1)
        return anchors

    def run(self, parsed: ParsedQuery, options: SearchOptions) -> list[RawResult]:
        scores: dict[str, float] = {}
        for anchor in self._anchors(parsed):
            neighborhood = self.graph.get_neighborhood(
                anchor.id,
                max_depth=1,
                direction=Direction.BOTH,
                relationship_types=self.relationship_types,
            )
            for edge in neighborhood.edges:
                neighbor = edge.other_end(anchor.id)
                if neighbor != anchor.id:
                    scores[neighbor] = max(scores.get(neighbor, 0.0), edge.weight)

        return [
            RawResult(entity_id=entity_id, score=score, source=self.strategy)
            for entity_id, score in scores.items()
        ]
