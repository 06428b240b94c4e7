import asyncio

from loguru import logger

from ctx_engine.core.models import (
    Entity,
    MatchInfo,
    ParsedQuery,
    RawResult,
    SearchOptions,
    SearchResult,
    SearchStrategy,
)
from ctx_engine.core.ports import IEntityStore, IReranker, ISimilarityIndex, IStrategyHandler
from ctx_engine.services.fusion import (
    adapt_weights,
    deduplicate,
    reciprocal_rank_fusion,
    select_strategies,
)
from ctx_engine.services.graph import GraphTraversal
from ctx_engine.services.query_parser import QueryParser
from ctx_engine.services.strategies import (
    GraphStrategy,
    KeywordStrategy,
    SemanticStrategy,
    StructuralStrategy,
)


MATCH_FIELDS = ("name", "qualified_name", "summary", "content")
SNIPPET_RADIUS = 60


def find_match(entity: Entity, terms: list[str]) -> MatchInfo | None:
    """Locates the first field containing any of `terms` and cuts a snippet around the earliest hit."""
    lowered = {term.lower() for term in terms if term}
    for field in MATCH_FIELDS:
        text = getattr(entity, field)
        if not text:
            continue
        haystack = text.lower()
        hits = [(start, start + len(term)) for term in lowered if (start := haystack.find(term)) >= 0]
        if not hits:
            continue

        first = min(start for start, _ in hits)
        low = max(0, first - SNIPPET_RADIUS)
        high = min(len(text), first + SNIPPET_RADIUS)
        highlights = sorted((start - low, min(end, high) - low) for start, end in hits if start < high)
        return MatchInfo(snippet=text[low:high], field=field, highlights=highlights)
    return None


class MultiStrategySearch:
    """Runs the enabled strategies concurrently and fuses their rankings.

    Handlers are registered per strategy tag. Keyword search is always
    available; semantic search needs a similarity index; graph and structural
    search need a graph. Additional handlers (e.g. for ``hybrid``) can be
    passed in or registered later and replace any built-in for their tag.
    """

    def __init__(
        self,
        entity_store: IEntityStore,
        similarity_index: ISimilarityIndex | None = None,
        graph: GraphTraversal | None = None,
        parser: QueryParser | None = None,
        reranker: IReranker | None = None,
        handlers: list[IStrategyHandler] | None = None,
    ) -> None:
        self.entity_store = entity_store
        self.parser = parser or QueryParser()
        self.reranker = reranker
        self._handlers: dict[SearchStrategy, IStrategyHandler] = {}

        self.register_handler(KeywordStrategy(entity_store))
        if similarity_index is not None:
            self.register_handler(SemanticStrategy(similarity_index))
        if graph is not None:
            self.register_handler(GraphStrategy(graph, entity_store))
            self.register_handler(StructuralStrategy(graph, entity_store))
        for handler in handlers or []:
            self.register_handler(handler)

    def register_handler(self, handler: IStrategyHandler) -> None:
        self._handlers[handler.strategy] = handler

    @property
    def available_strategies(self) -> list[SearchStrategy]:
        return list(self._handlers)

    async def search(self, query: str, options: SearchOptions | None = None) -> list[SearchResult]:
        """Parses the query, runs every enabled strategy and returns fused, hydrated results."""
        options = options or SearchOptions()
        parsed = self.parser.parse(query)
        logger.info("Searching: '{}' (intent: {})", parsed.normalized_query, parsed.intent)

        strategies = select_strategies(
            parsed, options.strategies, graph_available=SearchStrategy.GRAPH in self._handlers
        )
        return await self._execute(parsed, options, strategies)

    async def search_with_strategy(
        self, query: str, strategy: SearchStrategy, options: SearchOptions | None = None
    ) -> list[SearchResult]:
        """Runs exactly one strategy; graph search is not auto-enabled."""
        options = options or SearchOptions()
        parsed = self.parser.parse(query)
        return await self._execute(parsed, options, [strategy])

    async def _execute(
        self, parsed: ParsedQuery, options: SearchOptions, strategies: list[SearchStrategy]
    ) -> list[SearchResult]:
        if not parsed.normalized_query:
            return []

        weights = adapt_weights(parsed, options.weights)

        handlers: list[IStrategyHandler] = []
        for strategy in strategies:
            handler = self._handlers.get(strategy)
            if handler is None:
                logger.warning("No handler registered for strategy '{}', skipping", strategy)
                continue
            handlers.append(handler)

        outcomes = await asyncio.gather(
            *(asyncio.to_thread(handler.run, parsed, options) for handler in handlers),
            return_exceptions=True,
        )

        raw: list[RawResult] = []
        for handler, outcome in zip(handlers, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Strategy '{}' failed: {}", handler.strategy, outcome)
                continue
            logger.debug("Strategy '{}' returned {} results", handler.strategy, len(outcome))
            raw.extend(deduplicate(outcome))

        fused = deduplicate(reciprocal_rank_fusion(raw, weights))
        fused = [r for r in fused if r.score >= options.min_score]

        terms = [*parsed.keywords, *(m.text for m in parsed.entity_mentions)]
        results = self._hydrate(fused, options.entity_types, options.limit, terms)

        if self.reranker is not None and len(results) > 1:
            results = await asyncio.to_thread(self.reranker.rerank, parsed.original, results)

        logger.info("Search returned {} results", len(results))
        return results

    def _hydrate(
        self, fused: list[RawResult], entity_types: list[str], limit: int, terms: list[str]
    ) -> list[SearchResult]:
        """Loads entities in rank order, applying the type filter, until `limit` are kept."""
        results: list[SearchResult] = []
        for raw in fused:
            if len(results) >= limit:
                break
            entity = self.entity_store.get(raw.entity_id)
            if entity is None:
                logger.debug("Dropping result for missing entity '{}'", raw.entity_id)
                continue
            if entity_types and entity.type not in entity_types:
                continue
            results.append(
                SearchResult(
                    entity=entity,
                    score=raw.score,
                    source=raw.source,
                    match=find_match(entity, terms),
                )
            )
        return results
