"""Reciprocal Rank Fusion and the weight/strategy heuristics that feed it."""

import re
from collections.abc import Iterable

from ctx_engine.core.models import ParsedQuery, RawResult, SearchStrategy, StrategyWeights

RRF_K = 60

_QUESTION_RE = re.compile(r"^(how|what|why|where|when|which)", re.IGNORECASE)
_SOURCE_FILE_RE = re.compile(r"\.(ts|js|py|go|rs|java)$")


def rrf_contribution(weight: float, rank: int, k: int = RRF_K) -> float:
    """Contribution of a result at zero-based `rank` within its strategy."""
    return weight / (k + rank + 1)


def deduplicate(results: Iterable[RawResult]) -> list[RawResult]:
    """Keeps one result per entity id (the highest score), sorted by score descending."""
    best: dict[str, RawResult] = {}
    for result in results:
        existing = best.get(result.entity_id)
        if existing is None or result.score > existing.score:
            best[result.entity_id] = result
    return sorted(best.values(), key=lambda r: r.score, reverse=True)


def reciprocal_rank_fusion(
    results: Iterable[RawResult],
    weights: StrategyWeights | None = None,
    k: int = RRF_K,
) -> list[RawResult]:
    """Fuses per-strategy ranked lists into a single ranking.

    Only the rank within each strategy matters; local scores are used solely
    to order a strategy's own list, since they are not comparable across
    strategies. An entity keeps the source of the first strategy that
    produced it.
    """
    weights = weights or StrategyWeights()

    by_source: dict[SearchStrategy, list[RawResult]] = {}
    for result in results:
        by_source.setdefault(result.source, []).append(result)

    fused: dict[str, RawResult] = {}
    for source, source_results in by_source.items():
        weight = weights.for_strategy(source)
        ranked = sorted(source_results, key=lambda r: r.score, reverse=True)
        for rank, result in enumerate(ranked):
            contribution = rrf_contribution(weight, rank, k)
            existing = fused.get(result.entity_id)
            if existing is None:
                fused[result.entity_id] = RawResult(
                    entity_id=result.entity_id, score=contribution, source=source
                )
            else:
                existing.score += contribution

    return sorted(fused.values(), key=lambda r: r.score, reverse=True)


def adapt_weights(parsed: ParsedQuery, base: StrategyWeights) -> StrategyWeights:
    """Tunes strategy weights from the shape of the query."""
    weights = base.model_copy()
    has_mentions = bool(parsed.entity_mentions)

    if has_mentions:
        weights.keyword *= 1.5
        weights.graph *= 1.3

    # Short name lookup
    if has_mentions and len(parsed.keywords) <= 2:
        weights.keyword *= 2.0
        weights.semantic *= 0.5

    if _QUESTION_RE.match(parsed.normalized_query):
        weights.semantic *= 1.5
        weights.keyword *= 0.7

    if _SOURCE_FILE_RE.search(parsed.normalized_query):
        weights.keyword = 3.0
        weights.semantic = 0.2

    return weights


def select_strategies(
    parsed: ParsedQuery, requested: list[SearchStrategy], graph_available: bool
) -> list[SearchStrategy]:
    """Requested strategies (deduplicated), plus graph when the query names entities."""
    strategies = list(dict.fromkeys(requested))
    if parsed.entity_mentions and graph_available and SearchStrategy.GRAPH not in strategies:
        strategies.append(SearchStrategy.GRAPH)
    return strategies
