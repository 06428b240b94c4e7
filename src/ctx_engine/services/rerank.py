import re

from ctx_engine.core.models import SearchResult

_TERM_RE = re.compile(r"[a-z0-9_]+")


def _terms(text: str) -> set[str]:
    return {t for t in _TERM_RE.findall(text.lower()) if len(t) >= 2}


class HeuristicReranker:
    """Rescores fused results by how directly the entity names the query terms.

    The fused score is multiplied by ``1 + boost`` where the boost rewards an
    exact name match and query terms found in the name or summary. Results
    below `min_score` after rescoring are dropped; `top_k` caps the output.
    """

    def __init__(
        self,
        name_weight: float = 0.5,
        summary_weight: float = 0.25,
        exact_bonus: float = 1.0,
        min_score: float = 0.0,
        top_k: int | None = None,
    ) -> None:
        self.name_weight = name_weight
        self.summary_weight = summary_weight
        self.exact_bonus = exact_bonus
        self.min_score = min_score
        self.top_k = top_k

    def _boost(self, query: str, query_terms: set[str], result: SearchResult) -> float:
        entity = result.entity
        if not query_terms:
            return 0.0

        boost = 0.0
        if entity.name.lower() in query.lower():
            boost += self.exact_bonus

        name_terms = _terms(" ".join(filter(None, [entity.name, entity.qualified_name])))
        boost += self.name_weight * len(query_terms & name_terms) / len(query_terms)
        if entity.summary:
            summary_terms = _terms(entity.summary)
            boost += self.summary_weight * len(query_terms & summary_terms) / len(query_terms)
        return boost

    def rerank(self, query: str, results: list[SearchResult]) -> list[SearchResult]:
        query_terms = _terms(query)
        rescored = [
            result.model_copy(
                update={"score": result.score * (1.0 + self._boost(query, query_terms, result))}
            )
            for result in results
        ]
        # sorted() is stable, so ties keep the fused order
        rescored = sorted(rescored, key=lambda r: r.score, reverse=True)
        rescored = [r for r in rescored if r.score >= self.min_score]
        return rescored[: self.top_k] if self.top_k is not None else rescored
