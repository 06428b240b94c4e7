from datetime import datetime, timezone
from enum import StrEnum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field


class Intent(StrEnum):
    """Primary intent detected in a query."""

    FIND = "find"
    EXPLAIN = "explain"
    LIST = "list"
    COMPARE = "compare"
    HOW = "how"
    WHY = "why"
    DEBUG = "debug"
    GENERAL = "general"


class MentionKind(StrEnum):
    FILE = "file"
    CLASS = "class"
    FUNCTION = "function"
    VARIABLE = "variable"
    CODE = "code"


class EntityMention(BaseModel):
    """A code-like span found in the query text. `end` is exclusive."""

    text: str
    kind: MentionKind
    start: int
    end: int

    def overlaps(self, start: int, end: int) -> bool:
        return start < self.end and self.start < end


class ParsedQuery(BaseModel):
    """Structured view of a natural-language query."""

    original: str
    intent: Intent = Intent.GENERAL
    intent_confidence: float = Field(0.3, ge=0.0, le=1.0)
    keywords: list[str] = []
    entity_mentions: list[EntityMention] = []
    expanded_terms: list[str] = []
    normalized_query: str = ""


class SearchStrategy(StrEnum):
    KEYWORD = "keyword"
    SEMANTIC = "semantic"
    GRAPH = "graph"
    STRUCTURAL = "structural"
    HYBRID = "hybrid"


class Entity(BaseModel):
    """An addressable knowledge-base item (function, class, file, document section...)."""

    id: str
    name: str
    type: str
    qualified_name: str | None = None
    summary: str | None = None
    content: str | None = None
    file_path: str | None = None
    start_line: int | None = None
    end_line: int | None = None
    metadata: dict[str, Any] = {}


class RawResult(BaseModel):
    """A single strategy hit before fusion; `score` is only comparable within its strategy."""

    entity_id: str
    score: float
    source: SearchStrategy


class MatchInfo(BaseModel):
    snippet: str | None = None
    field: str | None = None
    highlights: list[tuple[int, int]] = []


class SearchResult(BaseModel):
    """A hydrated entity with its fused relevance score."""

    entity: Entity
    score: float
    source: SearchStrategy
    match: MatchInfo | None = None


class StrategyWeights(BaseModel):
    """Per-strategy multipliers applied during Reciprocal Rank Fusion."""

    keyword: float = 0.6
    semantic: float = 1.0
    graph: float = 0.8
    structural: float = 0.7
    hybrid: float = 1.0

    def for_strategy(self, strategy: SearchStrategy) -> float:
        return float(getattr(self, strategy.value))


class SearchOptions(BaseModel):
    strategies: list[SearchStrategy] = [SearchStrategy.KEYWORD, SearchStrategy.SEMANTIC]
    limit: int = Field(10, ge=1)
    entity_types: list[str] = []
    weights: StrategyWeights = StrategyWeights()
    min_score: float = 0.0
    graph_depth: int = Field(2, ge=0)


class Direction(StrEnum):
    IN = "in"
    OUT = "out"
    BOTH = "both"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Edge(BaseModel):
    """A directed, typed, weighted relationship between two entity ids."""

    id: str
    source_id: str
    target_id: str
    relationship_type: str
    weight: float = 1.0
    metadata: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=_utcnow)

    def other_end(self, entity_id: str) -> str:
        return self.target_id if self.source_id == entity_id else self.source_id


class EdgeInput(BaseModel):
    """Payload for creating an edge; the store assigns the id."""

    source_id: str
    target_id: str
    relationship_type: str
    weight: float = 1.0
    metadata: dict[str, Any] = {}


class Neighborhood(BaseModel):
    """Entities and edges reachable from a start entity within a bounded depth."""

    entity_ids: list[str] = []
    edges: list[Edge] = []
    depths: dict[str, int] = {}
    entities: list[Entity] = []

    @property
    def is_empty(self) -> bool:
        return not self.entity_ids


class PathInfo(BaseModel):
    nodes: list[str]
    edges: list[Edge] = []
    length: int = 0
    total_weight: float = 0.0


class PathResult(BaseModel):
    paths: list[PathInfo] = []

    @property
    def found(self) -> bool:
        return bool(self.paths)


class GraphStats(BaseModel):
    entity_count: int = 0
    relationship_count: int = 0
    average_degree: float = 0.0
    component_count: int = 0
    relationships_by_type: dict[str, int] = {}
    top_connected: list[tuple[str, int]] = []


class ContextFormat(StrEnum):
    MARKDOWN = "markdown"
    XML = "xml"
    PLAIN = "plain"


class ContextSource(BaseModel):
    entity_id: str
    name: str
    type: str
    file_path: str | None = None
    line: int | None = None
    relevance: float


class AssemblyOptions(BaseModel):
    """Knobs for ContextAssembler.assemble."""

    max_tokens: int = Field(4000, ge=1)
    format: ContextFormat = ContextFormat.MARKDOWN
    include_sources: bool = True
    include_code_content: bool = True
    group_by_type: bool = True
    # None selects the per-entity-type budget
    max_content_length: int | None = None
    prefix: str = ""
    suffix: str = ""
    read_from_source: bool = False
    project_root: Path = Field(default_factory=Path.cwd)
    context_lines: int = Field(0, ge=0)
    include_imports: bool = False
    min_relevance: float = 0.0


class AssembledContext(BaseModel):
    """Formatted, token-budgeted context ready for an LLM prompt."""

    context: str = ""
    sources: list[ContextSource] = []
    token_count: int = 0
    truncated: bool = False
    summary: str | None = None


class KnowledgeExport(BaseModel):
    """On-disk shape of an entity/relationship export (JSON or YAML)."""

    entities: list[Entity] = []
    relationships: list[EdgeInput] = []


class IngestionStats(BaseModel):
    files: int = 0
    entities: int = 0
    relationships: int = 0
    skipped_relationships: int = 0


class RetrievalResult(BaseModel):
    """Search results together with the context assembled from them."""

    query: str
    results: list[SearchResult] = []
    context: AssembledContext = AssembledContext()
