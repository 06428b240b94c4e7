from collections.abc import Callable

from loguru import logger

from ctx_engine.core.models import (
    Direction,
    Edge,
    GraphStats,
    Neighborhood,
    PathInfo,
    PathResult,
)
from ctx_engine.core.ports import IEntityStore, IRelationshipStore


def _neighbor(edge: Edge, current: str, direction: Direction) -> str:
    if direction == Direction.OUT:
        return edge.target_id
    if direction == Direction.IN:
        return edge.source_id
    return edge.other_end(current)


def _check_depth(depth: int | None, name: str = "max_depth") -> None:
    if depth is not None and depth < 0:
        raise ValueError(f"{name} must be non-negative, got {depth}")


class _UnionFind:
    def __init__(self) -> None:
        self.parent: dict[str, str] = {}

    def find(self, item: str) -> str:
        self.parent.setdefault(item, item)
        root = item
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[item] != root:
            self.parent[item], item = root, self.parent[item]
        return root

    def union(self, a: str, b: str) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a != root_b:
            self.parent[root_b] = root_a

    def roots(self) -> set[str]:
        return {self.find(item) for item in list(self.parent)}


class GraphTraversal:
    """Read-only traversal and analysis over the relationship store.

    All traversals are iterative and level-by-level. Path searches carry the
    path itself in every frontier item, so an entity is never revisited
    within one path while separate paths may share entities.
    """

    def __init__(
        self,
        relationship_store: IRelationshipStore,
        entity_store: IEntityStore | None = None,
        max_path_depth: int = 5,
        shortest_path_depth: int = 10,
    ) -> None:
        self.relationships = relationship_store
        self.entities = entity_store
        self.max_path_depth = max_path_depth
        self.shortest_path_depth = shortest_path_depth

    def _is_known(self, entity_id: str) -> bool:
        if self.entities is not None and self.entities.get(entity_id) is not None:
            return True
        # Edges may point at ids that have no stored entity
        return bool(self.relationships.get_for_entity(entity_id, limit=1))

    def _adjacency(
        self,
        direction: Direction,
        relationship_types: list[str] | None = None,
        min_weight: float | None = None,
    ) -> Callable[[str], list[Edge]]:
        """Memoized edge lookup, private to one traversal call."""
        memo: dict[str, list[Edge]] = {}

        def edges_of(entity_id: str) -> list[Edge]:
            if entity_id not in memo:
                memo[entity_id] = self.relationships.get_for_entity(
                    entity_id,
                    direction=direction,
                    relationship_types=relationship_types,
                    min_weight=min_weight,
                )
            return memo[entity_id]

        return edges_of

    def get_neighborhood(
        self,
        entity_id: str,
        max_depth: int = 2,
        direction: Direction = Direction.BOTH,
        relationship_types: list[str] | None = None,
        min_weight: float | None = None,
        hydrate: bool = False,
    ) -> Neighborhood:
        """Entities and edges within `max_depth` hops of `entity_id`."""
        _check_depth(max_depth)
        if not self._is_known(entity_id):
            return Neighborhood()

        edges_of = self._adjacency(direction, relationship_types, min_weight)
        depths: dict[str, int] = {entity_id: 0}
        edges: dict[str, Edge] = {}
        frontier = [entity_id]

        for depth in range(max_depth):
            next_frontier: list[str] = []
            for current in frontier:
                for edge in edges_of(current):
                    edges.setdefault(edge.id, edge)
                    neighbor = _neighbor(edge, current, direction)
                    if neighbor not in depths:
                        depths[neighbor] = depth + 1
                        next_frontier.append(neighbor)
            if not next_frontier:
                break
            frontier = next_frontier

        neighborhood = Neighborhood(
            entity_ids=list(depths), edges=list(edges.values()), depths=depths
        )
        if hydrate and self.entities is not None:
            neighborhood.entities = [
                entity for eid in depths if (entity := self.entities.get(eid)) is not None
            ]
        return neighborhood

    def find_paths(
        self,
        from_id: str,
        to_id: str,
        max_depth: int | None = None,
        limit: int | None = None,
        relationship_types: list[str] | None = None,
    ) -> PathResult:
        """Every simple outgoing path from `from_id` to `to_id`, shortest first."""
        max_depth = self.max_path_depth if max_depth is None else max_depth
        _check_depth(max_depth)
        if not self._is_known(from_id):
            return PathResult()
        if from_id == to_id:
            return PathResult(paths=[PathInfo(nodes=[from_id])])

        edges_of = self._adjacency(Direction.OUT, relationship_types)
        paths: list[PathInfo] = []
        frontier: list[tuple[tuple[str, ...], tuple[Edge, ...], float]] = [((from_id,), (), 0.0)]

        for _ in range(max_depth):
            next_frontier: list[tuple[tuple[str, ...], tuple[Edge, ...], float]] = []
            for nodes, path_edges, weight in frontier:
                for edge in edges_of(nodes[-1]):
                    if edge.target_id in nodes:
                        continue
                    extended = (nodes + (edge.target_id,), path_edges + (edge,), weight + edge.weight)
                    if edge.target_id == to_id:
                        paths.append(
                            PathInfo(
                                nodes=list(extended[0]),
                                edges=list(extended[1]),
                                length=len(extended[1]),
                                total_weight=extended[2],
                            )
                        )
                        if limit is not None and len(paths) >= limit:
                            return PathResult(paths=paths)
                    else:
                        next_frontier.append(extended)
            if not next_frontier:
                break
            frontier = next_frontier

        logger.debug("find_paths {} -> {}: {} paths", from_id, to_id, len(paths))
        return PathResult(paths=paths)

    def find_shortest_path(
        self,
        from_id: str,
        to_id: str,
        max_depth: int | None = None,
        relationship_types: list[str] | None = None,
    ) -> PathInfo | None:
        """Minimum-hop outgoing path, or None when none exists within the depth ceiling."""
        max_depth = self.shortest_path_depth if max_depth is None else max_depth
        _check_depth(max_depth)
        if not self._is_known(from_id):
            return None
        if from_id == to_id:
            return PathInfo(nodes=[from_id])

        edges_of = self._adjacency(Direction.OUT, relationship_types)
        parents: dict[str, Edge | None] = {from_id: None}
        frontier = [from_id]

        for _ in range(max_depth):
            next_frontier: list[str] = []
            for current in frontier:
                for edge in edges_of(current):
                    if edge.target_id in parents:
                        continue
                    parents[edge.target_id] = edge
                    if edge.target_id == to_id:
                        return self._unwind(parents, to_id)
                    next_frontier.append(edge.target_id)
            if not next_frontier:
                break
            frontier = next_frontier
        return None

    @staticmethod
    def _unwind(parents: dict[str, Edge | None], end: str) -> PathInfo:
        edges: list[Edge] = []
        node = end
        while (edge := parents[node]) is not None:
            edges.append(edge)
            node = edge.source_id
        edges.reverse()
        nodes = [edges[0].source_id, *(e.target_id for e in edges)]
        return PathInfo(
            nodes=nodes,
            edges=edges,
            length=len(edges),
            total_weight=sum(e.weight for e in edges),
        )

    def get_reachable(
        self,
        entity_id: str,
        max_depth: int | None = None,
        direction: Direction = Direction.OUT,
        relationship_types: list[str] | None = None,
    ) -> list[str]:
        """Ids reachable from `entity_id` (excluded) in discovery order; unbounded when max_depth is None."""
        _check_depth(max_depth)
        edges_of = self._adjacency(direction, relationship_types)
        visited: dict[str, None] = {entity_id: None}
        frontier = [entity_id]
        depth = 0

        while frontier and (max_depth is None or depth < max_depth):
            next_frontier: list[str] = []
            for current in frontier:
                for edge in edges_of(current):
                    neighbor = _neighbor(edge, current, direction)
                    if neighbor not in visited:
                        visited[neighbor] = None
                        next_frontier.append(neighbor)
            frontier = next_frontier
            depth += 1

        return [eid for eid in visited if eid != entity_id]

    def get_dependents(self, entity_id: str, depth: int = 1) -> list[str]:
        """Entities pointing at `entity_id`."""
        return self.get_reachable(entity_id, max_depth=depth, direction=Direction.IN)

    def get_dependencies(self, entity_id: str, depth: int = 1) -> list[str]:
        """Entities `entity_id` points at."""
        return self.get_reachable(entity_id, max_depth=depth, direction=Direction.OUT)

    def get_degree(self, entity_id: str, direction: Direction = Direction.BOTH) -> int:
        return len(self.relationships.get_for_entity(entity_id, direction=direction))

    def find_common_neighbors(self, entity_a: str, entity_b: str) -> list[str]:
        neighbors_a = set(self.get_reachable(entity_a, max_depth=1, direction=Direction.BOTH))
        neighbors_b = self.get_reachable(entity_b, max_depth=1, direction=Direction.BOTH)
        return [eid for eid in neighbors_b if eid in neighbors_a and eid not in (entity_a, entity_b)]

    def are_connected(self, entity_a: str, entity_b: str, max_depth: int = 5) -> bool:
        """True when a directed path exists in either direction within `max_depth` hops."""
        if self.find_shortest_path(entity_a, entity_b, max_depth=max_depth) is not None:
            return True
        return self.find_shortest_path(entity_b, entity_a, max_depth=max_depth) is not None

    def get_graph_stats(self, top_n: int = 10) -> GraphStats:
        """Counts, average degree and weakly-connected component count."""
        components = _UnionFind()
        for edge in self.relationships.iter_edges():
            components.union(edge.source_id, edge.target_id)

        endpoints = len(components.parent)
        component_count = len(components.roots())
        if self.entities is not None:
            entity_count = self.entities.count()
            # Entities without any edge are components of their own
            component_count += max(0, entity_count - endpoints)
        else:
            entity_count = endpoints

        return GraphStats(
            entity_count=entity_count,
            relationship_count=self.relationships.count(),
            average_degree=self.relationships.average_degree(entity_count),
            component_count=component_count,
            relationships_by_type=self.relationships.count_by_type(),
            top_connected=self.relationships.most_connected(top_n),
        )
