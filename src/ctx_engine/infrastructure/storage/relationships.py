import uuid
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Engine, delete, func, insert, literal_column, or_, select, union

from ctx_engine.core.models import Direction, Edge, EdgeInput
from ctx_engine.infrastructure.storage.database import relationships_table

_t = relationships_table
# SQLite rowid keeps insertion order among equal weights
_rowid = literal_column("rowid")


class SqlRelationshipStore:
    """SQLite-backed edges table implementing IRelationshipStore.

    Duplicate (source, target, type) triples are allowed; callers that want
    to avoid them check `exists` first.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def _row_values(self, edge: EdgeInput) -> dict[str, Any]:
        if edge.weight < 0:
            raise ValueError(f"Relationship weight must be non-negative, got {edge.weight}")
        return {
            "id": uuid.uuid4().hex,
            "source_id": edge.source_id,
            "target_id": edge.target_id,
            "relationship_type": edge.relationship_type,
            "weight": edge.weight,
            "metadata": edge.metadata,
            "created_at": datetime.now(timezone.utc),
        }

    @staticmethod
    def _to_edge(row: Any) -> Edge:
        return Edge(
            id=row.id,
            source_id=row.source_id,
            target_id=row.target_id,
            relationship_type=row.relationship_type,
            weight=row.weight,
            metadata=row.metadata or {},
            created_at=row.created_at,
        )

    def create(self, edge: EdgeInput) -> Edge:
        values = self._row_values(edge)
        with self.engine.begin() as conn:
            conn.execute(insert(_t).values(**values))
        return Edge(**values)

    def create_many(self, edges: list[EdgeInput]) -> list[Edge]:
        """Inserts all edges in one transaction."""
        if not edges:
            return []
        rows = [self._row_values(edge) for edge in edges]
        with self.engine.begin() as conn:
            conn.execute(insert(_t), rows)
        return [Edge(**row) for row in rows]

    def get(self, edge_id: str) -> Edge | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_t).where(_t.c.id == edge_id)).first()
        return self._to_edge(row) if row else None

    def get_for_entity(
        self,
        entity_id: str,
        direction: Direction = Direction.BOTH,
        relationship_types: list[str] | None = None,
        min_weight: float | None = None,
        limit: int | None = None,
    ) -> list[Edge]:
        if direction == Direction.OUT:
            query = select(_t).where(_t.c.source_id == entity_id)
        elif direction == Direction.IN:
            query = select(_t).where(_t.c.target_id == entity_id)
        else:
            query = select(_t).where(or_(_t.c.source_id == entity_id, _t.c.target_id == entity_id))

        if relationship_types:
            query = query.where(_t.c.relationship_type.in_(relationship_types))
        if min_weight is not None:
            query = query.where(_t.c.weight >= min_weight)

        query = query.order_by(_t.c.weight.desc(), _rowid)
        if limit:
            query = query.limit(limit)

        with self.engine.connect() as conn:
            return [self._to_edge(row) for row in conn.execute(query)]

    def get_by_type(self, relationship_type: str, limit: int | None = None) -> list[Edge]:
        query = (
            select(_t)
            .where(_t.c.relationship_type == relationship_type)
            .order_by(_t.c.weight.desc(), _rowid)
        )
        if limit:
            query = query.limit(limit)
        with self.engine.connect() as conn:
            return [self._to_edge(row) for row in conn.execute(query)]

    def exists(self, source_id: str, target_id: str, relationship_type: str | None = None) -> bool:
        query = (
            select(func.count())
            .select_from(_t)
            .where(_t.c.source_id == source_id, _t.c.target_id == target_id)
        )
        if relationship_type:
            query = query.where(_t.c.relationship_type == relationship_type)
        with self.engine.connect() as conn:
            return (conn.execute(query).scalar() or 0) > 0

    def delete(self, edge_id: str) -> bool:
        with self.engine.begin() as conn:
            return conn.execute(delete(_t).where(_t.c.id == edge_id)).rowcount > 0

    def delete_for_entity(self, entity_id: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(_t).where(or_(_t.c.source_id == entity_id, _t.c.target_id == entity_id))
            )
            return result.rowcount

    def delete_between(self, source_id: str, target_id: str) -> int:
        with self.engine.begin() as conn:
            result = conn.execute(
                delete(_t).where(_t.c.source_id == source_id, _t.c.target_id == target_id)
            )
            return result.rowcount

    def clear(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(_t))

    def count(self, relationship_type: str | None = None) -> int:
        query = select(func.count()).select_from(_t)
        if relationship_type:
            query = query.where(_t.c.relationship_type == relationship_type)
        with self.engine.connect() as conn:
            return conn.execute(query).scalar() or 0

    def count_by_type(self) -> dict[str, int]:
        query = select(_t.c.relationship_type, func.count()).group_by(_t.c.relationship_type)
        with self.engine.connect() as conn:
            return {rel_type: count for rel_type, count in conn.execute(query)}

    def entity_ids(self) -> set[str]:
        """Every id that appears as either endpoint of an edge."""
        query = union(select(_t.c.source_id), select(_t.c.target_id))
        with self.engine.connect() as conn:
            return {row[0] for row in conn.execute(query)}

    def average_degree(self, entity_count: int | None = None) -> float:
        """Mean degree over `entity_count` entities, or over the edge endpoints when omitted."""
        total = self.count()
        if total == 0:
            return 0.0
        if entity_count is None:
            entity_count = len(self.entity_ids())
        # Each edge adds one to the degree of both of its endpoints
        return (total * 2) / entity_count if entity_count else 0.0

    def most_connected(self, limit: int = 10) -> list[tuple[str, int]]:
        degrees: dict[str, int] = {}
        with self.engine.connect() as conn:
            for column in (_t.c.source_id, _t.c.target_id):
                for entity_id, count in conn.execute(select(column, func.count()).group_by(column)):
                    degrees[entity_id] = degrees.get(entity_id, 0) + count
        ranked = sorted(degrees.items(), key=lambda item: (-item[1], item[0]))
        return ranked[:limit]

    def iter_edges(self) -> Iterator[Edge]:
        with self.engine.connect() as conn:
            for row in conn.execute(select(_t).order_by(_rowid)):
                yield self._to_edge(row)
