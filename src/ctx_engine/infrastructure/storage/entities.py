import re
from typing import Any

from sqlalchemy import Engine, delete, func, or_, select
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from ctx_engine.core.models import Entity
from ctx_engine.infrastructure.storage.database import entities_table

_t = entities_table

# (column, weight) pairs used to rank term matches
_FIELD_WEIGHTS: tuple[tuple[str, float], ...] = (
    ("name", 3.0),
    ("qualified_name", 2.0),
    ("summary", 1.0),
    ("content", 0.5),
)


def _terms(text: str) -> list[str]:
    return list(dict.fromkeys(t for t in re.split(r"[^\w./-]+", text.lower()) if len(t) >= 2))


class SqlEntityStore:
    """SQLite-backed entity store implementing IEntityStore.

    Search is a LIKE prefilter followed by weighted term scoring, which is
    enough to drive the keyword strategy without an FTS extension.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    @staticmethod
    def _to_entity(row: Any) -> Entity:
        return Entity(
            id=row.id,
            name=row.name,
            type=row.type,
            qualified_name=row.qualified_name,
            summary=row.summary,
            content=row.content,
            file_path=row.file_path,
            start_line=row.start_line,
            end_line=row.end_line,
            metadata=row.metadata or {},
        )

    def upsert(self, entity: Entity) -> None:
        values = entity.model_dump()
        stmt = sqlite_insert(_t).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[_t.c.id],
            set_={k: stmt.excluded[k] for k in values if k != "id"},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)

    def upsert_many(self, entities: list[Entity]) -> int:
        for entity in entities:
            self.upsert(entity)
        return len(entities)

    def get(self, entity_id: str) -> Entity | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_t).where(_t.c.id == entity_id)).first()
        return self._to_entity(row) if row else None

    def get_by_name(self, name: str, entity_type: str | None = None) -> Entity | None:
        query = select(_t).where(_t.c.name == name)
        if entity_type:
            query = query.where(_t.c.type == entity_type)
        with self.engine.connect() as conn:
            row = conn.execute(query.limit(1)).first()
        return self._to_entity(row) if row else None

    def get_by_qualified_name(self, qualified_name: str) -> Entity | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                select(_t).where(_t.c.qualified_name == qualified_name).limit(1)
            ).first()
        return self._to_entity(row) if row else None

    def search(self, text: str, entity_type: str | None = None, limit: int = 10) -> list[Entity]:
        """Returns entities matching any term, best first."""
        terms = _terms(text)
        if not terms or limit <= 0:
            return []

        clauses = []
        for term in terms:
            pattern = f"%{term}%"
            clauses.extend(
                func.lower(getattr(_t.c, field)).like(pattern) for field, _ in _FIELD_WEIGHTS
            )
        query = select(_t).where(or_(*clauses))
        if entity_type:
            query = query.where(_t.c.type == entity_type)

        with self.engine.connect() as conn:
            candidates = [self._to_entity(row) for row in conn.execute(query)]

        phrase = " ".join(terms)
        scored: list[tuple[float, int, Entity]] = []
        for position, entity in enumerate(candidates):
            score = 0.0
            if entity.name.lower() == phrase:
                score += 10.0
            for field, weight in _FIELD_WEIGHTS:
                value = (getattr(entity, field) or "").lower()
                score += weight * sum(1 for term in terms if term in value)
            scored.append((score, position, entity))

        scored.sort(key=lambda item: (-item[0], item[1]))
        return [entity for _, _, entity in scored[:limit]]

    def all(self, entity_type: str | None = None) -> list[Entity]:
        query = select(_t)
        if entity_type:
            query = query.where(_t.c.type == entity_type)
        with self.engine.connect() as conn:
            return [self._to_entity(row) for row in conn.execute(query)]

    def count(self) -> int:
        with self.engine.connect() as conn:
            return conn.execute(select(func.count()).select_from(_t)).scalar() or 0

    def clear(self) -> None:
        with self.engine.begin() as conn:
            conn.execute(delete(_t))
