import json
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import yaml
from loguru import logger
from pydantic import ValidationError

from ctx_engine.core.models import IngestionStats, KnowledgeExport
from ctx_engine.infrastructure.embeddings.similarity import NumpySimilarityIndex
from ctx_engine.infrastructure.storage.entities import SqlEntityStore
from ctx_engine.infrastructure.storage.relationships import SqlRelationshipStore

SUPPORTED_EXTENSIONS = (".json", ".yaml", ".yml")


def load_export(path: Path) -> KnowledgeExport:
    """Parses one export file; raises ValueError when it is malformed."""
    with open(path, encoding="utf-8") as f:
        if path.suffix == ".json":
            data: Any = json.load(f)
        else:
            data = yaml.safe_load(f)

    try:
        return KnowledgeExport.model_validate(data or {})
    except ValidationError as e:
        raise ValueError(f"Invalid export file '{path}': {e}") from e


class IngestionService:
    """Loads entity/relationship exports into the stores and the similarity index."""

    def __init__(
        self,
        entity_store: SqlEntityStore,
        relationship_store: SqlRelationshipStore,
        similarity_index: NumpySimilarityIndex | None = None,
    ) -> None:
        self.entity_store = entity_store
        self.relationship_store = relationship_store
        self.similarity_index = similarity_index

    def _files(self, target: Path) -> Iterator[Path]:
        if target.is_dir():
            for ext in SUPPORTED_EXTENSIONS:
                yield from sorted(target.rglob(f"*{ext}"))
        elif target.is_file():
            yield target
        else:
            raise FileNotFoundError(f"No such file or directory: '{target}'")

    def ingest_path(self, path: str | Path, rebuild: bool = False) -> IngestionStats:
        """Ingests a single export file or every export under a directory."""
        target = Path(path)
        if rebuild:
            logger.warning("Rebuilding stores (clearing existing data)...")
            self.entity_store.clear()
            self.relationship_store.clear()
            if self.similarity_index is not None:
                self.similarity_index.clear()

        stats = IngestionStats()
        for file_path in self._files(target):
            export = load_export(file_path)
            self._ingest_export(export, stats)
            stats.files += 1
            logger.info(
                "Ingested {} ({} entities, {} relationships)",
                file_path,
                len(export.entities),
                len(export.relationships),
            )

        logger.info(
            "Ingestion complete: {} files, {} entities, {} relationships ({} duplicates skipped)",
            stats.files,
            stats.entities,
            stats.relationships,
            stats.skipped_relationships,
        )
        return stats

    def _ingest_export(self, export: KnowledgeExport, stats: IngestionStats) -> None:
        stats.entities += self.entity_store.upsert_many(export.entities)
        if self.similarity_index is not None:
            self.similarity_index.add_entities(export.entities)

        new_edges = []
        seen: set[tuple[str, str, str]] = set()
        for edge in export.relationships:
            key = (edge.source_id, edge.target_id, edge.relationship_type)
            if key in seen or self.relationship_store.exists(*key):
                stats.skipped_relationships += 1
                continue
            seen.add(key)
            new_edges.append(edge)
        stats.relationships += len(self.relationship_store.create_many(new_edges))
