"""Unit tests for export loading and the IngestionService."""

import json

import pytest
import yaml

from ctx_engine.infrastructure.embeddings.hashing import HashingEmbedder
from ctx_engine.infrastructure.embeddings.similarity import NumpySimilarityIndex
from ctx_engine.services.ingestion import IngestionService, load_export

EXPORT = {
    "entities": [
        {"id": "c1", "name": "QueryParser", "type": "class", "file_path": "src/parser.py"},
        {"id": "f1", "name": "parse", "type": "method", "summary": "Parses a query"},
    ],
    "relationships": [
        {"source_id": "c1", "target_id": "f1", "relationship_type": "CONTAINS"},
        {"source_id": "f1", "target_id": "external", "relationship_type": "CALLS", "weight": 0.5},
    ],
}


@pytest.fixture
def index():
    return NumpySimilarityIndex(HashingEmbedder(dimension=32))


@pytest.fixture
def service(entity_store, relationship_store, index):
    return IngestionService(entity_store, relationship_store, index)


class TestLoadExport:
    def test_json(self, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(EXPORT))

        export = load_export(path)

        assert [e.id for e in export.entities] == ["c1", "f1"]
        assert export.relationships[1].weight == 0.5

    def test_yaml(self, tmp_path):
        path = tmp_path / "kb.yaml"
        path.write_text(yaml.safe_dump(EXPORT))
        assert len(load_export(path).relationships) == 2

    def test_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yml"
        path.write_text("")
        assert load_export(path).entities == []

    def test_invalid(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps({"entities": [{"id": "x"}]}))
        with pytest.raises(ValueError, match="Invalid export file"):
            load_export(path)


class TestIngestionService:
    def test_ingest_file(self, service, entity_store, relationship_store, index, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(EXPORT))

        stats = service.ingest_path(path)

        assert (stats.files, stats.entities, stats.relationships) == (1, 2, 2)
        assert entity_store.count() == 2
        assert relationship_store.count() == 2
        assert len(index) == 2

    def test_duplicate_relationships_skipped(self, service, relationship_store, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(EXPORT))

        service.ingest_path(path)
        stats = service.ingest_path(path)

        assert stats.skipped_relationships == 2
        assert stats.relationships == 0
        assert relationship_store.count() == 2

    def test_duplicate_relationships_within_one_file(self, service, relationship_store, tmp_path):
        repeated = dict(EXPORT, relationships=EXPORT["relationships"] + EXPORT["relationships"][:1])
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(repeated))

        stats = service.ingest_path(path)

        assert stats.relationships == 2
        assert stats.skipped_relationships == 1
        assert relationship_store.count() == 2

    def test_ingest_directory(self, service, entity_store, tmp_path):
        (tmp_path / "nested").mkdir()
        (tmp_path / "a.json").write_text(json.dumps(EXPORT))
        (tmp_path / "nested" / "b.yaml").write_text(
            yaml.safe_dump({"entities": [{"id": "d1", "name": "Guide", "type": "document"}]})
        )
        (tmp_path / "notes.txt").write_text("ignored")

        stats = service.ingest_path(tmp_path)

        assert stats.files == 2
        assert entity_store.count() == 3

    def test_rebuild_clears_stores(self, service, entity_store, relationship_store, index, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(EXPORT))
        service.ingest_path(path)

        small = tmp_path / "small.json"
        small.write_text(json.dumps({"entities": [EXPORT["entities"][0]]}))
        service.ingest_path(small, rebuild=True)

        assert entity_store.count() == 1
        assert relationship_store.count() == 0
        assert len(index) == 1

    def test_missing_path(self, service, tmp_path):
        with pytest.raises(FileNotFoundError):
            service.ingest_path(tmp_path / "nope.json")

    def test_without_index(self, entity_store, relationship_store, tmp_path):
        path = tmp_path / "kb.json"
        path.write_text(json.dumps(EXPORT))
        stats = IngestionService(entity_store, relationship_store).ingest_path(path)
        assert stats.entities == 2
