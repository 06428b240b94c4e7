"""Integration tests for CLI commands against a temporary SQLite knowledge base."""

import json

import pytest
from typer.testing import CliRunner

from ctx_engine.cli import app
from ctx_engine.config import Settings, settings
from ctx_engine.logger import configure_logger

runner = CliRunner()

EXPORT = {
    "entities": [
        {
            "id": "c1",
            "name": "QueryParser",
            "type": "class",
            "summary": "Parses natural-language queries",
            "file_path": "src/parser.py",
            "start_line": 1,
        },
        {"id": "f1", "name": "parse", "type": "method", "summary": "Parses a query into intent and keywords"},
        {"id": "f2", "name": "normalize", "type": "function", "summary": "Normalizes whitespace"},
        {"id": "d1", "name": "Parser guide", "type": "document", "content": "How the QueryParser works"},
    ],
    "relationships": [
        {"source_id": "c1", "target_id": "f1", "relationship_type": "CONTAINS"},
        {"source_id": "f1", "target_id": "f2", "relationship_type": "CALLS"},
        {"source_id": "d1", "target_id": "c1", "relationship_type": "REFERENCES"},
    ],
}


@pytest.fixture
def workspace(tmp_path, monkeypatch):
    """A config file pointing at a fresh database, plus an export to ingest."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(f'system:\n  db_path: "{tmp_path / "kb.db"}"\n  log_level: "WARNING"\n')
    export_path = tmp_path / "kb.json"
    export_path.write_text(json.dumps(EXPORT))

    # The main callback exports the config path and mutates the global settings
    monkeypatch.setenv("CTX_CONFIG_FILE", str(config_path))
    snapshot = {field: getattr(settings, field) for field in Settings.model_fields}

    yield tmp_path

    for field, value in snapshot.items():
        setattr(settings, field, value)
    configure_logger()


def invoke(workspace, *args, **kwargs):
    return runner.invoke(app, ["-c", str(workspace / "config.yaml"), *args], **kwargs)


@pytest.fixture
def ingested(workspace):
    result = invoke(workspace, "ingest", str(workspace / "kb.json"))
    assert result.exit_code == 0, result.output
    return workspace


class TestIngest:
    def test_ingest_file(self, workspace):
        result = invoke(workspace, "ingest", str(workspace / "kb.json"))

        assert result.exit_code == 0
        assert "Ingested 4 entities and 3 relationships from 1 file(s)." in result.output

    def test_ingest_missing_path(self, workspace):
        result = invoke(workspace, "ingest", str(workspace / "missing.json"))
        assert result.exit_code == 1
        assert "Error:" in result.output

    def test_ingest_invalid_export(self, workspace):
        bad = workspace / "bad.json"
        bad.write_text(json.dumps({"entities": [{"id": "x"}]}))

        result = invoke(workspace, "ingest", str(bad))

        assert result.exit_code == 1
        assert "Invalid export file" in result.output

    def test_rebuild_requires_confirmation(self, ingested):
        result = invoke(ingested, "ingest", str(ingested / "kb.json"), "--rebuild", input="n\n")
        assert result.exit_code == 1
        assert "Aborted" in result.output

    def test_rebuild_with_force(self, ingested):
        result = invoke(ingested, "ingest", str(ingested / "kb.json"), "--rebuild", "--force")

        assert result.exit_code == 0
        # Nothing is skipped as a duplicate after a rebuild
        assert "3 relationships" in result.output


class TestQueries:
    def test_search(self, ingested):
        result = invoke(ingested, "search", "QueryParser")

        assert result.exit_code == 0
        assert "QueryParser (class) src/parser.py:1" in result.output

    def test_search_with_type_filter(self, ingested):
        result = invoke(ingested, "search", "parser", "--strategy", "keyword", "--type", "document")

        assert result.exit_code == 0
        assert "Parser guide (document)" in result.output
        assert "(class)" not in result.output

    def test_search_no_results(self, ingested):
        result = invoke(ingested, "search", "zzzz", "--strategy", "keyword")
        assert "No results found." in result.output

    def test_context(self, ingested):
        result = invoke(ingested, "context", "how does QueryParser work", "--max-tokens", "2000")

        assert result.exit_code == 0
        assert "### QueryParser" in result.output
        assert "tokens" in result.output

    def test_context_xml(self, ingested):
        result = invoke(ingested, "context", "QueryParser", "--format", "xml")
        assert '<entity name="QueryParser"' in result.output


class TestGraphCommands:
    def test_neighbors(self, ingested):
        result = invoke(ingested, "neighbors", "c1", "--depth", "1")

        assert result.exit_code == 0
        assert "0  c1" in result.output
        assert "1  d1" in result.output
        assert "1  f1" in result.output
        assert "f2" not in result.output

    def test_neighbors_unknown(self, ingested):
        result = invoke(ingested, "neighbors", "zzz")
        assert "No entity or relationships found for 'zzz'." in result.output

    def test_paths(self, ingested):
        result = invoke(ingested, "paths", "c1", "f2")
        assert "[2] c1 -> f1 -> f2" in result.output

    def test_no_path_against_edge_direction(self, ingested):
        result = invoke(ingested, "paths", "f2", "c1")
        assert "No path from 'f2' to 'c1'." in result.output

    def test_stats(self, ingested):
        result = invoke(ingested, "stats")

        assert result.exit_code == 0
        assert "Entities:       4" in result.output
        assert "Relationships:  3" in result.output
        assert "Components:     1" in result.output
        assert "CONTAINS: 1" in result.output


def test_version():
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert "ctx-engine version:" in result.output
