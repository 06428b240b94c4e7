"""Unit tests for the ContextAssembler."""

import pytest

from ctx_engine.core.models import (
    AssemblyOptions,
    ContextFormat,
    ContextSource,
    Entity,
    SearchResult,
    SearchStrategy,
)
from ctx_engine.services.context import SOURCES_RESERVE_TOKENS, ContextAssembler, categorize_type
from ctx_engine.services.extraction import estimate_tokens


def result(entity_id, score, entity_type="function", **kwargs):
    kwargs.setdefault("name", entity_id)
    entity = Entity(id=entity_id, type=entity_type, **kwargs)
    return SearchResult(entity=entity, score=score, source=SearchStrategy.KEYWORD)


@pytest.fixture
def assembler():
    return ContextAssembler(cache_size=4)


class TestGroupingAndFiltering:
    def test_empty_results(self, assembler):
        assembled = assembler.assemble([])
        assert assembled.context == ""
        assert assembled.sources == []
        assert assembled.token_count == 0
        assert not assembled.truncated

    def test_groups_in_fixed_order(self, assembler):
        results = [
            result("doc", 0.9, "document"),
            result("fn", 0.5, "function"),
            result("msg", 0.7, "message"),
            result("misc", 0.8, "widget"),
        ]
        context = assembler.assemble(results).context

        positions = [
            context.index("## Relevant Code"),
            context.index("## Related Documentation"),
            context.index("## Previous Conversations"),
            context.index("## Other Context"),
        ]
        assert positions == sorted(positions)

    def test_sorted_by_score_without_grouping(self, assembler):
        results = [result("low", 0.1), result("high", 0.9, "document"), result("mid", 0.5)]
        assembled = assembler.assemble(results, AssemblyOptions(group_by_type=False))

        assert [s.entity_id for s in assembled.sources] == ["high", "mid", "low"]
        assert "## Relevant Code" not in assembled.context

    def test_min_relevance(self, assembler):
        results = [result("keep", 0.5), result("drop", 0.05)]
        assembled = assembler.assemble(results, AssemblyOptions(min_relevance=0.1))
        assert [s.entity_id for s in assembled.sources] == ["keep"]

    def test_file_stub_skipped_when_represented(self, assembler):
        results = [
            result("file", 0.9, "file", file_path="src/a.py"),
            result("fn", 0.5, "function", file_path="src/a.py"),
            result("other_file", 0.4, "file", file_path="src/b.py"),
        ]
        assembled = assembler.assemble(results)
        assert [s.entity_id for s in assembled.sources] == ["fn", "other_file"]

    def test_categorize_type(self):
        assert categorize_type("method") == "code"
        assert categorize_type("requirement") == "documentation"
        assert categorize_type("decision") == "conversation"
        assert categorize_type("ticket") == "other"


class TestBudget:
    @pytest.mark.parametrize("max_tokens", [250, 400, 1000, 4000])
    @pytest.mark.parametrize("include_sources", [True, False])
    def test_token_count_within_budget(self, assembler, max_tokens, include_sources):
        results = [
            result(f"e{i}", 1.0 - i * 0.01, summary="word " * 40, content="x = 1\n" * 30)
            for i in range(40)
        ]
        options = AssemblyOptions(
            max_tokens=max_tokens,
            include_sources=include_sources,
            prefix="Answer using this context:",
            suffix="End of context.",
        )

        assembled = assembler.assemble(results, options)

        if assembled.token_count > max_tokens:
            # Only a lone entity too large for the budget on its own may overflow it
            assert len(assembled.sources) == 1
            alone = assembler.assemble(
                results[:1], AssemblyOptions(group_by_type=False, include_sources=False)
            )
            reserve = estimate_tokens("\n\nEnd of context.")
            if include_sources:
                reserve += SOURCES_RESERVE_TOKENS
            assert alone.token_count > max_tokens - reserve
        assert assembled.token_count == -(-len(assembled.context) // 4)
        assert assembled.truncated
        assert assembled.summary is not None

    def test_small_budget_truncates(self, assembler):
        results = [result(f"e{i}", 1.0, summary="word " * 40) for i in range(20)]
        assembled = assembler.assemble(results, AssemblyOptions(max_tokens=300))

        assert assembled.truncated
        assert 0 < len(assembled.sources) < 20
        assert assembled.token_count <= 300

    def test_oversized_single_entity_included(self, assembler):
        results = [
            result("huge", 0.9, "document", content="y" * 10_000),
            result("next", 0.5, "document", content="small"),
        ]
        assembled = assembler.assemble(results, AssemblyOptions(max_tokens=50))

        assert [s.entity_id for s in assembled.sources] == ["huge"]
        assert assembled.truncated
        assert assembled.token_count > 50

    def test_prefix_does_not_push_fitting_entity_over_budget(self, assembler):
        entity = result("fn", 1.0, summary="word " * 20)
        options = AssemblyOptions(max_tokens=100, include_sources=False, group_by_type=False)
        assert assembler.assemble([entity], options).sources

        options.prefix = "p" * 320
        assembled = assembler.assemble([entity], options)

        assert assembled.sources == []
        assert assembled.truncated
        assert assembled.token_count <= 100
        assert assembled.context == options.prefix

    def test_everything_fits(self, assembler):
        results = [result("a", 0.9, summary="first"), result("b", 0.8, summary="second")]
        assembled = assembler.assemble(results)

        assert not assembled.truncated
        assert assembled.summary is None
        assert "**Sources:**" in assembled.context

    def test_prefix_and_suffix(self, assembler):
        options = AssemblyOptions(prefix="BEGIN", suffix="END", include_sources=False)
        assembled = assembler.assemble([result("a", 1.0)], options)
        assert assembled.context.startswith("BEGIN\n\n")
        assert assembled.context.endswith("\n\nEND")

    def test_content_shrunk_to_type_budget(self, assembler):
        results = [result("v", 1.0, "variable", content="z" * 1000)]
        assembled = assembler.assemble(results, AssemblyOptions(include_sources=False))
        assert "z" * 151 not in assembled.context
        assert "// ... (truncated)" in assembled.context

    def test_max_content_length_override(self, assembler):
        results = [result("v", 1.0, "variable", content="z" * 1000)]
        options = AssemblyOptions(include_sources=False, max_content_length=600)
        assert "z" * 600 in assembler.assemble(results, options).context

    def test_code_content_disabled(self, assembler):
        options = AssemblyOptions(include_code_content=False)
        assembled = assembler.assemble([result("a", 1.0, content="secret body")], options)
        assert "secret body" not in assembled.context


class TestFormats:
    def test_xml(self, assembler):
        results = [result("a", 0.9), result("d", 0.8, "document")]
        context = assembler.assemble(results, AssemblyOptions(format=ContextFormat.XML)).context

        assert '<section name="Relevant Code">' in context
        assert context.count("</section>") == 2
        assert "<sources>" in context

    def test_plain(self, assembler):
        context = assembler.assemble(
            [result("a", 0.9)], AssemblyOptions(format=ContextFormat.PLAIN)
        ).context
        assert context.startswith("=== Relevant Code ===")
        assert "Sources:\n  - a" in context


class TestSourceReading:
    @pytest.fixture
    def project(self, tmp_path):
        (tmp_path / "src").mkdir()
        (tmp_path / "src" / "mod.py").write_text(
            "import os\n"
            "from pathlib import Path\n"
            "def first():\n"
            "    return 1\n"
            "def second():\n"
            "    return 2\n"
        )
        return tmp_path

    def second(self, **kwargs):
        return result(
            "second", 1.0, file_path="src/mod.py", start_line=5, end_line=6, content="stored", **kwargs
        )

    def test_reads_entity_lines(self, assembler, project):
        options = AssemblyOptions(read_from_source=True, project_root=project)
        context = assembler.assemble([self.second()], options).context

        assert "def second():\n    return 2" in context
        assert "def first" not in context
        assert "stored" not in context

    def test_context_lines(self, assembler, project):
        options = AssemblyOptions(read_from_source=True, project_root=project, context_lines=1)
        context = assembler.assemble([self.second()], options).context
        assert "    return 1\ndef second():" in context

    def test_include_imports(self, assembler, project):
        options = AssemblyOptions(include_imports=True, project_root=project)
        context = assembler.assemble([self.second()], options).context
        assert "**Imports:**\n```\nimport os\nfrom pathlib import Path\n```" in context

    def test_missing_file_falls_back_to_content(self, assembler, tmp_path):
        options = AssemblyOptions(read_from_source=True, project_root=tmp_path)
        assert "stored" in assembler.assemble([self.second()], options).context

    def test_cache_and_clear(self, assembler, project):
        options = AssemblyOptions(read_from_source=True, project_root=project)
        assembler.assemble([self.second()], options)

        (project / "src" / "mod.py").write_text("a\nb\nc\nd\ndef changed():\n    pass\n")
        assert "def second" in assembler.assemble([self.second()], options).context

        assembler.clear_cache()
        assert "def changed" in assembler.assemble([self.second()], options).context


class TestEntitiesAndSummary:
    def test_assemble_from_entities_keeps_order(self, assembler):
        entities = [Entity(id=i, name=i, type="concept") for i in ["c", "a", "b"]]
        assembled = assembler.assemble_from_entities(entities, AssemblyOptions(group_by_type=False))

        assert [s.entity_id for s in assembled.sources] == ["c", "a", "b"]
        assert [s.relevance for s in assembled.sources] == pytest.approx([1.0, 0.99, 0.98])

    def test_summarize(self, assembler):
        sources = [
            ContextSource(entity_id=f"f{i}", name=f"fn{i}", type="function", relevance=1.0)
            for i in range(5)
        ]
        sources.append(ContextSource(entity_id="d", name="Guide", type="document", relevance=0.5))

        summary = assembler.summarize(sources)

        assert summary == "Context includes: code: fn0, fn1, fn2 (and 2 more); documentation: Guide."

    def test_summarize_truncates(self, assembler):
        sources = [
            ContextSource(entity_id=str(i), name="x" * 30, type="function", relevance=1.0)
            for i in range(3)
        ]
        summary = assembler.summarize(sources, max_tokens=5)
        assert len(summary) == 20
        assert summary.endswith("...")
