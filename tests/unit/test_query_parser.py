"""Unit tests for the QueryParser."""

import pytest

from ctx_engine.core.models import Intent, MentionKind
from ctx_engine.services.query_parser import (
    DEFAULT_INTENT_CONFIDENCE,
    QueryParser,
    build_bidirectional_synonyms,
    classify_code_mention,
)


@pytest.fixture
def parser():
    return QueryParser()


class TestIntentDetection:
    """Tests for intent classification."""

    def test_backtick_explain_scenario(self, parser):
        """A backtick-quoted function followed by 'how does it work' is an explain query."""
        parsed = parser.parse("`authenticateUser` how does it work")

        assert parsed.intent == Intent.EXPLAIN
        assert parsed.intent_confidence == pytest.approx(0.85)
        assert len(parsed.entity_mentions) == 1
        mention = parsed.entity_mentions[0]
        assert mention.text == "authenticateUser"
        assert mention.kind == MentionKind.FUNCTION

    @pytest.mark.parametrize(
        "query,intent",
        [
            ("find the login handler", Intent.FIND),
            ("explain the cache layer", Intent.EXPLAIN),
            ("list all classes", Intent.LIST),
            ("compare sqlite and postgres", Intent.COMPARE),
            ("how do I add a strategy", Intent.HOW),
            ("why is the index empty", Intent.WHY),
            ("fix the crash in startup", Intent.DEBUG),
        ],
    )
    def test_intents(self, parser, query, intent):
        intent_found, confidence = parser.detect_intent(query)
        assert intent_found == intent
        assert confidence > DEFAULT_INTENT_CONFIDENCE

    def test_no_match_is_general(self, parser):
        parsed = parser.parse("token budget")
        assert parsed.intent == Intent.GENERAL
        assert parsed.intent_confidence == DEFAULT_INTENT_CONFIDENCE

    def test_highest_weight_wins(self, parser):
        """'explain' (0.8) loses to the anchored 'why' rule (0.9)."""
        intent, confidence = parser.detect_intent("why does explain fail")
        assert intent == Intent.WHY
        assert confidence == pytest.approx(0.9)


class TestEntityMentions:
    """Tests for mention extraction."""

    def test_file_path(self, parser):
        mentions = parser.extract_entity_mentions("what is in src/services/search.py?")
        assert [(m.text, m.kind) for m in mentions] == [("src/services/search.py", MentionKind.FILE)]

    def test_pascal_case_class(self, parser):
        mentions = parser.extract_entity_mentions("where is ContextAssembler used")
        assert [(m.text, m.kind) for m in mentions] == [("ContextAssembler", MentionKind.CLASS)]

    def test_function_call(self, parser):
        mentions = parser.extract_entity_mentions("who calls parseQuery() here")
        assert [(m.text, m.kind) for m in mentions] == [("parseQuery", MentionKind.FUNCTION)]

    def test_backtick_suppresses_overlapping_matches(self, parser):
        """A PascalCase name inside backticks is reported once, by the backtick scanner."""
        mentions = parser.extract_entity_mentions("show `GraphTraversal` and GraphStats")
        texts = [m.text for m in mentions]
        assert texts == ["GraphTraversal", "GraphStats"]

    def test_mentions_never_overlap(self, parser):
        query = "`src/app.py` calls `run()` on AppRunner via start() and docs/readme.md"
        mentions = parser.extract_entity_mentions(query)

        assert len(mentions) >= 4
        for i, first in enumerate(mentions):
            for second in mentions[i + 1 :]:
                assert not first.overlaps(second.start, second.end)
        assert [m.start for m in mentions] == sorted(m.start for m in mentions)

    def test_plain_text_has_no_mentions(self, parser):
        assert parser.extract_entity_mentions("how are tokens counted") == []


class TestClassifyCodeMention:
    @pytest.mark.parametrize(
        "text,kind",
        [
            ("src/index.ts", MentionKind.FILE),
            ("config.yaml", MentionKind.FILE),
            ("run(config)", MentionKind.FUNCTION),
            ("QueryParser", MentionKind.CLASS),
            ("parseQuery", MentionKind.FUNCTION),
            ("MAX_DEPTH", MentionKind.VARIABLE),
            ("a + b", MentionKind.CODE),
        ],
    )
    def test_kinds(self, text, kind):
        assert classify_code_mention(text) == kind


class TestKeywordsAndExpansion:
    def test_stop_words_and_short_tokens_removed(self, parser):
        parsed = parser.parse("What is the cache for a database?")
        assert "the" not in parsed.keywords
        assert "a" not in parsed.keywords
        assert parsed.keywords == ["cache", "database"]

    def test_keywords_are_lowercase_and_unique(self, parser):
        parsed = parser.parse("Cache cache CACHE")
        assert parsed.keywords == ["cache"]

    def test_custom_stop_words(self):
        parser = QueryParser(custom_stop_words=["cache"])
        assert "cache" not in parser.parse("cache database").keywords

    def test_expansion_never_repeats_keywords(self, parser):
        parsed = parser.parse("search function delete error")
        assert parsed.expanded_terms
        assert not set(parsed.expanded_terms) & set(parsed.keywords)

    def test_expansion_is_bidirectional(self, parser):
        """'fetch' only appears as a synonym of 'get' in the seed table."""
        assert "get" in parser.parse("fetch").expanded_terms

    def test_expansion_disabled(self):
        parser = QueryParser(expand_synonyms=False)
        assert parser.parse("search function").expanded_terms == []

    def test_custom_synonyms(self):
        parser = QueryParser(custom_synonyms={"widget": ["gadget"]})
        assert "gadget" in parser.parse("widget").expanded_terms
        assert "widget" in parser.parse("gadget").expanded_terms

    def test_build_bidirectional_synonyms(self):
        table = build_bidirectional_synonyms({"a": ["b", "c"]})
        assert set(table["b"]) == {"a", "c"}
        assert "b" not in table["b"]


class TestNormalizationAndQueries:
    def test_normalize_query(self, parser):
        assert parser.normalize_query("  where   is `run`??  ") == "where is run"

    def test_empty_query(self, parser):
        parsed = parser.parse("   ")
        assert parsed.keywords == []
        assert parsed.entity_mentions == []
        assert parsed.intent == Intent.GENERAL

    def test_generate_search_queries_deduplicates(self, parser):
        parsed = parser.parse("`parseQuery`")
        queries = parser.generate_search_queries(parsed)
        assert queries[0] == "parseQuery"
        assert len(queries) == len(set(queries))

    def test_exact_and_semantic_terms(self, parser):
        parsed = parser.parse("find `GraphTraversal` search")
        assert parser.get_exact_match_terms(parsed) == ["GraphTraversal"]
        semantic = parser.get_semantic_terms(parsed)
        assert semantic[: len(parsed.keywords)] == parsed.keywords
