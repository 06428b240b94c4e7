"""Query parsing: intent, keywords, entity mentions and synonym expansion."""

import re
from collections.abc import Iterable
from typing import NamedTuple

from ctx_engine.core.models import EntityMention, Intent, MentionKind, ParsedQuery

DEFAULT_STOP_WORDS = frozenset(
    [
        # Articles
        "a", "an", "the",
        # Prepositions
        "in", "on", "at", "to", "for", "of", "with", "by", "from", "as", "into", "about",
        # Conjunctions
        "and", "or", "but", "nor", "so", "yet",
        # Pronouns
        "i", "me", "my", "we", "our", "you", "your", "he", "she", "it", "they", "them",
        "this", "that", "these", "those",
        # Common verbs
        "is", "are", "was", "were", "be", "been", "being", "have", "has", "had", "do",
        "does", "did", "will", "would", "could", "should", "can", "may", "might",
        # Question words (intent detection looks at the raw text instead)
        "what", "which", "who", "whom", "whose",
        # Other
        "there", "here", "when", "where", "then", "than", "if", "else", "also", "just",
        "only", "very", "too", "any", "all", "each", "every", "some", "no", "not",
    ]
)

# One-directional seed; symmetrized when the parser is constructed.
DEFAULT_SYNONYMS: dict[str, list[str]] = {
    "function": ["method", "func", "handler", "callback", "procedure"],
    "method": ["function", "func", "procedure"],
    "class": ["type", "interface", "struct", "model"],
    "interface": ["type", "class", "contract"],
    "file": ["module", "source"],
    "module": ["file", "package", "library"],
    "database": ["db", "sqlite", "sql", "persistence", "storage"],
    "storage": ["store", "persistence", "cache", "repository"],
    "cache": ["memoize", "cached", "store"],
    "create": ["make", "add", "new", "generate", "insert"],
    "delete": ["remove", "destroy", "drop", "purge"],
    "update": ["modify", "change", "edit", "alter", "patch"],
    "get": ["fetch", "retrieve", "read", "load", "find"],
    "set": ["assign", "write", "store", "save"],
    "search": ["find", "query", "lookup", "filter", "match", "retrieve"],
    "error": ["exception", "bug", "issue", "problem", "fault"],
    "bug": ["error", "issue", "defect", "problem"],
    "array": ["list", "collection"],
    "object": ["instance", "entity", "record"],
    "string": ["text", "str"],
    "number": ["int", "integer", "float", "numeric"],
    "test": ["spec", "assertion", "mock", "stub", "fixture"],
    "api": ["endpoint", "route", "handler", "controller"],
    "config": ["configuration", "settings", "options", "preferences"],
    "index": ["indexer", "indexing", "catalog", "scan"],
    "embed": ["embedding", "vector", "encode"],
    "graph": ["network", "relationship", "edge", "node", "link"],
    "parse": ["parser", "tokenize", "lex", "analyze", "ast"],
    "render": ["display", "show", "draw"],
    "handle": ["process", "manage", "deal"],
    "validate": ["verify", "check", "ensure"],
}


class IntentRule(NamedTuple):
    pattern: re.Pattern[str]
    intent: Intent
    weight: float


def _rule(pattern: str, intent: Intent, weight: float) -> IntentRule:
    return IntentRule(re.compile(pattern, re.IGNORECASE), intent, weight)


INTENT_RULES: tuple[IntentRule, ...] = (
    _rule(r"^(find|search|locate|where\s+is|look\s+for)\b", Intent.FIND, 0.9),
    _rule(r"\b(definition\s+of|implementation\s+of)\b", Intent.FIND, 0.85),
    _rule(r"\bwhere\b.*\b(defined|declared|implemented)\b", Intent.FIND, 0.85),
    _rule(r"^(explain|describe|what\s+is|what\s+does|what\s+are)\b", Intent.EXPLAIN, 0.9),
    _rule(r"\bhow\s+does\b.*\bwork\b", Intent.EXPLAIN, 0.85),
    _rule(r"\bexplain\b", Intent.EXPLAIN, 0.8),
    _rule(r"^(list|show|enumerate|get\s+all)\b", Intent.LIST, 0.9),
    _rule(r"\b(all|every)\b.*\b(function|class|method|file)s?\b", Intent.LIST, 0.8),
    _rule(r"what\s+(are\s+)?(the\s+)?(all\s+)?.*s\?$", Intent.LIST, 0.7),
    _rule(r"^compare\b", Intent.COMPARE, 0.95),
    _rule(r"\bdifference\s+between\b", Intent.COMPARE, 0.9),
    _rule(r"\bvs\.?(?!\w)|\bversus\b", Intent.COMPARE, 0.85),
    _rule(r"\b(compare|contrast|differ)\b", Intent.COMPARE, 0.8),
    _rule(r"^how\s+(do|can|to|should)\b", Intent.HOW, 0.9),
    _rule(r"\bhow\s+to\b", Intent.HOW, 0.85),
    _rule(r"\bsteps\s+to\b", Intent.HOW, 0.8),
    _rule(r"^why\b", Intent.WHY, 0.9),
    _rule(r"\breason\s+(for|why)\b", Intent.WHY, 0.85),
    _rule(r"\bwhy\s+(is|does|do|are|was|were)\b", Intent.WHY, 0.85),
    _rule(r"\b(error|bug|issue|problem|crash|fail|broken)\b", Intent.DEBUG, 0.85),
    _rule(r"\b(debug|fix|solve|troubleshoot)\b", Intent.DEBUG, 0.9),
    _rule(r"\bnot\s+working\b", Intent.DEBUG, 0.85),
    _rule(r"\bthrow(s|ing|n)?\b.*\b(error|exception)\b", Intent.DEBUG, 0.8),
)

DEFAULT_INTENT_CONFIDENCE = 0.3

_BACKTICK_RE = re.compile(r"`([^`]+)`")
_PATH_RE = re.compile(r"(?<![^\s(])([./]?(?:[\w.-]+/)+[\w.-]+\.\w+)(?=[.,;:?!)]*(?:\s|$))")
_PASCAL_RE = re.compile(r"\b([A-Z][a-z]+(?:[A-Z][a-z]+)+)\b")
_CALL_RE = re.compile(r"\b([a-z][a-zA-Z0-9]*)\s*\(")
_TOKEN_SPLIT_RE = re.compile(r"[\s\-_.,;:!?'\"()\[\]{}]+")


def build_bidirectional_synonyms(seed: dict[str, list[str]]) -> dict[str, list[str]]:
    """Symmetrizes a one-directional synonym table: every term in a group maps to all others."""
    table: dict[str, dict[str, None]] = {}
    for key, values in seed.items():
        group = [key, *values]
        for term in group:
            related = table.setdefault(term.lower(), {})
            for other in group:
                if other.lower() != term.lower():
                    related[other.lower()] = None
    return {term: list(related) for term, related in table.items()}


def classify_code_mention(text: str) -> MentionKind:
    """Guesses what kind of code element a backtick-quoted span names."""
    if "/" in text or "\\" in text or re.search(r"\.\w{1,5}$", text):
        return MentionKind.FILE
    if re.fullmatch(r"[A-Za-z_]\w*\s*\(.*\)", text):
        return MentionKind.FUNCTION
    if re.fullmatch(r"[A-Z][a-z]+(?:[A-Z][a-z]+)+", text):
        return MentionKind.CLASS
    if re.fullmatch(r"[a-z][a-zA-Z0-9]*", text):
        return MentionKind.FUNCTION
    if re.fullmatch(r"[a-z_][a-z0-9_]*", text, re.IGNORECASE):
        return MentionKind.VARIABLE
    return MentionKind.CODE


class QueryParser:
    """Parses natural-language queries into structured retrieval input.

    The parser never raises: text that matches nothing simply yields empty
    collections and the ``general`` intent.
    """

    def __init__(
        self,
        expand_synonyms: bool = True,
        custom_stop_words: Iterable[str] = (),
        custom_synonyms: dict[str, list[str]] | None = None,
        min_keyword_length: int = 2,
    ) -> None:
        self.expand_synonyms = expand_synonyms
        self.min_keyword_length = min_keyword_length
        self.stop_words = DEFAULT_STOP_WORDS | {w.lower() for w in custom_stop_words}

        seed = {key: list(values) for key, values in DEFAULT_SYNONYMS.items()}
        for key, values in (custom_synonyms or {}).items():
            seed.setdefault(key, []).extend(values)
        self.synonyms = build_bidirectional_synonyms(seed)

    def parse(self, query: str) -> ParsedQuery:
        """Parse a query string into intent, mentions, keywords and expansions."""
        original = query.strip()
        normalized = self.normalize_query(original)

        intent, confidence = self.detect_intent(original)
        mentions = self.extract_entity_mentions(original)
        keywords = self.extract_keywords(normalized, mentions)
        expanded = self.expand_terms(keywords) if self.expand_synonyms else []

        return ParsedQuery(
            original=original,
            intent=intent,
            intent_confidence=confidence,
            keywords=keywords,
            entity_mentions=mentions,
            expanded_terms=expanded,
            normalized_query=normalized,
        )

    def detect_intent(self, query: str) -> tuple[Intent, float]:
        lowered = query.lower()
        best_intent, best_weight = Intent.GENERAL, DEFAULT_INTENT_CONFIDENCE
        for rule in INTENT_RULES:
            # Strictly greater: ties keep the earlier rule
            if rule.weight > best_weight and rule.pattern.search(lowered):
                best_intent, best_weight = rule.intent, rule.weight
        return best_intent, best_weight

    def extract_entity_mentions(self, query: str) -> list[EntityMention]:
        """Runs the four mention scanners in priority order; later scanners never overlap earlier hits."""
        mentions: list[EntityMention] = []

        def accept(text: str, kind: MentionKind, start: int, end: int) -> None:
            if not text or any(m.overlaps(start, end) for m in mentions):
                return
            mentions.append(EntityMention(text=text, kind=kind, start=start, end=end))

        for match in _BACKTICK_RE.finditer(query):
            inner = match.group(1)
            accept(inner, classify_code_mention(inner), match.start(), match.end())

        for match in _PATH_RE.finditer(query):
            accept(match.group(1), MentionKind.FILE, match.start(1), match.end(1))

        for match in _PASCAL_RE.finditer(query):
            accept(match.group(1), MentionKind.CLASS, match.start(1), match.end(1))

        for match in _CALL_RE.finditer(query):
            accept(match.group(1), MentionKind.FUNCTION, match.start(1), match.end(1))

        mentions.sort(key=lambda m: m.start)
        return mentions

    def extract_keywords(self, normalized_query: str, mentions: list[EntityMention]) -> list[str]:
        mention_texts = {m.text.lower() for m in mentions}
        keywords: dict[str, None] = {}

        for token in _TOKEN_SPLIT_RE.split(normalized_query.lower()):
            if len(token) < self.min_keyword_length:
                continue
            if token in mention_texts:
                keywords[token] = None
                continue
            if token in self.stop_words or token.isdigit():
                continue
            keywords[token] = None

        return list(keywords)

    def expand_terms(self, keywords: list[str]) -> list[str]:
        """Collects synonyms of the keywords that are not keywords themselves."""
        present = {k.lower() for k in keywords}
        expanded: dict[str, None] = {}
        for keyword in keywords:
            for synonym in self.synonyms.get(keyword.lower(), []):
                if synonym not in present:
                    expanded[synonym] = None
        return list(expanded)

    @staticmethod
    def normalize_query(query: str) -> str:
        text = _BACKTICK_RE.sub(r"\1", query)
        text = re.sub(r"\s+", " ", text).strip()
        text = re.sub(r"[?!.]+$", "", text)
        return text.strip()

    def get_exact_match_terms(self, parsed: ParsedQuery) -> list[str]:
        return [m.text for m in parsed.entity_mentions]

    def get_semantic_terms(self, parsed: ParsedQuery) -> list[str]:
        return [*parsed.keywords, *parsed.expanded_terms]

    def generate_search_queries(self, parsed: ParsedQuery) -> list[str]:
        """Query variants, most specific first, without duplicates."""
        queries = [parsed.normalized_query]
        if parsed.keywords:
            queries.append(" ".join(parsed.keywords))
        if parsed.expanded_terms:
            queries.append(" ".join([*parsed.keywords, *parsed.expanded_terms]))
        queries.extend(m.text for m in parsed.entity_mentions)
        return [q for q in dict.fromkeys(queries) if q]
