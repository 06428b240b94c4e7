from loguru import logger

from ctx_engine.core.models import (
    AssembledContext,
    AssemblyOptions,
    ContextSource,
    Entity,
    SearchResult,
    SearchStrategy,
)
from ctx_engine.core.ports import IContextFormatter
from ctx_engine.core.registry import ComponentRegistry
from ctx_engine.infrastructure.file_cache import FileLineCache
from ctx_engine.services.extraction import (
    content_budget,
    estimate_tokens,
    extract_code_summary,
    extract_imports,
)

SOURCES_RESERVE_TOKENS = 200
MAX_LISTED_SOURCES = 10
# Lines read past start_line when an entity has no end_line
DEFAULT_SPAN_LINES = 50

CODE_TYPES = {"function", "method", "class", "interface", "type", "file", "module", "variable", "constant"}
DOC_TYPES = {"document", "section", "requirement", "feature", "concept"}
CONVERSATION_TYPES = {"session", "message", "decision", "summary"}

GROUP_TITLES: dict[str, str] = {
    "code": "Relevant Code",
    "documentation": "Related Documentation",
    "conversation": "Previous Conversations",
    "other": "Other Context",
}

_JOIN = "\n\n"


def categorize_type(entity_type: str) -> str:
    if entity_type in CODE_TYPES:
        return "code"
    if entity_type in DOC_TYPES:
        return "documentation"
    if entity_type in CONVERSATION_TYPES:
        return "conversation"
    return "other"


class _Budget:
    """Running token charge against a hard limit."""

    def __init__(self, limit: int, used: int = 0) -> None:
        self.limit = limit
        self.used = used

    def fits(self, cost: int) -> bool:
        return self.used + cost <= self.limit

    def charge(self, cost: int) -> None:
        self.used += cost


class ContextAssembler:
    """Turns ranked search results into a token-budgeted, attributed context block.

    Every piece of output (prefix, group headers, separators, entities, the
    sources footer and the suffix) is charged against ``max_tokens``. Since
    the estimate of a concatenation never exceeds the sum of the estimates of
    its parts, the final text never exceeds the budget, with one exception:
    a first entity whose formatted text alone exceeds the budget left after
    the suffix and sources reserve is still included, and the result is
    flagged as truncated.

    The file-line cache is private to the instance.
    """

    def __init__(self, cache_size: int = 128) -> None:
        self._cache = FileLineCache(cache_size)

    def clear_cache(self) -> None:
        self._cache.clear()

    def assemble(
        self, results: list[SearchResult], options: AssemblyOptions | None = None
    ) -> AssembledContext:
        opts = options or AssemblyOptions()
        formatter = ComponentRegistry.get_formatter(opts.format)

        suffix_cost = estimate_tokens(_JOIN + opts.suffix) if opts.suffix else 0
        reserve = suffix_cost + (SOURCES_RESERVE_TOKENS if opts.include_sources else 0)
        budget = _Budget(
            opts.max_tokens - reserve,
            estimate_tokens(opts.prefix + _JOIN) if opts.prefix else 0,
        )

        ranked = [
            r
            for r in sorted(results, key=lambda r: r.score, reverse=True)
            if r.score >= opts.min_relevance
        ]
        ranked = self._drop_represented_files(ranked)

        sections: list[str] = []
        sources: list[ContextSource] = []
        truncated = False

        for category, members in self._group(ranked, opts.group_by_type):
            title = GROUP_TITLES[category] if category else ""
            header = formatter.format_group_header(title) if category else ""
            footer = formatter.format_group_footer(title) if category else ""
            opening_cost = (
                (estimate_tokens(formatter.section_separator) if sections else 0)
                + (estimate_tokens(header + _JOIN) if header else 0)
                + (estimate_tokens("\n" + footer) if footer else 0)
            )

            pieces: list[str] = []
            for result in members:
                piece = self._format_result(result.entity, formatter, opts)
                cost = estimate_tokens(piece) + (estimate_tokens(_JOIN) if pieces else opening_cost)

                if not budget.fits(cost):
                    truncated = True
                    # Only an entity that could never fit is included over budget
                    if sources or estimate_tokens(piece) <= budget.limit:
                        break
                    logger.debug("Including oversized entity '{}' on its own", result.entity.name)

                budget.charge(cost)
                pieces.append(piece)
                sources.append(self._to_source(result))
                if truncated:
                    break

            if pieces:
                section = _JOIN.join([header, *pieces] if header else pieces)
                sections.append(section + "\n" + footer if footer else section)
            if truncated:
                break

        text = formatter.section_separator.join(sections)
        if opts.prefix:
            text = opts.prefix + _JOIN + text if text else opts.prefix

        if opts.include_sources and sources:
            footer_text = _JOIN + formatter.format_sources(sources, MAX_LISTED_SOURCES)
            # The footer may use the reserve, but never the suffix's share
            if budget.used + estimate_tokens(footer_text) <= opts.max_tokens - suffix_cost:
                text += footer_text

        if opts.suffix:
            text += _JOIN + opts.suffix

        assembled = AssembledContext(
            context=text,
            sources=sources,
            token_count=estimate_tokens(text),
            truncated=truncated,
        )
        if truncated:
            assembled.summary = self.summarize(sources)
            logger.info(
                "Context truncated at {} of {} results ({} tokens)",
                len(sources),
                len(ranked),
                assembled.token_count,
            )
        return assembled

    def assemble_from_entities(
        self, entities: list[Entity], options: AssemblyOptions | None = None
    ) -> AssembledContext:
        """Assembles entities in the given order, without search scores."""
        results = [
            SearchResult(entity=entity, score=1.0 - index * 0.01, source=SearchStrategy.KEYWORD)
            for index, entity in enumerate(entities)
        ]
        return self.assemble(results, options)

    def summarize(self, sources: list[ContextSource], max_tokens: int = 200) -> str:
        """One-line description of what a context contains, by category."""
        groups: dict[str, list[str]] = {}
        for source in sources:
            groups.setdefault(categorize_type(source.type), []).append(source.name)

        parts = []
        for category, names in groups.items():
            extra = f" (and {len(names) - 3} more)" if len(names) > 3 else ""
            parts.append(f"{category}: {', '.join(names[:3])}{extra}")

        summary = f"Context includes: {'; '.join(parts)}."
        if estimate_tokens(summary) > max_tokens:
            return summary[: max_tokens * 4 - 3] + "..."
        return summary

    @staticmethod
    def _drop_represented_files(results: list[SearchResult]) -> list[SearchResult]:
        """Skips bare file entities whose path is already covered by a more specific result."""
        represented = {
            r.entity.file_path for r in results if r.entity.type != "file" and r.entity.file_path
        }
        return [
            r for r in results if not (r.entity.type == "file" and r.entity.file_path in represented)
        ]

    @staticmethod
    def _group(
        results: list[SearchResult], by_type: bool
    ) -> list[tuple[str | None, list[SearchResult]]]:
        if not by_type:
            return [(None, results)]
        groups: dict[str, list[SearchResult]] = {category: [] for category in GROUP_TITLES}
        for result in results:
            groups[categorize_type(result.entity.type)].append(result)
        return [(category, members) for category, members in groups.items() if members]

    @staticmethod
    def _to_source(result: SearchResult) -> ContextSource:
        entity = result.entity
        return ContextSource(
            entity_id=entity.id,
            name=entity.name,
            type=entity.type,
            file_path=entity.file_path,
            line=entity.start_line,
            relevance=result.score,
        )

    def _read_source(self, entity: Entity, opts: AssemblyOptions) -> str | None:
        if not (entity.file_path and entity.start_line):
            return None
        lines = self._cache.get_lines(entity.file_path, opts.project_root)
        if not lines:
            return None
        end_line = entity.end_line or entity.start_line + DEFAULT_SPAN_LINES
        start = max(0, entity.start_line - 1 - opts.context_lines)
        stop = min(len(lines), end_line + opts.context_lines)
        return "\n".join(lines[start:stop]) or None

    def _format_result(
        self, entity: Entity, formatter: IContextFormatter, opts: AssemblyOptions
    ) -> str:
        imports = None
        if opts.include_imports and entity.file_path:
            lines = self._cache.get_lines(entity.file_path, opts.project_root)
            imports = extract_imports(lines) if lines else None

        body = None
        truncated = False
        if opts.include_code_content:
            content = self._read_source(entity, opts) if opts.read_from_source else None
            content = content or entity.content
            if content:
                budget = content_budget(entity.type, opts.max_content_length)
                body = extract_code_summary(content, entity.type, budget)
                truncated = len(body) < len(content)

        return formatter.format_entity(entity, body, truncated=truncated, imports=imports or None)
