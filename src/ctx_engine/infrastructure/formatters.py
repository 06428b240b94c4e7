from html import escape

from ctx_engine.core.models import ContextSource, Entity
from ctx_engine.services.extraction import detect_language


def _location(entity: Entity) -> str:
    if not entity.file_path:
        return entity.type
    return f"{entity.file_path}:{entity.start_line}" if entity.start_line else entity.file_path


def _source_location(source: ContextSource) -> str:
    if not source.file_path:
        return source.type
    return f"{source.file_path}:{source.line}" if source.line else source.file_path


def _truncation_marker(language: str | None) -> str:
    return "# ... (truncated)" if language in ("python", "ruby", "bash", "yaml") else "// ... (truncated)"


class MarkdownFormatter:
    """Markdown headers, fenced code blocks and a bulleted sources list."""

    section_separator = "\n\n---\n\n"

    def format_group_header(self, title: str) -> str:
        return f"## {title}"

    def format_group_footer(self, title: str) -> str:
        return ""

    def format_entity(
        self,
        entity: Entity,
        body: str | None,
        truncated: bool = False,
        imports: list[str] | None = None,
    ) -> str:
        lines = [f"### {entity.name}", f"*{_location(entity)}*", ""]
        if entity.summary:
            lines.append(entity.summary)

        if imports:
            lines.extend(["", "**Imports:**", "```", *imports, "```"])

        if body:
            language = detect_language(entity.file_path)
            lines.extend(["", f"```{language or ''}", body])
            if truncated:
                lines.append(_truncation_marker(language))
            lines.append("```")

        return "\n".join(lines)

    def format_sources(self, sources: list[ContextSource], max_listed: int = 10) -> str:
        if not sources:
            return ""
        lines = ["---", "**Sources:**"]
        lines.extend(f"- {s.name} ({_source_location(s)})" for s in sources[:max_listed])
        if len(sources) > max_listed:
            lines.append(f"- ... and {len(sources) - max_listed} more")
        return "\n".join(lines)


class XmlFormatter:
    """XML elements with escaped attributes and text."""

    section_separator = "\n"

    def format_group_header(self, title: str) -> str:
        return f'<section name="{escape(title)}">'

    def format_group_footer(self, title: str) -> str:
        return "</section>"

    def format_entity(
        self,
        entity: Entity,
        body: str | None,
        truncated: bool = False,
        imports: list[str] | None = None,
    ) -> str:
        attrs = [f'name="{escape(entity.name)}"', f'type="{escape(entity.type)}"']
        if entity.file_path:
            attrs.append(f'file="{escape(entity.file_path)}"')
        if entity.start_line:
            attrs.append(f'line="{entity.start_line}"')
        if truncated:
            attrs.append('truncated="true"')

        lines = [f"<entity {' '.join(attrs)}>"]
        if entity.summary:
            lines.append(f"<summary>{escape(entity.summary)}</summary>")
        if imports:
            lines.append(f"<imports>{escape(chr(10).join(imports))}</imports>")
        if body:
            lines.append(f"<content>{escape(body)}</content>")
        lines.append("</entity>")
        return "\n".join(lines)

    def format_sources(self, sources: list[ContextSource], max_listed: int = 10) -> str:
        if not sources:
            return ""
        lines = ["<sources>"]
        for source in sources[:max_listed]:
            file_attr = f' file="{escape(source.file_path)}"' if source.file_path else ""
            lines.append(
                f'  <source name="{escape(source.name)}" type="{escape(source.type)}"{file_attr} />'
            )
        if len(sources) > max_listed:
            lines.append(f'  <more count="{len(sources) - max_listed}" />')
        lines.append("</sources>")
        return "\n".join(lines)


class PlainFormatter:
    section_separator = "\n\n---\n\n"

    def format_group_header(self, title: str) -> str:
        return f"=== {title} ==="

    def format_group_footer(self, title: str) -> str:
        return ""

    def format_entity(
        self,
        entity: Entity,
        body: str | None,
        truncated: bool = False,
        imports: list[str] | None = None,
    ) -> str:
        location = f"[{entity.file_path}:{entity.start_line or 0}]" if entity.file_path else f"[{entity.type}]"
        lines = [f"{entity.name} {location}"]
        if entity.summary:
            lines.append(entity.summary)
        if imports:
            lines.extend(imports)
        if body:
            lines.append(body)
            if truncated:
                lines.append("...")
        return "\n".join(lines)

    def format_sources(self, sources: list[ContextSource], max_listed: int = 10) -> str:
        if not sources:
            return ""
        lines = ["Sources:"]
        lines.extend(f"  - {s.name}" for s in sources[:max_listed])
        if len(sources) > max_listed:
            lines.append(f"  - ... and {len(sources) - max_listed} more")
        return "\n".join(lines)
