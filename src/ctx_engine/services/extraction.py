"""Type-aware shrinking of entity source text to a character budget."""

import math
import re
from pathlib import PurePath

# Character budgets per entity type
TYPE_BUDGETS: dict[str, int] = {
    "class": 800,
    "interface": 600,
    "function": 400,
    "method": 300,
    "file": 200,
    "document": 1000,
    "section": 800,
    "requirement": 600,
    "concept": 500,
    "variable": 150,
    "constant": 150,
}
DEFAULT_TYPE_BUDGET = 500

CLASS_LIKE = {"class", "interface"}
FUNCTION_LIKE = {"function", "method"}

LANGUAGES: dict[str, str] = {
    "ts": "typescript",
    "tsx": "typescript",
    "js": "javascript",
    "jsx": "javascript",
    "py": "python",
    "go": "go",
    "rs": "rust",
    "java": "java",
    "c": "c",
    "h": "c",
    "cpp": "cpp",
    "hpp": "cpp",
    "cs": "csharp",
    "rb": "ruby",
    "php": "php",
    "swift": "swift",
    "kt": "kotlin",
    "scala": "scala",
    "sh": "bash",
    "sql": "sql",
    "json": "json",
    "yaml": "yaml",
    "yml": "yaml",
    "md": "markdown",
    "html": "html",
    "css": "css",
}

_CLASS_DECL_RE = re.compile(
    r"^(?:export\s+)?(?:default\s+)?(?:abstract\s+)?(?:public\s+)?(?:class|interface)\s"
)
_LEADING_RE = re.compile(r"^(?:/\*\*|/\*|\*|//|#|@)")
_MODIFIERS = r"(?:(?:public|protected|private|static|async|abstract|override|readonly|get|set)\s+)*"
_METHOD_RE = re.compile(rf"^{_MODIFIERS}(?:async\s+def\s+|def\s+)?([A-Za-z_$#][\w$]*)\s*(?:<[^>]*>)?\s*\(")
_PROPERTY_RE = re.compile(rf"^{_MODIFIERS}([A-Za-z_$#][\w$]*)\??\s*[:=;]")
_CONTROL_WORDS = {"if", "for", "while", "switch", "return", "catch", "with", "elif", "except", "super"}
_IMPORT_PREFIXES = ("import ", "from ", "use ", "#include", "require ")


def estimate_tokens(text: str) -> int:
    """Rough token count: one token per four characters, rounded up."""
    return math.ceil(len(text) / 4)


def content_budget(entity_type: str, override: int | None = None) -> int:
    if override is not None:
        return override
    return TYPE_BUDGETS.get(entity_type, DEFAULT_TYPE_BUDGET)


def detect_language(file_path: str | None) -> str | None:
    if not file_path:
        return None
    return LANGUAGES.get(PurePath(file_path).suffix.lstrip(".").lower())


def truncate_text(text: str, budget: int) -> str:
    """Cuts `text` to at most `budget` characters, preferring a line boundary."""
    if len(text) <= budget:
        return text
    cut = text[:budget]
    newline = cut.rfind("\n")
    if newline > budget // 2:
        cut = cut[:newline]
    return cut.rstrip()


def _indent(line: str) -> int:
    return len(line) - len(line.lstrip())


def _paren_balance(line: str) -> int:
    return line.count("(") - line.count(")")


def _signature(lines: list[str], start: int) -> tuple[list[str], int]:
    """Lines from `start` through the one that balances the first opening paren."""
    collected: list[str] = []
    balance = 0
    seen_open = False
    index = start
    while index < len(lines):
        line = lines[index]
        collected.append(line)
        balance += _paren_balance(line)
        seen_open = seen_open or "(" in line
        if seen_open and balance <= 0:
            break
        index += 1
    return collected, index


def _strip_body(signature: list[str], indent: str) -> list[str]:
    """Replaces whatever follows the signature with an ellipsis marker."""
    last = signature[-1]
    brace = last.find("{", last.rfind(")") + 1 if ")" in last else 0)
    if brace != -1:
        return [*signature[:-1], last[:brace].rstrip() + " { ... }"]
    if last.rstrip().endswith(":"):
        return [*signature, indent + "    ..."]
    return signature


def _leading_block(lines: list[str], end: int) -> list[str]:
    """Doc comments and decorators directly above line `end`."""
    start = end
    while start > 0 and lines[start - 1].strip() and (
        _LEADING_RE.match(lines[start - 1].strip()) or lines[start - 1].strip().endswith("*/")
    ):
        start -= 1
    return lines[start:end]


def _docstring(lines: list[str], start: int) -> tuple[list[str], int]:
    """Python docstring beginning at `start`, if any, and the index after it."""
    if start >= len(lines):
        return [], start
    stripped = lines[start].strip()
    for quote in ('"""', "'''"):
        if stripped.startswith(quote):
            if stripped.count(quote) >= 2 and len(stripped) > 3:
                return [lines[start]], start + 1
            end = start + 1
            while end < len(lines) and quote not in lines[end]:
                end += 1
            return lines[start : end + 1], end + 1
    return [], start


def _is_private(name: str, stripped: str) -> bool:
    if name == "__init__":
        return False
    return name.startswith(("_", "#")) or stripped.startswith("private ")


def extract_class_summary(content: str, budget: int) -> str:
    """Doc comment, declaration, property declarations, constructor and public method signatures."""
    lines = content.splitlines()
    decl = next((i for i, line in enumerate(lines) if _CLASS_DECL_RE.match(line.strip())), None)
    if decl is None:
        return truncate_text(content, budget)

    parts = [*_leading_block(lines, decl), lines[decl]]
    base_indent = _indent(lines[decl])
    python_style = lines[decl].rstrip().endswith(":")

    doc, body_start = _docstring(lines, decl + 1) if python_style else ([], decl + 1)
    parts.extend(doc)

    member_indent = next(
        (_indent(line) for line in lines[body_start:] if line.strip() and _indent(line) > base_indent),
        None,
    )

    index = body_start
    while member_indent is not None and index < len(lines):
        line = lines[index]
        stripped = line.strip()
        if stripped and _indent(line) < member_indent:
            break
        if not stripped or _indent(line) != member_indent or _LEADING_RE.match(stripped):
            index += 1
            continue

        pad = " " * member_indent
        method = _METHOD_RE.match(stripped)
        if method and method.group(1) not in _CONTROL_WORDS:
            signature, index = _signature(lines, index)
            if not _is_private(method.group(1), stripped):
                parts.extend(_strip_body(signature, pad))
        else:
            prop = _PROPERTY_RE.match(stripped)
            if prop and not _is_private(prop.group(1), stripped):
                parts.append(line)
        index += 1

    if not python_style and "{" in lines[decl]:
        parts.append(" " * base_indent + "}")

    return truncate_text("\n".join(parts), budget)


def extract_function_summary(content: str, budget: int) -> str:
    """Leading comments and the full signature; the body becomes an ellipsis."""
    lines = content.splitlines()
    start = next((i for i, line in enumerate(lines) if "(" in line and not _LEADING_RE.match(line.strip())), None)
    if start is None:
        return truncate_text(content, budget)

    signature, end = _signature(lines, start)
    pad = " " * _indent(lines[start])
    parts = [*lines[:start]]
    if signature[-1].rstrip().endswith(":"):
        doc, _ = _docstring(lines, end + 1)
        parts.extend(signature)
        parts.extend(doc)
        parts.append(pad + "    ...")
    else:
        parts.extend(_strip_body(signature, pad))
    return truncate_text("\n".join(parts), budget)


def extract_code_summary(content: str, entity_type: str, budget: int) -> str:
    """Shrinks `content` to `budget` characters; content already within budget is returned as is."""
    if len(content) <= budget:
        return content
    if entity_type in CLASS_LIKE:
        return extract_class_summary(content, budget)
    if entity_type in FUNCTION_LIKE:
        return extract_function_summary(content, budget)
    return truncate_text(content, budget)


def extract_imports(lines: list[str]) -> list[str]:
    """The leading import block of a source file; comments and blank lines inside it are skipped."""
    imports: list[str] = []
    for line in lines:
        stripped = line.strip()
        if stripped.startswith(_IMPORT_PREFIXES) or (
            stripped.startswith("const ") and "require(" in stripped
        ):
            imports.append(line)
        elif imports and stripped and not _LEADING_RE.match(stripped):
            break
    return imports
