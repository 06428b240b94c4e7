from typing import Any

from ctx_engine.core.models import ContextFormat
from ctx_engine.core.ports import IContextFormatter, IEmbedder, IReranker
from ctx_engine.infrastructure.embeddings.hashing import HashingEmbedder
from ctx_engine.infrastructure.formatters import MarkdownFormatter, PlainFormatter, XmlFormatter
from ctx_engine.services.rerank import HeuristicReranker


class ComponentRegistry:
    """Registry pattern to dynamically map string names to class implementations."""

    _formatters: dict[str, type[IContextFormatter]] = {
        ContextFormat.MARKDOWN: MarkdownFormatter,
        ContextFormat.XML: XmlFormatter,
        ContextFormat.PLAIN: PlainFormatter,
    }

    _embedders: dict[str, type[IEmbedder]] = {
        "hashing": HashingEmbedder,
    }

    _rerankers: dict[str, Any] = {
        "heuristic": HeuristicReranker,
    }

    @classmethod
    def get_formatter(cls, name: str) -> IContextFormatter:
        if name not in cls._formatters:
            raise ValueError(f"Unknown formatter type: '{name}'")
        return cls._formatters[name]()

    @classmethod
    def get_embedder(cls, name: str) -> type[IEmbedder]:
        if name not in cls._embedders:
            raise ValueError(f"Unknown embedder type: '{name}'")
        return cls._embedders[name]

    @classmethod
    def get_reranker(cls, name: str) -> type[IReranker]:
        if name not in cls._rerankers:
            raise ValueError(f"Unknown reranker type: '{name}'")
        return cls._rerankers[name]

    @classmethod
    def register_formatter(cls, name: str, formatter: type[IContextFormatter]) -> None:
        cls._formatters[name] = formatter
