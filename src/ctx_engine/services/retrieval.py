import asyncio

from loguru import logger

from ctx_engine.core.models import AssemblyOptions, RetrievalResult, SearchOptions
from ctx_engine.services.context import ContextAssembler
from ctx_engine.services.search import MultiStrategySearch


class RetrievalService:
    """Query in, token-budgeted context out: parse, search, assemble."""

    def __init__(self, search: MultiStrategySearch, assembler: ContextAssembler | None = None) -> None:
        self.search = search
        self.assembler = assembler or ContextAssembler()

    async def retrieve(
        self,
        query: str,
        search_options: SearchOptions | None = None,
        assembly_options: AssemblyOptions | None = None,
    ) -> RetrievalResult:
        results = await self.search.search(query, search_options)
        # File reads during assembly are blocking
        context = await asyncio.to_thread(self.assembler.assemble, results, assembly_options)
        logger.info(
            "Retrieved {} results into {} tokens (truncated: {})",
            len(results),
            context.token_count,
            context.truncated,
        )
        return RetrievalResult(query=query, results=results, context=context)
