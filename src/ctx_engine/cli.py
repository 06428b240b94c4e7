import asyncio
import os
from typing import Annotated, NamedTuple

import typer

from ctx_engine.config import Settings, settings
from ctx_engine.core.models import (
    AssemblyOptions,
    ContextFormat,
    Direction,
    SearchOptions,
    SearchResult,
    SearchStrategy,
)
from ctx_engine.core.registry import ComponentRegistry
from ctx_engine.infrastructure.embeddings.similarity import NumpySimilarityIndex
from ctx_engine.infrastructure.storage.database import create_db_engine
from ctx_engine.infrastructure.storage.entities import SqlEntityStore
from ctx_engine.infrastructure.storage.relationships import SqlRelationshipStore
from ctx_engine.logger import configure_logger
from ctx_engine.services.context import ContextAssembler
from ctx_engine.services.graph import GraphTraversal
from ctx_engine.services.ingestion import IngestionService
from ctx_engine.services.query_parser import QueryParser
from ctx_engine.services.retrieval import RetrievalService
from ctx_engine.services.search import MultiStrategySearch

app = typer.Typer(
    help="ctx-engine: Multi-Strategy Retrieval and Context Assembly",
    no_args_is_help=True,
)


class EngineDeps(NamedTuple):
    """Container for resolved engine dependencies."""

    entity_store: SqlEntityStore
    relationship_store: SqlRelationshipStore
    similarity_index: NumpySimilarityIndex
    graph: GraphTraversal
    search: MultiStrategySearch


def version_callback(value: bool) -> None:
    if value:
        from ctx_engine import __version__

        typer.echo(f"ctx-engine version: {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    config_file: Annotated[
        str, typer.Option("--config-file", "-c", help="Path to config.yaml file.")
    ] = "config.yaml",
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-v",
            help="Show the version and exit.",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
) -> None:
    """ctx-engine: query parsing, fused search, graph traversal and context assembly."""
    from ctx_engine.config import load_settings

    # Export to environment so uvicorn subprocesses (in API mode) inherit it
    os.environ["CTX_CONFIG_FILE"] = config_file

    # Dynamically update the current process global settings singleton
    new_settings = load_settings(config_file)
    for field in Settings.model_fields:
        setattr(settings, field, getattr(new_settings, field))

    configure_logger(settings.log_level, settings.log_serialize)


def _build_dependencies() -> EngineDeps:
    """Dependency Injection Factory driven by config.yaml configuration."""
    engine = create_db_engine(settings.db_path)
    entity_store = SqlEntityStore(engine)
    relationship_store = SqlRelationshipStore(engine)

    EmbedderClass = ComponentRegistry.get_embedder(settings.embedding.type)
    similarity_index = NumpySimilarityIndex(EmbedderClass(dimension=settings.embedding.dimension))  # type: ignore[call-arg]
    similarity_index.add_entities(entity_store.all())

    graph = GraphTraversal(
        relationship_store,
        entity_store,
        max_path_depth=settings.graph.max_path_depth,
        shortest_path_depth=settings.graph.shortest_path_depth,
    )

    reranker = None
    if settings.search.reranker:
        reranker = ComponentRegistry.get_reranker(settings.search.reranker)()

    search_engine = MultiStrategySearch(
        entity_store,
        similarity_index=similarity_index,
        graph=graph,
        parser=QueryParser(**settings.parser.model_dump()),
        reranker=reranker,
    )
    return EngineDeps(
        entity_store=entity_store,
        relationship_store=relationship_store,
        similarity_index=similarity_index,
        graph=graph,
        search=search_engine,
    )


def _search_options(
    limit: int | None = None,
    strategies: list[SearchStrategy] | None = None,
    entity_types: list[str] | None = None,
) -> SearchOptions:
    config = settings.search
    return SearchOptions(
        strategies=strategies or config.strategies,
        limit=limit or config.limit,
        entity_types=entity_types or [],
        weights=config.weights,
        min_score=config.min_score,
        graph_depth=config.graph_depth,
    )


def _print_results(results: list[SearchResult]) -> None:
    if not results:
        typer.echo("No results found.")
        return

    for rank, result in enumerate(results, start=1):
        entity = result.entity
        location = f" {entity.file_path}:{entity.start_line or 0}" if entity.file_path else ""
        typer.echo(
            f"{rank}. [{result.score:.4f} | {result.source}] {entity.name} ({entity.type}){location}"
        )
        if entity.summary:
            typer.echo(f'   --> "{entity.summary[:100]}"')


def _load() -> EngineDeps:
    try:
        return _build_dependencies()
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e


@app.command()
def ingest(
    path: Annotated[
        str, typer.Argument(help="Export file (JSON/YAML) or directory of exports to ingest.")
    ],
    rebuild: Annotated[
        bool,
        typer.Option("--rebuild", "-r", help="Clear the knowledge base before ingesting."),
    ] = False,
    force: Annotated[
        bool,
        typer.Option("--force", "-f", help="Bypass confirmation prompt when rebuilding."),
    ] = False,
) -> None:
    """Loads entities and relationships into the knowledge base."""
    if rebuild and not force:
        typer.confirm(
            "Are you sure you want to rebuild the knowledge base? This will erase all existing data.",
            abort=True,
        )

    deps = _load()
    service = IngestionService(deps.entity_store, deps.relationship_store, deps.similarity_index)
    try:
        stats = service.ingest_path(path, rebuild=rebuild)
    except (FileNotFoundError, ValueError) as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(code=1) from e

    typer.echo(
        f"Ingested {stats.entities} entities and {stats.relationships} relationships "
        f"from {stats.files} file(s)."
    )


@app.command()
def search(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    limit: Annotated[
        int | None, typer.Option("--limit", "-l", help="Maximum number of results to return.")
    ] = None,
    strategy: Annotated[
        list[SearchStrategy] | None,
        typer.Option("--strategy", "-s", help="Strategy to run (repeatable)."),
    ] = None,
    entity_type: Annotated[
        list[str] | None, typer.Option("--type", "-t", help="Restrict to entity type (repeatable).")
    ] = None,
) -> None:
    """Runs a fused multi-strategy search."""
    deps = _load()
    options = _search_options(limit, strategy, entity_type)
    results = asyncio.run(deps.search.search(query, options))
    _print_results(results)


@app.command()
def context(
    query: Annotated[str, typer.Argument(help="Natural-language query.")],
    max_tokens: Annotated[
        int | None, typer.Option("--max-tokens", "-m", help="Token budget for the context.")
    ] = None,
    output_format: Annotated[
        ContextFormat | None, typer.Option("--format", "-f", help="Output format.")
    ] = None,
    limit: Annotated[
        int | None, typer.Option("--limit", "-l", help="Maximum number of search results.")
    ] = None,
) -> None:
    """Searches and prints an LLM-ready context block."""
    deps = _load()
    config = settings.assembly
    assembly_options = AssemblyOptions(
        max_tokens=max_tokens or config.max_tokens,
        format=output_format or config.format,
        include_sources=config.include_sources,
        group_by_type=config.group_by_type,
        min_relevance=config.min_relevance,
        project_root=settings.project_root,
    )
    service = RetrievalService(deps.search, ContextAssembler(settings.file_cache_size))
    retrieval = asyncio.run(service.retrieve(query, _search_options(limit), assembly_options))

    typer.echo(retrieval.context.context)
    truncated = " (truncated)" if retrieval.context.truncated else ""
    typer.echo(f"\n[{retrieval.context.token_count} tokens{truncated}]", err=True)


@app.command()
def neighbors(
    entity_id: Annotated[str, typer.Argument(help="Entity id to start from.")],
    depth: Annotated[int, typer.Option("--depth", "-d", min=0, help="Maximum hops.")] = 2,
    direction: Annotated[
        Direction, typer.Option("--direction", help="Edge direction to follow.")
    ] = Direction.BOTH,
) -> None:
    """Lists entities around an entity, with their distance."""
    deps = _load()
    neighborhood = deps.graph.get_neighborhood(entity_id, max_depth=depth, direction=direction)
    if neighborhood.is_empty:
        typer.echo(f"No entity or relationships found for '{entity_id}'.")
        return

    for eid, hops in sorted(neighborhood.depths.items(), key=lambda item: (item[1], item[0])):
        typer.echo(f"{hops}  {eid}")
    typer.echo(f"\n{len(neighborhood.entity_ids)} entities, {len(neighborhood.edges)} edges")


@app.command()
def paths(
    from_id: Annotated[str, typer.Argument(help="Source entity id.")],
    to_id: Annotated[str, typer.Argument(help="Target entity id.")],
    max_depth: Annotated[
        int | None, typer.Option("--max-depth", "-d", min=0, help="Maximum path length.")
    ] = None,
    limit: Annotated[
        int | None, typer.Option("--limit", "-l", help="Maximum number of paths.")
    ] = None,
) -> None:
    """Lists every directed path between two entities, shortest first."""
    deps = _load()
    result = deps.graph.find_paths(
        from_id, to_id, max_depth=max_depth, limit=limit or settings.graph.path_limit
    )
    if not result.found:
        typer.echo(f"No path from '{from_id}' to '{to_id}'.")
        return

    for path in result.paths:
        typer.echo(f"[{path.length}] " + " -> ".join(path.nodes))


@app.command()
def stats() -> None:
    """Prints knowledge-graph statistics."""
    deps = _load()
    graph_stats = deps.graph.get_graph_stats()
    typer.echo(f"Entities:       {graph_stats.entity_count}")
    typer.echo(f"Relationships:  {graph_stats.relationship_count}")
    typer.echo(f"Average degree: {graph_stats.average_degree:.2f}")
    typer.echo(f"Components:     {graph_stats.component_count}")
    for rel_type, count in sorted(graph_stats.relationships_by_type.items()):
        typer.echo(f"  {rel_type}: {count}")
    if graph_stats.top_connected:
        typer.echo("Most connected:")
        for eid, degree in graph_stats.top_connected:
            typer.echo(f"  {eid} ({degree})")


@app.command()
def serve(
    host: Annotated[
        str, typer.Option("--host", "-h", help="Host to bind the API server to.")
    ] = "127.0.0.1",
    port: Annotated[
        int, typer.Option("--port", "-p", help="Port to bind the API server to.")
    ] = 8000,
    reload: Annotated[
        bool, typer.Option("--reload", help="Enable auto-reload for development.")
    ] = False,
) -> None:
    """Starts the asynchronous FastAPI retrieval server."""
    import uvicorn

    typer.echo(f"Starting ctx-engine API server at http://{host}:{port}...")
    uvicorn.run("ctx_engine.api.main:app", host=host, port=port, reload=reload)


if __name__ == "__main__":
    app()
