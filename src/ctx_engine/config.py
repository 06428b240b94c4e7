import os
from pathlib import Path

import yaml
from loguru import logger
from pydantic import BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict

from ctx_engine.core.models import ContextFormat, SearchStrategy, StrategyWeights


class SearchConfig(BaseModel):
    """Defaults for MultiStrategySearch."""

    strategies: list[SearchStrategy] = [SearchStrategy.KEYWORD, SearchStrategy.SEMANTIC]
    limit: int = 10
    graph_depth: int = 2
    min_score: float = 0.0
    weights: StrategyWeights = StrategyWeights()
    reranker: str | None = None


class GraphConfig(BaseModel):
    """Depth ceilings for path queries."""

    max_path_depth: int = 5
    shortest_path_depth: int = 10
    path_limit: int | None = None


class ParserConfig(BaseModel):
    expand_synonyms: bool = True
    min_keyword_length: int = 2
    custom_stop_words: list[str] = []
    custom_synonyms: dict[str, list[str]] = {}


class AssemblyConfig(BaseModel):
    max_tokens: int = 4000
    format: ContextFormat = ContextFormat.MARKDOWN
    include_sources: bool = True
    group_by_type: bool = True
    min_relevance: float = 0.0


class EmbeddingConfig(BaseModel):
    type: str = "hashing"
    dimension: int = 256


class Settings(BaseSettings):
    """Global configuration for the ctx-engine application."""

    # General System
    db_path: str = "./ctx_engine.db"
    project_root: str = "."
    file_cache_size: int = 128
    log_level: str = "INFO"
    log_serialize: bool = False

    search: SearchConfig = SearchConfig()
    graph: GraphConfig = GraphConfig()
    parser: ParserConfig = ParserConfig()
    assembly: AssemblyConfig = AssemblyConfig()
    embedding: EmbeddingConfig = EmbeddingConfig()

    model_config = SettingsConfigDict(env_prefix="CTX_", env_file=".env")


_SECTIONS: dict[str, type[BaseModel]] = {
    "search": SearchConfig,
    "graph": GraphConfig,
    "parser": ParserConfig,
    "assembly": AssemblyConfig,
    "embedding": EmbeddingConfig,
}


def load_settings(config_file: str | None = None) -> Settings:
    """Loads base settings and overrides them from config.yaml."""
    base_settings = Settings()

    if config_file is None:
        config_file = os.getenv("CTX_CONFIG_FILE", "config.yaml")

    yaml_path = Path(config_file)
    if yaml_path.exists():
        with open(yaml_path, encoding="utf-8") as f:
            data = yaml.safe_load(f)

            if not data:
                return base_settings

            # Override System configuration
            if "system" in data and isinstance(data["system"], dict):
                for key, value in data["system"].items():
                    if hasattr(base_settings, key):
                        setattr(base_settings, key, value)

            # Override component sections, merging onto the defaults
            for section, model in _SECTIONS.items():
                if section in data and isinstance(data[section], dict):
                    current = getattr(base_settings, section).model_dump()
                    current.update(data[section])
                    setattr(base_settings, section, model(**current))
    else:
        logger.warning("Configuration file '{}' not found, using defaults", yaml_path)

    return base_settings


# Global singleton instance
settings = load_settings()
