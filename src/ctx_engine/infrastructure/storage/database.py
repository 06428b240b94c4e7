"""SQLite engine and table definitions for the entity and relationship stores."""

from typing import Any

from loguru import logger
from sqlalchemy import (
    JSON,
    Column,
    DateTime,
    Engine,
    Float,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    create_engine,
    event,
)
from sqlalchemy.pool import StaticPool

metadata = MetaData()

entities_table = Table(
    "entities",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("type", String, nullable=False),
    Column("qualified_name", String, nullable=True),
    Column("summary", Text, nullable=True),
    Column("content", Text, nullable=True),
    Column("file_path", String, nullable=True),
    Column("start_line", Integer, nullable=True),
    Column("end_line", Integer, nullable=True),
    Column("metadata", JSON, nullable=False, default=dict),
    Index("ix_entities_name", "name"),
    Index("ix_entities_qualified_name", "qualified_name"),
    Index("ix_entities_type", "type"),
)

relationships_table = Table(
    "relationships",
    metadata,
    Column("id", String, primary_key=True),
    Column("source_id", String, nullable=False),
    Column("target_id", String, nullable=False),
    Column("relationship_type", String, nullable=False),
    Column("weight", Float, nullable=False, default=1.0),
    Column("metadata", JSON, nullable=False, default=dict),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Index("ix_relationships_source", "source_id"),
    Index("ix_relationships_target", "target_id"),
    Index("ix_relationships_type", "relationship_type"),
)


def _configure_pragmas(dbapi_conn: Any, _record: Any) -> None:
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def create_db_engine(db_path: str) -> Engine:
    """Creates a SQLite engine and makes sure both tables exist.

    ``":memory:"`` gives a single shared in-memory connection, which is what
    the tests and throwaway pipelines use.
    """
    if db_path == ":memory:":
        engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            f"sqlite:///{db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        event.listen(engine, "connect", _configure_pragmas)

    metadata.create_all(engine)
    logger.debug("Opened knowledge base at {}", db_path)
    return engine
