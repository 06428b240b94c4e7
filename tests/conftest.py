"""Pytest configuration and fixtures."""

import pytest
from loguru import logger

from ctx_engine.core.models import EdgeInput
from ctx_engine.infrastructure.storage.database import create_db_engine
from ctx_engine.infrastructure.storage.entities import SqlEntityStore
from ctx_engine.infrastructure.storage.relationships import SqlRelationshipStore


@pytest.fixture
def caplog(caplog):
    """Enable Loguru logging to be captured by pytest's caplog fixture."""
    import logging

    class PropagateHandler(logging.Handler):
        def emit(self, record):
            logging.getLogger(record.name).handle(record)

    handler_id = logger.add(PropagateHandler(), format="{message}")
    yield caplog
    logger.remove(handler_id)


@pytest.fixture
def db_engine():
    """A fresh in-memory SQLite database per test."""
    engine = create_db_engine(":memory:")
    yield engine
    engine.dispose()


@pytest.fixture
def entity_store(db_engine):
    return SqlEntityStore(db_engine)


@pytest.fixture
def relationship_store(db_engine):
    return SqlRelationshipStore(db_engine)


@pytest.fixture
def diamond_graph(relationship_store):
    """A->B, A->C, B->C, C->D."""
    relationship_store.create_many(
        [
            EdgeInput(source_id="A", target_id="B", relationship_type="CALLS"),
            EdgeInput(source_id="A", target_id="C", relationship_type="CALLS"),
            EdgeInput(source_id="B", target_id="C", relationship_type="CALLS"),
            EdgeInput(source_id="C", target_id="D", relationship_type="CALLS"),
        ]
    )
    return relationship_store
