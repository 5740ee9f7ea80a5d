"""Shared test fixtures."""
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from pricesync.models.property import Property, PropertyIntegration  # noqa: F401
from pricesync.models.sync import SyncOperation  # noqa: F401


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


def seed_property(
    engine,
    property_id: str,
    *,
    external_id: str = "1001",
    base_price: float = 100.0,
    api_key: str = "key-123",
    sync_status: str = "active",
    sync_enabled: bool = True,
    name: str = None,
) -> PropertyIntegration:
    """Insert a Property with its integration (integration_id = 'int-<property_id>')."""
    with Session(engine) as s:
        s.add(Property(
            id=property_id,
            name=name or f"Villa {property_id}",
            base_price_per_day=base_price,
            min_price_per_day=50.0,
            channel_room_type_id=77,
        ))
        integration = PropertyIntegration(
            integration_id=f"int-{property_id}",
            property_id=property_id,
            external_property_id=external_id,
            api_key=api_key,
            sync_status=sync_status,
            sync_enabled=sync_enabled,
        )
        s.add(integration)
        s.commit()
        s.refresh(integration)
        return integration


@pytest.fixture(name="seeded_integration")
def seeded_integration_fixture(engine) -> PropertyIntegration:
    """A persisted property 'p1' bound to channel property 1001."""
    return seed_property(engine, "p1")
