"""
Shared pytest fixtures and configuration for data-spine tests.

This module provides:
- Auto-marking of unit vs integration tests by location
- A frozen Member/Team registry and an in-memory SQLite store
- Session factory / session fixtures wired with test settings
- A seeded dataset (two teams, four members)

Usage:
    Fixtures are auto-discovered by pytest::

        def test_something(session, seeded):
            member = session.get(Member, seeded.member_ids[0])
"""

from __future__ import annotations

import sys
from collections.abc import Iterator
from pathlib import Path
from types import SimpleNamespace

import pytest

# Ensure data_spine package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from data_spine.domain import Member, Team, build_registry
from data_spine.logging import configure_logging
from data_spine.registry import EntityRegistry
from data_spine.session import Session, SessionFactory
from data_spine.settings import DataSpineSettings
from data_spine.store import SqlStore


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.path).relative_to(Path(__file__).parent)

        if test_path.parts[0] == "cli":
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


@pytest.fixture(autouse=True, scope="session")
def _quiet_logging() -> None:
    configure_logging(level="WARNING", json_format=False)


# =============================================================================
# Engine Fixtures
# =============================================================================


@pytest.fixture
def settings() -> DataSpineSettings:
    """Settings isolated from the environment's .env file."""
    return DataSpineSettings(_env_file=None)


@pytest.fixture
def registry() -> EntityRegistry:
    return build_registry()


@pytest.fixture
def store(registry: EntityRegistry) -> Iterator[SqlStore]:
    """In-memory SQLite store with the Member/Team tables."""
    s = SqlStore.sqlite(":memory:")
    s.create_tables(registry)
    s.stats.reset()
    yield s
    s.close()


@pytest.fixture
def factory(store: SqlStore, registry: EntityRegistry, settings: DataSpineSettings) -> SessionFactory:
    return SessionFactory(store, registry, settings)


@pytest.fixture
def session(factory: SessionFactory) -> Iterator[Session]:
    s = factory.session()
    s.begin()
    yield s
    s.close()


@pytest.fixture
def seeded(factory: SessionFactory, store: SqlStore) -> SimpleNamespace:
    """Two teams and four members, committed.

    ======== === ======
    username age team
    ======== === ======
    member1  10  teamA
    member2  20  teamA
    member3  30  teamB
    member4  40  teamB
    ======== === ======
    """
    with factory.session() as s:
        team_a, team_b = Team("teamA"), Team("teamB")
        s.persist(team_a)
        s.persist(team_b)
        members = [
            Member("member1", 10, team_a),
            Member("member2", 20, team_a),
            Member("member3", 30, team_b),
            Member("member4", 40, team_b),
        ]
        for m in members:
            s.persist(m)
    store.stats.reset()
    return SimpleNamespace(
        team_ids=(team_a.id, team_b.id),
        member_ids=tuple(m.id for m in members),
    )
