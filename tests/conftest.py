"""
Pytest configuration and shared fixtures.
"""
import pytest
from pathlib import Path
from typing import AsyncGenerator, List, Optional
from uuid import uuid4

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from republisher.core.events import EventType, ProgressEvent
from republisher.database.models import Episode, Series
from republisher.database.session import build_engine, create_session_factory, init_db


@pytest.fixture
async def test_engine(tmp_path):
    """Create a file-backed SQLite engine so concurrent sessions share one database."""
    engine = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    await init_db(engine)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return create_session_factory(test_engine)


@pytest.fixture
async def test_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session


@pytest.fixture
def media_dir(tmp_path) -> Path:
    """Directory for downloaded media files."""
    path = tmp_path / "video"
    path.mkdir()
    return path


class RecordingSink:
    """Event sink that keeps every event for assertions."""

    def __init__(self):
        self.events: List[ProgressEvent] = []

    async def emit(self, event: ProgressEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> List[ProgressEvent]:
        return [event for event in self.events if event.type == event_type]


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


# Test data factories
class TestDataFactory:
    """Factory for creating test data."""

    @staticmethod
    async def create_series(
        session: AsyncSession,
        episode_count: int = 3,
        title: str = "Test Series",
        downloaded: int = 0,
        media_dir: Optional[Path] = None,
        intro: str = "A test series"
    ) -> Series:
        """
        Create a series with episodes 1..episode_count.

        The first ``downloaded`` episodes get a path; when ``media_dir`` is given
        the files are created on disk too.
        """
        series = Series(
            external_id=uuid4().hex,
            title=title,
            intro=intro,
            episode_count=episode_count,
        )
        for index in range(1, episode_count + 1):
            path = None
            if index <= downloaded:
                base = media_dir or Path("/nonexistent")
                path = str(base / f"episode_{index}.mp4")
                if media_dir:
                    Path(path).write_bytes(b"\x00" * 2048)
            series.episodes.append(Episode(
                external_id=uuid4().hex,
                title=f"Episode {index}",
                index_sequence=index,
                duration=60,
                path=path,
            ))

        session.add(series)
        await session.commit()
        return series


@pytest.fixture
def test_data_factory():
    """Test data factory fixture."""
    return TestDataFactory


# Pytest configuration
def pytest_configure(config):
    """Configure pytest."""
    config.addinivalue_line(
        "markers", "unit: mark test as a unit test"
    )
    config.addinivalue_line(
        "markers", "integration: mark test as an integration test"
    )


def pytest_collection_modifyitems(config, items):
    """Add markers based on test file location."""
    for item in items:
        if "unit" in str(item.path):
            item.add_marker(pytest.mark.unit)
        elif "integration" in str(item.path):
            item.add_marker(pytest.mark.integration)
