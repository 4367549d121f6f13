import pytest
import pytest_asyncio

from gradebook.core.config import Settings
from gradebook.core.context import open_context


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'store.db'}",
        rabbitmq_url=None,
        max_batch_size=500,
    )


@pytest_asyncio.fixture
async def store(settings):
    context = await open_context(settings)
    try:
        yield context
    finally:
        await context.close()


class Recorder:
    """Callback che registra gli snapshot consegnati."""

    def __init__(self):
        self.snapshots = []

    def __call__(self, snapshot):
        self.snapshots.append(snapshot)

    @property
    def sizes(self):
        return [len(s) for s in self.snapshots]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def recorder_factory():
    return Recorder
