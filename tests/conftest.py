"""
Pytest configuration and fixtures.
"""

import os
import sys
from datetime import datetime, timezone

import pytest

# Add app directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from app.config import Settings  # noqa: E402
from app.services.admission_gate import AdmissionGate  # noqa: E402
from app.services.job_store import InMemoryJobStore  # noqa: E402
from app.services.local_storage_service import LocalObjectStorage  # noqa: E402
from app.services.storage_accountant import StorageAccountant  # noqa: E402
from app.services.subscriptions import StaticSubscriptionDirectory  # noqa: E402
from app.services.work_queue import InMemoryWorkQueue  # noqa: E402

CRON_SECRET = "test-cron-secret"


class FrozenClock:
    """Settable clock for time-dependent services."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class SizedEntryStorage(LocalObjectStorage):
    """
    Local storage whose file sizes can be declared without writing the bytes.

    Quota tests deal in gigabytes; writing those to disk is not an option.
    """

    def __init__(self, root):
        super().__init__(root)
        self.declared_sizes: dict[tuple[str, str], int] = {}

    async def put(self, area, path: str, size: int):
        await self.write(area, path, b"")
        self.declared_sizes[(area.value, path.strip("/"))] = size

    async def list_page(self, area, folder, limit, cursor=None):
        page = await super().list_page(area, folder, limit, cursor)
        entries = []
        for entry in page.entries:
            key = (area.value, f"{folder.strip('/')}/{entry.name}")
            if not entry.is_folder and key in self.declared_sizes:
                entry = type(entry)(name=entry.name, size=self.declared_sizes[key])
            entries.append(entry)
        page.entries = entries
        return page


@pytest.fixture
def settings(tmp_path):
    """Settings for tests: local storage, in-memory queue and a cron secret."""
    return Settings(
        _env_file=None,
        storage_backend="local",
        local_storage_root=str(tmp_path / "storage"),
        queue_backend="memory",
        job_store_backend="memory",
        cron_secret=CRON_SECRET,
        premium_account_ids=["premium-user"],
    )


@pytest.fixture
def storage(tmp_path):
    return SizedEntryStorage(tmp_path / "storage")


@pytest.fixture
def subscriptions():
    return StaticSubscriptionDirectory(["premium-user"])


@pytest.fixture
def accountant(storage, settings):
    return StorageAccountant(storage, settings=settings)


@pytest.fixture
def gate(accountant, subscriptions, settings):
    return AdmissionGate(accountant, subscriptions, settings=settings)


@pytest.fixture
def clock():
    return FrozenClock(datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def job_store(clock):
    return InMemoryJobStore(clock=clock)


@pytest.fixture
def work_queue():
    return InMemoryWorkQueue()
