from pathlib import Path
from typing import Any, AsyncGenerator, Callable, Iterable, Sequence

import fakeredis
import pytest
import redis.asyncio as redis
from openpyxl import Workbook
from redis.asyncio.retry import Retry
from redis.backoff import NoBackoff

from apps.dispatcher.manager import QueueManager
from tests.helpers import INVENTORY_HEADERS, inventory_row
from utils.config import Settings
from utils.schemas import QueueDefinition


@pytest.fixture
def write_workbook(tmp_path: Path) -> Callable[..., Path]:
    """Factory writing rows to the first worksheet of a new .xlsx file."""

    def _write(rows: Iterable[Sequence[Any]], name: str = "inventory.xlsx") -> Path:
        workbook = Workbook()
        sheet = workbook.active
        for row in rows:
            sheet.append(list(row))
        path = tmp_path / name
        workbook.save(path)
        return path

    return _write


@pytest.fixture
def inventory_workbook(write_workbook: Callable[..., Path]) -> Path:
    """Three rows: compliant, missing RAM (HO), HDD with slow HO download."""
    return write_workbook(
        [
            INVENTORY_HEADERS,
            inventory_row(),
            inventory_row(
                **{
                    "Usuario": "U002",
                    "Atención": "Home Office",
                    "Memoria RAM": None,
                    "Velocidad Bajada": "50 Mbps",
                }
            ),
            inventory_row(
                **{
                    "Usuario": "U003",
                    "Atención": "Home Office",
                    "Memoria RAM": "16 GB",
                    "Tipo Disco": "HDD",
                    "Capacidad Disco": "250 GB",
                    "Velocidad Bajada": "10 Mbps",
                }
            ),
        ]
    )


@pytest.fixture
def test_settings(tmp_path: Path) -> Settings:
    return Settings(
        QUEUE_BACKEND="memory",
        QUEUE_POLL_INTERVAL=0.01,
        WORKER_SHUTDOWN_TIMEOUT=1.0,
        REDIS_CONNECT_RETRIES=1,
        UPLOAD_DIR=str(tmp_path),
    )


@pytest.fixture
async def fake_redis() -> AsyncGenerator[fakeredis.FakeAsyncRedis, None]:
    client = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer())
    yield client
    await client.aclose()


@pytest.fixture
async def make_manager(test_settings: Settings) -> AsyncGenerator[Callable[..., Any], None]:
    """Factory for started managers; every manager is closed at teardown."""
    managers: list[QueueManager] = []

    async def _make(*definitions: QueueDefinition, backend: str = "memory", **kwargs: Any) -> QueueManager:
        settings = test_settings.model_copy(update={"QUEUE_BACKEND": backend})
        manager = QueueManager(definitions or None, settings=settings, **kwargs)
        await manager.start()
        managers.append(manager)
        return manager

    yield _make

    for manager in managers:
        await manager.close()


@pytest.fixture
async def unreachable_redis() -> AsyncGenerator[redis.Redis, None]:
    """Client pointed at a closed port, without connection retries."""
    client = redis.Redis(host="127.0.0.1", port=1, socket_connect_timeout=0.2, retry=Retry(NoBackoff(), 0))
    yield client
    await client.aclose()
