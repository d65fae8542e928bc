from unittest.mock import AsyncMock

import pytest
import redis.asyncio as redis

from utils import cache as cache_module
from utils.cache import MemoryResultCache, RedisResultCache
from utils.schemas import BatchStatistics, JobResult, ScoredRecord, ValidationResult


def make_result(job_id: str = "job-1") -> JobResult:
    return JobResult(job_id=job_id, source_file="/tmp/inventory.xlsx", statistics=BatchStatistics(total=2, valid=1))


class TestMemoryResultCache:
    async def test_set_get_delete(self):
        cache = MemoryResultCache(default_ttl=60)

        await cache.set("job-1", make_result())
        assert (await cache.get("job-1")).statistics.total == 2

        await cache.delete("job-1")
        assert await cache.get("job-1") is None

    async def test_expiry(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(cache_module.time, "monotonic", lambda: clock[0])
        cache = MemoryResultCache()

        await cache.set("job-1", make_result(), ttl_seconds=10)
        clock[0] += 9
        assert await cache.get("job-1") is not None

        clock[0] += 2
        assert await cache.get("job-1") is None

    async def test_miss(self):
        assert await MemoryResultCache().get("unknown") is None

    async def test_write_purges_expired_entries(self, monkeypatch):
        clock = [1000.0]
        monkeypatch.setattr(cache_module.time, "monotonic", lambda: clock[0])
        cache = MemoryResultCache()

        await cache.set("stale", make_result("stale"), ttl_seconds=10)
        await cache.set("fresh", make_result("fresh"), ttl_seconds=60)
        clock[0] += 11
        await cache.set("new", make_result("new"), ttl_seconds=60)

        assert set(cache._entries) == {"fresh", "new"}


class TestRedisResultCache:
    async def test_round_trip_with_ttl(self, fake_redis):
        cache = RedisResultCache(fake_redis, prefix="test:cache", default_ttl=21600)

        await cache.set("job-1", make_result())

        ttl = await fake_redis.ttl("test:cache:etl:result:job-1")
        assert 0 < ttl <= 21600
        stored = await cache.get("job-1")
        assert stored.job_id == "job-1"
        assert stored.source_file == "/tmp/inventory.xlsx"
        assert stored.statistics == BatchStatistics(total=2, valid=1)
        assert await cache.ping() is True

    async def test_miss_and_undecodable(self, fake_redis):
        cache = RedisResultCache(fake_redis, prefix="test:cache")
        await fake_redis.set("test:cache:etl:result:bad", b"{not json")

        assert await cache.get("missing") is None
        assert await cache.get("bad") is None

    async def test_write_falls_through_to_memory(self, fake_redis, monkeypatch, caplog):
        cache = RedisResultCache(fake_redis, prefix="test:cache")
        monkeypatch.setattr(fake_redis, "set", AsyncMock(side_effect=redis.ConnectionError("down")))
        monkeypatch.setattr(fake_redis, "get", AsyncMock(side_effect=redis.ConnectionError("down")))

        await cache.set("job-1", make_result())

        assert (await cache.get("job-1")).job_id == "job-1"
        assert "Result cache write failed" in caplog.text

    async def test_unserializable_result_stays_in_process(self, fake_redis, caplog):
        cache = RedisResultCache(fake_redis, prefix="test:cache")
        record = ScoredRecord(usuario_id="U1", ram_gb=10**20, quality_score=50, validation=ValidationResult())
        result = JobResult(job_id="job-1", records=[record])

        await cache.set("job-1", result)

        assert await fake_redis.exists("test:cache:etl:result:job-1") == 0
        assert (await cache.get("job-1")).records[0].ram_gb == 10**20
        assert "Result not serializable" in caplog.text

    async def test_delete(self, fake_redis):
        cache = RedisResultCache(fake_redis, prefix="test:cache")
        await cache.set("job-1", make_result())

        await cache.delete("job-1")

        assert await cache.get("job-1") is None


@pytest.mark.asyncio
async def test_ping_reports_unreachable_redis(unreachable_redis):
    assert await RedisResultCache(unreachable_redis).ping() is False
