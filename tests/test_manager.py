import logging

import pytest

from apps.dispatcher.manager import QueueManager
from apps.dispatcher.queues import DEFAULT_QUEUES
from tests.helpers import fast_queue, wait_for_job
from utils.cache import MemoryResultCache, RedisResultCache
from utils.errors import ConfigurationError, InvalidJobPayloadError, TransportUnavailableError
from utils.schemas import BackoffPolicy, JobResult, JobStatus


async def echo(ctx):
    return {"echo": ctx.payload}


class TestRegistry:
    def test_default_queues(self, test_settings):
        manager = QueueManager(settings=test_settings)

        assert manager.queues == ["etl", "ia", "notifications", "maintenance"]
        etl = manager.get_definition("etl")
        assert (etl.concurrency, etl.attempts, etl.timeout_ms) == (3, 3, 600_000)
        assert etl.backoff == BackoffPolicy(type="exponential", delay_ms=2000)
        assert manager.get_definition("maintenance").default_priority == 10

    def test_invalid_definition_is_skipped(self, test_settings, caplog):
        manager = QueueManager(
            [{"name": "Bad Name", "concurrency": 1}, {"name": "good", "concurrency": 0}, fast_queue("ok")],
            settings=test_settings,
        )

        assert manager.queues == ["ok"]
        assert "Skipping queue" in caplog.text

    def test_duplicate_queue(self, test_settings):
        manager = QueueManager(DEFAULT_QUEUES, settings=test_settings)

        with pytest.raises(ConfigurationError, match="already registered"):
            manager.register_queue(fast_queue("etl"))

    def test_processor_for_unknown_queue(self, test_settings):
        manager = QueueManager(settings=test_settings)

        with pytest.raises(ConfigurationError):
            manager.register_processor("reports", echo)


class TestSubmit:
    async def test_unknown_queue(self, make_manager):
        manager = await make_manager()

        with pytest.raises(ConfigurationError, match="not registered"):
            await manager.submit("reports", "build", {})

    async def test_options_merge_over_queue_defaults(self, make_manager):
        manager = await make_manager()
        await manager.pause("etl")

        job = await manager.submit("etl", "process-excel", {"file_path": "a.xlsx"}, {"priority": 7, "attempts": 5})
        stored = await manager.get_job("etl", job["id"])

        assert stored.options.priority == 7
        assert stored.options.attempts == 5
        assert stored.options.timeout_ms == 600_000
        assert stored.options.backoff == BackoffPolicy(type="exponential", delay_ms=2000)
        assert stored.status == JobStatus.WAITING

    async def test_invalid_options(self, make_manager):
        manager = await make_manager()

        with pytest.raises(InvalidJobPayloadError):
            await manager.submit("etl", "process-excel", {}, {"attempts": 0})

    async def test_returns_immediately_in_durable_mode(self, make_manager):
        manager = await make_manager(fast_queue("work"))
        manager.register_processor("work", echo)

        job = await manager.submit("work", "echo", {"x": 1})

        assert set(job) == {"id"}
        done = await wait_for_job(manager, "work", job["id"])
        assert done.return_value == {"echo": {"x": 1}}

    async def test_falls_back_in_process_when_transport_fails(self, make_manager, monkeypatch, caplog):
        manager = await make_manager(fast_queue("work"))
        manager.register_processor("work", echo)

        async def unreachable(job):
            raise TransportUnavailableError("connection refused")

        monkeypatch.setattr(manager._backend.store, "add", unreachable)

        with caplog.at_level(logging.WARNING):
            job = await manager.submit("work", "echo", {"x": 2})

        stored = await manager.get_job("work", job["id"])
        assert stored.status == JobStatus.COMPLETED
        assert stored.return_value == {"echo": {"x": 2}}
        assert "degraded" in caplog.text


class TestBackendSelection:
    async def test_auto_degrades_when_redis_unreachable(self, test_settings, unreachable_redis, caplog):
        settings = test_settings.model_copy(update={"QUEUE_BACKEND": "auto"})
        manager = QueueManager([fast_queue("work")], settings=settings, redis_client=unreachable_redis)
        manager.register_processor("work", echo)

        await manager.start()
        try:
            assert manager.mode == "inline"
            assert manager.degraded is True
            assert isinstance(manager.cache, MemoryResultCache)

            job = await manager.submit("work", "echo", {"x": 3})

            # In-process execution finishes inside submit()
            stored = await manager.get_job("work", job["id"])
            assert stored.status == JobStatus.COMPLETED
            assert "Redis unreachable" in caplog.text
        finally:
            await manager.close()

    async def test_redis_backend_requires_redis(self, test_settings, unreachable_redis):
        settings = test_settings.model_copy(update={"QUEUE_BACKEND": "redis"})
        manager = QueueManager(settings=settings, redis_client=unreachable_redis)

        with pytest.raises(TransportUnavailableError):
            await manager.start()

    async def test_unknown_backend(self, test_settings):
        settings = test_settings.model_copy(update={"QUEUE_BACKEND": "kafka"})

        with pytest.raises(ConfigurationError):
            await QueueManager(settings=settings).start()

    async def test_durable_on_redis(self, fake_redis, make_manager):
        manager = await make_manager(fast_queue("work"), backend="auto", redis_client=fake_redis)
        manager.register_processor("work", echo)

        job = await manager.submit("work", "echo", {"x": 4})
        done = await wait_for_job(manager, "work", job["id"])

        assert manager.mode == "durable"
        assert isinstance(manager.cache, RedisResultCache)
        assert done.return_value == {"echo": {"x": 4}}
        assert await fake_redis.exists(f"{manager.settings.QUEUE_PREFIX}:work:job:{job['id']}")

    async def test_inline_without_processor_fails_job(self, make_manager):
        manager = await make_manager(fast_queue("work"), backend="inline")

        job = await manager.submit("work", "orphan", {})
        stored = await manager.get_job("work", job["id"])

        assert stored.status == JobStatus.FAILED
        assert "No processor registered" in stored.failure_reason

    async def test_inline_makes_a_single_attempt(self, make_manager):
        manager = await make_manager(fast_queue("work", attempts=3), backend="inline")
        calls = 0

        async def explode(ctx):
            nonlocal calls
            calls += 1
            raise RuntimeError("no retry here")

        manager.register_processor("work", explode)
        job = await manager.submit("work", "explode", {})

        assert (await manager.get_job("work", job["id"])).status == JobStatus.FAILED
        assert calls == 1


class TestQueueOperations:
    async def test_clean_completed(self, make_manager):
        manager = await make_manager(fast_queue("work"))
        manager.register_processor("work", echo)
        ids = [(await manager.submit("work", "echo", {}))["id"] for _ in range(3)]
        for job_id in ids:
            await wait_for_job(manager, "work", job_id)

        assert await manager.clean("work", older_than_ms=0, limit=2) == 2
        assert await manager.clean("work", older_than_ms=0) == 1

    async def test_clean_rejects_unknown_status(self, make_manager):
        manager = await make_manager(fast_queue("work"))

        with pytest.raises(ValueError):
            await manager.clean("work", status="active")

    async def test_get_result(self, make_manager):
        manager = await make_manager(fast_queue("work"))
        await manager.cache.set("job-1", JobResult(job_id="job-1"))

        assert (await manager.get_result("job-1")).job_id == "job-1"
        assert await manager.get_result("job-2") is None

    async def test_queue_stats_and_health(self, make_manager):
        manager = await make_manager(fast_queue("work"))
        manager.register_processor("work", echo)
        await manager.pause("work")
        await manager.submit("work", "echo", {})

        stats = await manager.get_queue_stats()
        health = await manager.health_check()

        assert stats["work"]["paused"] is True
        assert stats["work"]["counts"]["waiting"] == 1
        assert stats["work"]["concurrency"] == 2
        assert health["started"] is True
        assert health["mode"] == "durable"
        assert health["processors"] == ["work"]
