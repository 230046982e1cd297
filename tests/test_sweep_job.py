from contextlib import asynccontextmanager

from onemeal.jobs import sweep as sweep_job


async def test_run_sweep_reports_success(redis_client, monkeypatch):
    @asynccontextmanager
    async def fake_open_redis(url=None):
        yield redis_client

    monkeypatch.setattr(sweep_job, "open_redis", fake_open_redis)

    assert await sweep_job.run_sweep() == 0


async def test_run_sweep_exits_non_zero_without_store():
    # nothing listens on port 1
    assert await sweep_job.run_sweep("redis://127.0.0.1:1/0") == 1
