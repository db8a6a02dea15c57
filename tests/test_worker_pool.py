"""
WorkerPool 테스트

동시성 제한, 재시도, 일시정지/재개, 정상 종료, 브로커 사용 불가 처리 테스트
"""

import asyncio
import logging

import pytest

from conftest import FakeBroker
from queue_worker.database.redis import BrokerUnavailable
from queue_worker.workers.worker_pool import WorkerPool, create_worker

async def test_concurrency_is_bounded(wait_until):
    """동시에 처리되는 작업 수는 concurrency를 넘지 않음"""
    print("🔥 동시성 제한 테스트!")

    broker = FakeBroker('report')
    running = 0
    max_seen = 0

    async def processor(job):
        nonlocal running, max_seen
        running += 1
        max_seen = max(max_seen, running)
        await asyncio.sleep(0.02)
        running -= 1
        return {'ok': True}

    pool = WorkerPool(broker, processor, concurrency=2)
    jobs = [broker.add('usage_report') for _ in range(6)]
    pool.start()

    await wait_until(lambda: len(broker.completed) == len(jobs))
    await pool.close()

    assert max_seen == 2
    assert pool.get_stats()['completed'] == 6
    print(f"  ✅ 최대 동시 처리: {max_seen}")

async def test_invalid_concurrency():
    with pytest.raises(ValueError):
        WorkerPool(FakeBroker('import'), None, concurrency=0)

async def test_failed_job_is_retried_until_attempts_exhausted(wait_until):
    broker = FakeBroker('import')

    async def processor(job):
        raise RuntimeError("boom")

    pool = WorkerPool(broker, processor, concurrency=1)
    job = broker.add('process_file', max_attempts=2)
    pool.start()

    await wait_until(lambda: job.id in broker.failed)
    await pool.close()

    assert job.attempts_made == 2
    assert broker.failed[job.id] == "boom"
    assert pool.stats.failed == 2

async def test_pause_and_resume(wait_until):
    """일시정지 중에는 새 작업을 처리하지 않음 (reserve 중에 받은 작업은 반납)"""
    print("\n🔥 일시정지/재개 테스트!")

    broker = FakeBroker('campaign')
    processed = []

    async def processor(job):
        processed.append(job.id)
        return {'done': job.id}

    # 소비 태스크가 reserve에서 기다리는 중에 일시정지
    pool = WorkerPool(broker, processor, concurrency=2, poll_timeout=5.0)
    pool.start()
    await asyncio.sleep(0.01)
    await pool.pause()
    assert pool.is_paused

    job = broker.add('send_message')
    await wait_until(lambda: job.id in broker.released)
    await asyncio.sleep(0.05)
    assert processed == [], "일시정지 후 받은 작업은 처리하지 않음"
    assert broker.queue.qsize() == 1, "반납된 작업은 큐에 남아 있음"

    await pool.resume()
    await wait_until(lambda: job.id in broker.completed)
    await pool.close()
    print("  ✅ 재개 후 처리 완료")

async def test_close_waits_for_in_flight_job(wait_until):
    """종료는 처리 중인 작업이 끝날 때까지 기다린 뒤 브로커를 닫음"""
    print("\n🔥 정상 종료 테스트!")

    broker = FakeBroker('import')
    release = asyncio.Event()

    async def processor(job):
        await release.wait()
        return {'finished': True}

    pool = WorkerPool(broker, processor, concurrency=3)
    job = broker.add('process_file')
    pool.start()
    await wait_until(lambda: pool.active_jobs == 1)

    close_task = asyncio.create_task(pool.close())
    await asyncio.sleep(0.05)
    assert not close_task.done()
    assert not pool.is_running

    release.set()
    await close_task

    assert broker.completed[job.id] == {'finished': True}
    assert broker.closed
    await pool.close()  # 두 번 호출해도 안전
    print("  ✅ 처리 중 작업 완료 후 종료")

async def test_create_worker_returns_none_when_broker_unavailable(redis_config, caplog):
    """브로커를 쓸 수 없으면 예외 없이 None + 경고 로그"""
    print("\n🔥 브로커 사용 불가 테스트!")

    async def unavailable(config, queue_name):
        return BrokerUnavailable("redis not installed")

    async def broken(config, queue_name):
        raise RuntimeError("bad url")

    async def processor(job):
        return None

    with caplog.at_level(logging.WARNING):
        assert await create_worker('report', processor, 3, redis_config, connect=unavailable) is None
        assert await create_worker('report', processor, 3, redis_config, connect=broken) is None

    warnings = [record for record in caplog.records if record.levelno == logging.WARNING]
    assert len(warnings) == 2
    assert 'redis not installed' in warnings[0].getMessage()
    print("  ✅ None 반환 및 경고 로그 확인")

async def test_create_worker_with_invalid_concurrency_returns_none(redis_config, fake_connect):
    async def processor(job):
        return None

    assert await create_worker('import', processor, 0, redis_config, connect=fake_connect) is None
    assert fake_connect.brokers['import'].closed

async def test_create_worker_starts_pool(redis_config, fake_connect, wait_until):
    async def processor(job):
        return {'path': '/reports/x.csv'}

    pool = await create_worker('report', processor, 3, redis_config, connect=fake_connect)
    broker = fake_connect.brokers['report']
    job = broker.add('campaign_report')

    await wait_until(lambda: job.id in broker.completed)
    assert pool.is_running
    assert pool.concurrency == 3
    await pool.close()
