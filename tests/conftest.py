"""
공용 테스트 픽스처

Redis 없이 워커 풀을 돌리기 위한 인메모리 브로커 포함
"""

import asyncio
from dataclasses import replace
from typing import Any, Dict, List, Optional

import pytest

from queue_worker.config import RedisConnectionConfig
from queue_worker.models import Job

class FakeBroker:
    """RedisBroker와 같은 인터페이스의 인메모리 큐"""

    def __init__(self, queue_name: str):
        self.queue_name = queue_name
        self.queue: asyncio.Queue = asyncio.Queue()
        self.completed: Dict[str, Any] = {}
        self.failed: Dict[str, str] = {}
        self.progress: Dict[str, List[int]] = {}
        self.released: List[str] = []
        self.closed = False
        self._next_id = 0

    def add(self, job_type: str, payload: Optional[Dict[str, Any]] = None, max_attempts: int = 1) -> Job:
        self._next_id += 1
        job = Job(
            id=str(self._next_id),
            type=job_type,
            queue_name=self.queue_name,
            payload=payload or {},
            max_attempts=max_attempts,
            reporter=self.update_progress,
        )
        self.queue.put_nowait(job)
        return job

    async def update_progress(self, job: Job, value: int) -> None:
        self.progress.setdefault(job.id, []).append(value)

    async def reserve(self, timeout: Optional[float] = None) -> Optional[Job]:
        try:
            return await asyncio.wait_for(self.queue.get(), timeout or 0.05)
        except asyncio.TimeoutError:
            return None

    async def complete(self, job: Job, result: Optional[Dict[str, Any]]) -> None:
        job.result = result
        self.completed[job.id] = result

    async def fail(self, job: Job, error: str, retry: bool = True) -> str:
        job.error = error
        job.attempts_made += 1
        if retry and job.attempts_made < job.max_attempts:
            self.queue.put_nowait(job)
            return "RETRY"
        self.failed[job.id] = error
        return "FAILED"

    async def release(self, job: Job) -> None:
        self.released.append(job.id)
        self.queue.put_nowait(job)

    async def close(self) -> None:
        self.closed = True

class ProgressRecorder:
    """Job.reporter로 넘겨 진행률 보고를 기록"""

    def __init__(self):
        self.values: List[int] = []

    async def __call__(self, job: Job, value: int) -> None:
        self.values.append(value)

def make_job(job_type: str, payload: Dict[str, Any], queue_name: str = "import"):
    recorder = ProgressRecorder()
    job = Job(id="job-1", type=job_type, queue_name=queue_name, payload=payload, reporter=recorder)
    return job, recorder

@pytest.fixture
def redis_config():
    return RedisConnectionConfig(
        url=None,
        host="localhost",
        port=6379,
        db=0,
        password=None,
        max_connections=5,
        connect_timeout=0.5,
        key_prefix="test",
        blocking_timeout=1,
        enabled=True,
    )

@pytest.fixture
def disabled_redis_config(redis_config):
    return replace(redis_config, enabled=False)

@pytest.fixture
def fake_connect():
    """connect_broker 대신 FakeBroker를 돌려주는 연결 함수 (생성된 브로커 기록)"""
    brokers: Dict[str, FakeBroker] = {}

    async def connect(config, queue_name):
        brokers[queue_name] = FakeBroker(queue_name)
        return brokers[queue_name]

    connect.brokers = brokers
    return connect

@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout: float = 2.0):
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("condition not met before timeout")
            await asyncio.sleep(0.01)
    return _wait_until
