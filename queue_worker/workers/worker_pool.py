"""
Worker Pool

큐 하나를 정해진 동시성으로 소비하는 비동기 워커 풀
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from queue_worker.config import RedisConnectionConfig
from queue_worker.database.redis import BrokerUnavailable, connect_broker
from queue_worker.exceptions import UnknownJobTypeError
from queue_worker.models import Job
from queue_worker.monitoring.metrics import record_job

logger = logging.getLogger(__name__)

JobProcessorFn = Callable[[Job], Awaitable[Optional[Dict[str, Any]]]]
BrokerConnector = Callable[[RedisConnectionConfig, str], Awaitable[Any]]

class JobBroker(Protocol):
    queue_name: str

    async def reserve(self, timeout: Optional[float] = None) -> Optional[Job]:
        ...

    async def complete(self, job: Job, result: Optional[Dict[str, Any]]) -> None:
        ...

    async def fail(self, job: Job, error: str, retry: bool = True) -> str:
        ...

    async def release(self, job: Job) -> None:
        ...

    async def close(self) -> None:
        ...

@dataclass
class PoolStats:
    """풀 처리 통계"""
    completed: int = 0
    failed: int = 0
    errors: int = 0
    start_time: float = 0
    last_job_time: float = 0

class WorkerPool:
    """브로커 큐 하나 + 작업 처리 함수 + 동시성 제한

    concurrency개의 소비 태스크가 각자 한 번에 작업 하나씩만 가져오므로
    동시에 처리되는 작업 수는 concurrency를 넘지 않는다.
    """

    def __init__(
        self,
        broker: JobBroker,
        processor: JobProcessorFn,
        concurrency: int,
        name: Optional[str] = None,
        poll_timeout: Optional[float] = None,
        error_backoff: float = 1.0
    ):
        if concurrency < 1:
            raise ValueError(f"concurrency must be a positive integer, got {concurrency}")

        self.broker = broker
        self.queue_name = broker.queue_name
        self.name = name or self.queue_name
        self.concurrency = concurrency
        self.poll_timeout = poll_timeout
        self.error_backoff = error_backoff
        self._processor = processor

        self.stats = PoolStats()
        self._tasks: Dict[int, asyncio.Task] = {}
        self._busy: set = set()
        self._resume_event = asyncio.Event()
        self._resume_event.set()
        self._started = False
        self._closing = False
        self._closed = False

    @property
    def is_running(self) -> bool:
        return self._started and not self._closing

    @property
    def is_paused(self) -> bool:
        return not self._resume_event.is_set()

    @property
    def active_jobs(self) -> int:
        return len(self._busy)

    def start(self) -> None:
        """소비 태스크 시작 (실행 중인 이벤트 루프 필요)"""
        if self._started:
            logger.warning(f"워커 풀이 이미 실행 중입니다: {self.name}")
            return

        self._started = True
        self.stats.start_time = time.time()
        for slot in range(self.concurrency):
            self._tasks[slot] = asyncio.create_task(
                self._consume(slot), name=f"{self.name}-worker-{slot}"
            )
        logger.info(f"🚀 {self.name} 워커 시작 (concurrency={self.concurrency})")

    async def _consume(self, slot: int) -> None:
        while not self._closing:
            await self._resume_event.wait()
            if self._closing:
                break

            try:
                job = await self.broker.reserve(self.poll_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.stats.errors += 1
                logger.error(f"{self.name} 워커 오류 (reserve): {e}")
                await asyncio.sleep(self.error_backoff)
                continue

            if job is None:
                continue

            # reserve로 기다리는 사이 일시정지/종료됐으면 처리하지 않고 반납
            if self.is_paused or self._closing:
                await self._release(job)
                continue

            self._busy.add(slot)
            try:
                await self._process(job)
            finally:
                self._busy.discard(slot)

    async def _release(self, job: Job) -> None:
        try:
            await self.broker.release(job)
            logger.info(f"↩️ {self.name} 일시정지 중 받은 작업 반납: jobId={job.id}")
        except Exception as e:
            self.stats.errors += 1
            logger.error(f"{self.name} 워커 오류 (release): {e}")

    async def _process(self, job: Job) -> None:
        start_time = time.time()
        try:
            result = await self._processor(job)

        except Exception as e:
            duration = time.time() - start_time
            self.stats.failed += 1
            record_job(self.queue_name, job.type, 'failed', duration)
            error = str(e) or type(e).__name__
            try:
                outcome = await self.broker.fail(job, error, retry=not isinstance(e, UnknownJobTypeError))
            except Exception as broker_error:
                self.stats.errors += 1
                logger.error(f"{self.name} 워커 오류 (fail 기록): {broker_error}")
                return
            logger.error(
                f"❌ {self.name} 작업 실패: jobId={job.id} jobName={job.type} "
                f"error={error} attempts={job.attempts_made} -> {outcome}"
            )
            return

        duration = time.time() - start_time
        self.stats.completed += 1
        self.stats.last_job_time = time.time()
        record_job(self.queue_name, job.type, 'completed', duration)
        try:
            await self.broker.complete(job, result)
        except Exception as broker_error:
            self.stats.errors += 1
            logger.error(f"{self.name} 워커 오류 (complete 기록): {broker_error}")
            return

        path = result.get('path') if isinstance(result, dict) else None
        logger.info(
            f"✅ {self.name} 작업 완료: jobId={job.id} jobName={job.type} ({duration:.2f}s)"
            + (f" path={path}" if path else "")
        )

    async def pause(self) -> None:
        """새 작업 수신 중지 (처리 중인 작업은 계속 진행)"""
        self._resume_event.clear()
        logger.info(f"⏸️ {self.name} 워커 일시정지")

    async def resume(self) -> None:
        self._resume_event.set()
        logger.info(f"▶️ {self.name} 워커 재개")

    async def close(self) -> None:
        """새 작업 수신 중지, 처리 중인 작업 완료 대기, 브로커 연결 해제"""
        if self._closed or self._closing:
            return

        self._closing = True
        self._resume_event.set()
        logger.info(f"🛑 {self.name} 워커 종료 중... (처리 중 {len(self._busy)}개)")

        # 대기 중인 소비 태스크만 취소, 작업 중인 태스크는 끝날 때까지 기다림
        for slot, task in self._tasks.items():
            if slot not in self._busy:
                task.cancel()
        await asyncio.gather(*self._tasks.values(), return_exceptions=True)

        await self.broker.close()
        self._closed = True
        logger.info(f"✅ {self.name} 워커 종료 완료")

    def get_stats(self) -> Dict[str, Any]:
        runtime = time.time() - self.stats.start_time if self.stats.start_time > 0 else 0
        return {
            "name": self.name,
            "queue_name": self.queue_name,
            "concurrency": self.concurrency,
            "is_running": self.is_running,
            "is_paused": self.is_paused,
            "active_jobs": self.active_jobs,
            "runtime_seconds": runtime,
            "completed": self.stats.completed,
            "failed": self.stats.failed,
            "errors": self.stats.errors,
        }

async def create_worker(
    queue_name: str,
    processor: JobProcessorFn,
    concurrency: int,
    config: RedisConnectionConfig,
    connect: Optional[BrokerConnector] = None
) -> Optional[WorkerPool]:
    """브로커에 연결하고 풀을 시작. 브로커를 쓸 수 없으면 None (예외 없음)"""
    connect = connect or connect_broker
    try:
        broker = await connect(config, queue_name)
    except Exception as e:
        broker = BrokerUnavailable(f"broker connection failed: {e}")

    if isinstance(broker, BrokerUnavailable):
        logger.warning(f"⚠️ 브로커 사용 불가, {queue_name} 워커를 시작하지 않음: {broker.reason}")
        return None

    try:
        pool = WorkerPool(broker, processor, concurrency, name=queue_name)
        pool.start()
    except Exception as e:
        logger.error(f"❌ {queue_name} 워커 생성 실패: {e}")
        await broker.close()
        return None

    return pool
