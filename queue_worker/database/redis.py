"""
Redis 큐 브로커
redis.asyncio를 사용한 비동기 작업 큐 (wait -> active -> completed/failed)

키 구조:
    {prefix}:{queue}:id           작업 ID 카운터
    {prefix}:{queue}:wait         대기 중인 작업 ID 리스트
    {prefix}:{queue}:active       처리 중인 작업 ID 리스트
    {prefix}:{queue}:completed    완료된 작업 ID 리스트 (최근 N개)
    {prefix}:{queue}:failed       최종 실패한 작업 ID 리스트 (최근 N개)
    {prefix}:{queue}:job:{id}     작업 해시
    {prefix}:{queue}:job:{id}:lock  처리 중 작업 잠금 (TTL, 처리하는 동안 갱신)
    {prefix}:{queue}:stalled      잠금 없이 active에 남은 작업 ID (다음 점검 때 대기열로 복구)
"""

import asyncio
import json
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Union

import redis.asyncio as redis
from redis.exceptions import WatchError

from queue_worker.config import RedisConnectionConfig
from queue_worker.exceptions import BrokerError
from queue_worker.models import Job

logger = logging.getLogger(__name__)

# 완료/실패 기록 보관 개수
RETAIN_FINISHED = 1000

def _now_ms() -> int:
    return int(time.time() * 1000)

@dataclass(frozen=True)
class BrokerUnavailable:
    """브로커를 사용할 수 없을 때 반환되는 결과 (예외 대신 사용)"""
    reason: str

class RedisBroker:
    """큐 하나에 대한 Redis 연결 풀 및 작업 상태 관리자"""

    def __init__(self, config: RedisConnectionConfig, queue_name: str, client: Optional[redis.Redis] = None):
        self.config = config
        self.queue_name = queue_name
        self._closed = False
        # 이 브로커가 잡은 잠금의 소유자 표시
        self._token = uuid.uuid4().hex
        self._lock_tasks: Dict[str, asyncio.Task] = {}
        self._stalled_task: Optional[asyncio.Task] = None

        if client is not None:
            self._pool = None
        elif config.url:
            self._pool = redis.ConnectionPool.from_url(
                config.url,
                max_connections=config.max_connections,
                socket_connect_timeout=config.connect_timeout,
                encoding='utf-8',
                decode_responses=True
            )
        else:
            self._pool = redis.ConnectionPool(
                host=config.host,
                port=config.port,
                db=config.db,
                password=config.password,
                max_connections=config.max_connections,
                socket_connect_timeout=config.connect_timeout,
                encoding='utf-8',
                decode_responses=True
            )
        self._redis = client if client is not None else redis.Redis(connection_pool=self._pool)

        prefix = f"{config.key_prefix}:{queue_name}"
        self._id_key = f"{prefix}:id"
        self._wait_key = f"{prefix}:wait"
        self._active_key = f"{prefix}:active"
        self._completed_key = f"{prefix}:completed"
        self._failed_key = f"{prefix}:failed"
        self._stalled_key = f"{prefix}:stalled"
        self._job_prefix = f"{prefix}:job:"

        logger.info(f"Redis 브로커 초기화 - Queue: {queue_name}")

    def _job_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}"

    def _lock_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}:lock"

    async def health_check(self) -> bool:
        """Redis 연결 상태 확인"""
        try:
            result = await self._redis.ping()
            logger.debug(f"Redis 헬스체크 성공: {result}")
            return bool(result)
        except Exception as e:
            logger.error(f"Redis 헬스체크 실패: {e}")
            return False

    # ======= 생산자 측 =======

    async def add_job(self, name: str, payload: Dict[str, Any], max_attempts: Optional[int] = None) -> str:
        """작업을 큐에 추가하고 작업 ID 반환 (max_attempts 기본값은 JOB_MAX_ATTEMPTS)"""
        if max_attempts is None:
            max_attempts = self.config.max_attempts
        try:
            job_id = str(await self._redis.incr(self._id_key))
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.hset(self._job_key(job_id), mapping={
                    'name': name,
                    'data': json.dumps(payload, ensure_ascii=False),
                    'progress': 0,
                    'attemptsMade': 0,
                    'maxAttempts': max(1, int(max_attempts)),
                    'status': 'waiting',
                    'timestamp': _now_ms(),
                })
                pipe.lpush(self._wait_key, job_id)
                await pipe.execute()

            logger.debug(f"작업 추가 완료: {self.queue_name} -> {job_id} ({name})")
            return job_id
        except Exception as e:
            logger.error(f"작업 추가 실패: {e}")
            raise BrokerError(f"failed to add job to {self.queue_name}: {e}") from e

    # ======= 소비자 측 =======

    async def reserve(self, timeout: Optional[float] = None) -> Optional[Job]:
        """대기 리스트에서 작업 하나를 active로 옮기고 반환 (블로킹)"""
        timeout = timeout or self.config.blocking_timeout
        job_id = await self._redis.blmove(self._wait_key, self._active_key, timeout, "RIGHT", "LEFT")
        if job_id is None:
            return None

        data = await self._redis.hgetall(self._job_key(job_id))
        if not data:
            # 해시가 없는 고아 ID는 버림
            logger.warning(f"작업 데이터 없음, 건너뜀: {self.queue_name} -> {job_id}")
            await self._redis.lrem(self._active_key, 1, job_id)
            return None

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.set(self._lock_key(job_id), self._token, px=self.config.lock_duration_ms)
            pipe.hset(self._job_key(job_id), mapping={
                'status': 'active',
                'processedOn': _now_ms(),
            })
            await pipe.execute()
        self._lock_tasks[job_id] = asyncio.create_task(self._renew_lock(job_id))

        try:
            payload = json.loads(data.get('data') or '{}')
        except (json.JSONDecodeError, TypeError):
            payload = {'raw': data.get('data')}

        return Job(
            id=job_id,
            type=data.get('name', ''),
            queue_name=self.queue_name,
            payload=payload,
            progress=int(data.get('progress') or 0),
            attempts_made=int(data.get('attemptsMade') or 0),
            max_attempts=int(data.get('maxAttempts') or 1),
            reporter=self.update_progress,
        )

    async def _renew_lock(self, job_id: str) -> None:
        """처리하는 동안 잠금 TTL을 주기적으로 연장"""
        interval = self.config.lock_duration_ms / 2000
        while True:
            await asyncio.sleep(interval)
            try:
                await self._redis.pexpire(self._lock_key(job_id), self.config.lock_duration_ms)
            except Exception as e:
                logger.warning(f"작업 잠금 연장 실패: {self.queue_name} -> {job_id}: {e}")

    def _stop_renewal(self, job_id: str) -> None:
        task = self._lock_tasks.pop(job_id, None)
        if task is not None:
            task.cancel()

    async def update_progress(self, job: Job, value: int) -> None:
        await self._redis.hset(self._job_key(job.id), 'progress', value)

    async def release(self, job: Job) -> None:
        """처리하지 않은 작업을 대기 리스트 맨 앞으로 되돌림 (시도 횟수는 그대로)"""
        self._stop_renewal(job.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.hset(self._job_key(job.id), 'status', 'waiting')
            pipe.lrem(self._active_key, 1, job.id)
            pipe.rpush(self._wait_key, job.id)
            pipe.delete(self._lock_key(job.id))
            await pipe.execute()
        logger.debug(f"작업 반납: {self.queue_name} -> {job.id}")

    async def complete(self, job: Job, result: Optional[Dict[str, Any]]) -> None:
        """작업 완료 처리"""
        job.result = result
        self._stop_renewal(job.id)
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._lock_key(job.id))
            pipe.hset(self._job_key(job.id), mapping={
                'status': 'completed',
                'returnvalue': json.dumps(result, ensure_ascii=False, default=str),
                'finishedOn': _now_ms(),
            })
            pipe.lrem(self._active_key, 1, job.id)
            pipe.lpush(self._completed_key, job.id)
            pipe.ltrim(self._completed_key, 0, RETAIN_FINISHED - 1)
            await pipe.execute()

    async def fail(self, job: Job, error: str, retry: bool = True) -> str:
        """작업 실패 처리. 재시도 여지가 있으면 대기 리스트로 되돌림

        Returns:
            "RETRY" 또는 "FAILED"
        """
        job.error = error
        job.attempts_made = int(await self._redis.hincrby(self._job_key(job.id), 'attemptsMade', 1))
        will_retry = retry and job.attempts_made < job.max_attempts
        self._stop_renewal(job.id)

        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.delete(self._lock_key(job.id))
            pipe.hset(self._job_key(job.id), mapping={
                'status': 'waiting' if will_retry else 'failed',
                'failedReason': error,
                'finishedOn': _now_ms(),
            })
            pipe.lrem(self._active_key, 1, job.id)
            if will_retry:
                pipe.lpush(self._wait_key, job.id)
            else:
                pipe.lpush(self._failed_key, job.id)
                pipe.ltrim(self._failed_key, 0, RETAIN_FINISHED - 1)
            await pipe.execute()

        return "RETRY" if will_retry else "FAILED"

    # ======= stalled 작업 복구 =======

    async def _requeue_if_unlocked(self, job_id: str) -> bool:
        lock_key = self._lock_key(job_id)
        async with self._redis.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(lock_key)
                if await pipe.exists(lock_key):
                    return False
                if await pipe.lpos(self._active_key, job_id) is None:
                    return False
                has_job = bool(await pipe.exists(self._job_key(job_id)))

                pipe.multi()
                pipe.lrem(self._active_key, 1, job_id)
                if has_job:
                    pipe.hset(self._job_key(job_id), 'status', 'waiting')
                    pipe.rpush(self._wait_key, job_id)
                await pipe.execute()
            except WatchError:
                # 확인하는 사이 다른 워커가 잠금을 잡음
                return False
        return has_job

    async def recover_stalled(self) -> List[str]:
        """잠금 없이 active에 남은 작업을 대기 리스트로 복구

        두 번의 점검에 걸쳐 처리한다. 처음 발견한 작업은 stalled 후보로 표시만 하고,
        다음 점검 때도 잠금이 없으면 대기 리스트 맨 앞으로 되돌린다.
        BLMOVE 직후 잠금을 잡기 전인 작업을 되돌리지 않기 위함.

        Returns:
            복구된 작업 ID 목록
        """
        async with self._redis.pipeline(transaction=True) as pipe:
            pipe.smembers(self._stalled_key)
            pipe.delete(self._stalled_key)
            candidates, _ = await pipe.execute()

        recovered = []
        for job_id in candidates:
            if await self._requeue_if_unlocked(job_id):
                recovered.append(job_id)

        suspects = []
        for job_id in await self._redis.lrange(self._active_key, 0, -1):
            if job_id in candidates:
                continue
            if not await self._redis.exists(self._lock_key(job_id)):
                suspects.append(job_id)
        if suspects:
            await self._redis.sadd(self._stalled_key, *suspects)

        if recovered:
            logger.warning(f"⚠️ stalled 작업 {len(recovered)}개 대기열로 복구: {self.queue_name} -> {recovered}")
        return recovered

    async def _stalled_loop(self) -> None:
        interval = self.config.stalled_interval_ms / 1000
        while True:
            try:
                await self.recover_stalled()
            except Exception as e:
                logger.error(f"stalled 작업 점검 실패: {self.queue_name}: {e}")
            await asyncio.sleep(interval)

    def start_stalled_check(self) -> None:
        """stalled 작업 주기 점검 시작 (실행 중인 이벤트 루프 필요)"""
        if self._stalled_task is None:
            self._stalled_task = asyncio.create_task(
                self._stalled_loop(), name=f"{self.queue_name}-stalled-check"
            )

    # ======= 조회 =======

    async def get_job(self, job_id: str) -> Optional[Dict[str, Any]]:
        data = await self._redis.hgetall(self._job_key(job_id))
        if not data:
            return None
        for key in ('data', 'returnvalue'):
            if data.get(key):
                try:
                    data[key] = json.loads(data[key])
                except (json.JSONDecodeError, TypeError):
                    pass
        return data

    async def queue_counts(self) -> Dict[str, int]:
        """상태별 작업 개수"""
        async with self._redis.pipeline(transaction=False) as pipe:
            pipe.llen(self._wait_key)
            pipe.llen(self._active_key)
            pipe.llen(self._completed_key)
            pipe.llen(self._failed_key)
            waiting, active, completed, failed = await pipe.execute()
        return {
            'waiting': waiting,
            'active': active,
            'completed': completed,
            'failed': failed,
        }

    async def close(self):
        """연결 풀 종료"""
        if self._closed:
            return
        self._closed = True

        # 남은 잠금은 만료되도록 두고 갱신만 중단 (다른 워커가 stalled로 복구)
        if self._stalled_task is not None:
            self._stalled_task.cancel()
        for job_id in list(self._lock_tasks):
            self._stop_renewal(job_id)

        try:
            await self._redis.aclose()
            if self._pool is not None:
                await self._pool.aclose()
            logger.info(f"Redis 연결 종료: {self.queue_name}")
        except Exception as e:
            logger.error(f"Redis 연결 종료 중 오류: {e}")

async def connect_broker(
    config: RedisConnectionConfig,
    queue_name: str
) -> Union[RedisBroker, BrokerUnavailable]:
    """큐 브로커 연결. 실패해도 예외 대신 BrokerUnavailable 반환"""
    if not config.enabled:
        return BrokerUnavailable("workers disabled (WORKERS_ENABLED=false)")

    try:
        broker = RedisBroker(config, queue_name)
    except Exception as e:
        return BrokerUnavailable(f"cannot configure Redis client: {e}")

    if not await broker.health_check():
        await broker.close()
        return BrokerUnavailable(f"Redis not reachable for queue '{queue_name}'")

    broker.start_stalled_check()
    return broker
