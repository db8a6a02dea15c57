"""
Worker Lifecycle Manager

도메인별 워커 풀을 한 단위로 시작/일시정지/재개/종료하는 모듈

레지스트리(도메인 -> 풀)가 이 계층의 유일한 공유 상태이며, 모든 변경은
이벤트 루프 하나에서만 일어나므로 락 없이 사용한다.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, Optional, Protocol, Set, Tuple

from queue_worker.config import RedisConnectionConfig, Settings, get_settings
from queue_worker.models import QueueName
from queue_worker.monitoring.metrics import WORKER_ACTIVE_POOLS
from queue_worker.workers.campaign_worker import CampaignJobHandlers, create_campaign_worker
from queue_worker.workers.import_worker import ImportJobHandlers, create_import_worker
from queue_worker.workers.report_worker import ReportJobHandlers, create_report_worker
from queue_worker.workers.worker_pool import BrokerConnector

logger = logging.getLogger(__name__)

DEFAULT_SHUTDOWN_TIMEOUT_MS = 30000

class PoolHandle(Protocol):
    @property
    def is_running(self) -> bool:
        ...

    async def pause(self) -> None:
        ...

    async def resume(self) -> None:
        ...

    async def close(self) -> None:
        ...

# concurrency(None이면 도메인 기본값) -> 풀 또는 None
WorkerFactory = Callable[[Optional[int]], Awaitable[Optional[PoolHandle]]]

@dataclass(frozen=True)
class DomainOptions:
    """도메인 하나의 시작 옵션"""
    enabled: bool = True
    concurrency: Optional[int] = None

def options_from_settings(settings: Optional[Settings] = None) -> Dict[str, DomainOptions]:
    settings = settings or get_settings()
    return {
        QueueName.IMPORT.value: DomainOptions(settings.IMPORT_WORKER_ENABLED, settings.IMPORT_CONCURRENCY),
        QueueName.REPORT.value: DomainOptions(settings.REPORT_WORKER_ENABLED, settings.REPORT_CONCURRENCY),
        QueueName.CAMPAIGN.value: DomainOptions(settings.CAMPAIGN_WORKER_ENABLED, settings.CAMPAIGN_CONCURRENCY),
    }

class WorkerRegistry:
    """도메인 이름 -> 실행 중인 풀 (도메인당 최대 하나)"""

    def __init__(self):
        self._pools: Dict[str, PoolHandle] = {}

    def get(self, domain: str) -> Optional[PoolHandle]:
        return self._pools.get(domain)

    def register(self, domain: str, pool: PoolHandle) -> None:
        if domain in self._pools:
            raise ValueError(f"worker pool already registered for domain: {domain}")
        self._pools[domain] = pool

    def clear(self, domain: str) -> None:
        self._pools.pop(domain, None)

    def active(self) -> Dict[str, PoolHandle]:
        return dict(self._pools)

    def __contains__(self, domain: str) -> bool:
        return domain in self._pools

    def __iter__(self) -> Iterator[Tuple[str, PoolHandle]]:
        return iter(list(self._pools.items()))

    def __len__(self) -> int:
        return len(self._pools)

class WorkerLifecycleManager:
    """모든 도메인 풀을 한 단위로 관리"""

    def __init__(self, registry: WorkerRegistry, factories: Dict[str, WorkerFactory]):
        self.registry = registry
        self.factories = dict(factories)
        self._abandoned: Set[asyncio.Task] = set()

    def _update_gauge(self) -> None:
        WORKER_ACTIVE_POOLS.set(len(self.registry))

    async def initialize(self, options: Optional[Dict[str, DomainOptions]] = None) -> WorkerRegistry:
        """활성화된 도메인 중 아직 풀이 없는 도메인만 생성 (멱등)"""
        options = options or {}
        logger.info("🚀 워커 초기화 시작")

        for domain, factory in self.factories.items():
            domain_options = options.get(domain, DomainOptions())
            if not domain_options.enabled:
                logger.info(f"{domain} 워커 비활성화됨, 건너뜀")
                continue
            if domain in self.registry:
                logger.debug(f"{domain} 워커가 이미 실행 중, 건너뜀")
                continue

            try:
                pool = await factory(domain_options.concurrency)
            except Exception as e:
                logger.error(f"❌ {domain} 워커 생성 실패: {e}")
                continue

            if pool is not None:
                self.registry.register(domain, pool)

        self._update_gauge()
        logger.info(f"✅ 워커 초기화 완료: {', '.join(domain for domain, _ in self.registry) or '없음'}")
        return self.registry

    async def _close_pool(self, domain: str, pool: PoolHandle) -> None:
        try:
            await pool.close()
            logger.info(f"{domain} 워커 종료됨")
        except Exception as e:
            logger.error(f"❌ {domain} 워커 종료 중 오류: {e}")

    async def shutdown(self, timeout_ms: int = DEFAULT_SHUTDOWN_TIMEOUT_MS) -> None:
        """모든 풀을 동시에 종료. 전부 닫히거나 timeout_ms가 지나면 반환"""
        active = self.registry.active()
        if not active:
            return

        logger.info(f"🛑 워커 종료 시작: {len(active)}개 (timeout={timeout_ms}ms)")
        tasks = {
            asyncio.create_task(self._close_pool(domain, pool), name=f"close-{domain}"): domain
            for domain, pool in active.items()
        }
        done, pending = await asyncio.wait(tasks.keys(), timeout=timeout_ms / 1000)

        for task in done:
            self.registry.clear(tasks[task])

        for task in pending:
            # 종료를 기다리지 않고 버림 (레지스트리에는 남겨 둠)
            self._abandoned.add(task)
            task.add_done_callback(self._abandoned.discard)
            logger.warning(f"⚠️ {tasks[task]} 워커가 {timeout_ms}ms 안에 종료되지 않음, 실행 중으로 간주")

        self._update_gauge()
        logger.info(f"✅ 워커 종료 완료 (종료 {len(done)}개, 시간 초과 {len(pending)}개)")

    async def pause(self) -> None:
        for domain, pool in self.registry:
            try:
                await pool.pause()
            except Exception as e:
                logger.error(f"❌ {domain} 워커 일시정지 실패: {e}")

    async def resume(self) -> None:
        for domain, pool in self.registry:
            try:
                await pool.resume()
            except Exception as e:
                logger.error(f"❌ {domain} 워커 재개 실패: {e}")

    def status(self) -> Dict[str, Dict[str, bool]]:
        """도메인별 {active: 풀 존재 여부, running: 풀이 실행 중이라고 보고하는지}"""
        result = {}
        for domain in self.factories:
            pool = self.registry.get(domain)
            result[domain] = {
                'active': pool is not None,
                'running': bool(pool is not None and pool.is_running),
            }
        return result

def default_factories(
    redis_config: RedisConnectionConfig,
    import_handlers: ImportJobHandlers,
    report_handlers: ReportJobHandlers,
    campaign_handlers: CampaignJobHandlers,
    connect: Optional[BrokerConnector] = None
) -> Dict[str, WorkerFactory]:
    """도메인별 풀 생성 함수 (모든 풀이 같은 읽기 전용 Redis 설정을 공유)"""

    async def import_factory(concurrency: Optional[int]):
        return await create_import_worker(redis_config, import_handlers, concurrency, connect=connect)

    async def report_factory(concurrency: Optional[int]):
        return await create_report_worker(redis_config, report_handlers, concurrency, connect=connect)

    async def campaign_factory(concurrency: Optional[int]):
        return await create_campaign_worker(redis_config, campaign_handlers, concurrency, connect=connect)

    return {
        QueueName.IMPORT.value: import_factory,
        QueueName.REPORT.value: report_factory,
        QueueName.CAMPAIGN.value: campaign_factory,
    }

# ======= 모듈 수준 함수 (관리자를 명시적으로 전달) =======

async def initialize_workers(
    manager: WorkerLifecycleManager,
    options: Optional[Dict[str, DomainOptions]] = None
) -> WorkerRegistry:
    return await manager.initialize(options)

async def shutdown_workers(manager: WorkerLifecycleManager, timeout_ms: int = DEFAULT_SHUTDOWN_TIMEOUT_MS) -> None:
    await manager.shutdown(timeout_ms)

async def pause_workers(manager: WorkerLifecycleManager) -> None:
    await manager.pause()

async def resume_workers(manager: WorkerLifecycleManager) -> None:
    await manager.resume()

def get_workers_status(manager: WorkerLifecycleManager) -> Dict[str, Dict[str, Any]]:
    return manager.status()
