"""
Queue Worker Service

import / report / campaign 워커 풀을 띄우고 종료 시그널까지 실행하는 데몬
"""

import asyncio
import logging
import signal
import sys
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from queue_worker.config import Settings, get_redis_config, get_settings
from queue_worker.database.postgresql import (
    PostgreSQLManager,
    PostgresCampaignStore,
    PostgresContactStore,
    PostgresReportDataSource,
)
from queue_worker.logging_config import configure_logging
from queue_worker.services.batch_processor import BatchConfig
from queue_worker.services.file_parser import LocalFileParser
from queue_worker.services.message_sender import WuzapiSender
from queue_worker.services.report_generator import LocalDocumentGenerator
from queue_worker.workers.campaign_worker import CampaignJobHandlers
from queue_worker.workers.import_worker import ImportJobHandlers
from queue_worker.workers.lifecycle import (
    WorkerLifecycleManager,
    WorkerRegistry,
    default_factories,
    get_workers_status,
    initialize_workers,
    options_from_settings,
    shutdown_workers,
)
from queue_worker.workers.report_worker import ReportJobHandlers

logger = logging.getLogger(__name__)

class QueueWorkerService:
    """워커 풀 전체와 공유 자원(PostgreSQL 풀)을 소유하는 데몬"""

    def __init__(self, settings: Optional[Settings] = None):
        self.config = settings or get_settings()
        self.postgres = PostgreSQLManager(self.config)
        self.manager = self._build_manager()
        self._stop_event = asyncio.Event()

    def _build_manager(self) -> WorkerLifecycleManager:
        batch_config = BatchConfig(batch_size=self.config.BATCH_SIZE, max_errors=self.config.MAX_ERRORS)

        import_handlers = ImportJobHandlers(
            LocalFileParser(),
            PostgresContactStore(self.postgres),
            batch_config
        )
        report_handlers = ReportJobHandlers(
            PostgresReportDataSource(self.postgres),
            LocalDocumentGenerator(self.config.REPORTS_DIR, self.config.EXPORTS_DIR)
        )
        campaign_handlers = CampaignJobHandlers(
            PostgresCampaignStore(self.postgres),
            WuzapiSender(self.config.WUZAPI_BASE_URL, self.config.WUZAPI_TIMEOUT),
            batch_config
        )

        factories = default_factories(
            get_redis_config(self.config),
            import_handlers,
            report_handlers,
            campaign_handlers
        )
        return WorkerLifecycleManager(WorkerRegistry(), factories)

    async def start(self) -> None:
        logger.info("🚀 Queue Worker 서비스 시작")
        await initialize_workers(self.manager, options_from_settings(self.config))
        logger.info(f"워커 상태: {get_workers_status(self.manager)}")

    def request_stop(self) -> None:
        logger.info("종료 시그널 수신, 워커 중지 중...")
        self._stop_event.set()

    async def wait_for_stop(self) -> None:
        await self._stop_event.wait()

    async def stop(self) -> None:
        logger.info("🛑 Queue Worker 서비스 중지 중...")
        await shutdown_workers(self.manager, self.config.SHUTDOWN_TIMEOUT_MS)
        await self.postgres.close()
        logger.info("✅ Queue Worker 서비스 중지 완료")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "app_name": self.config.app_name,
            "workers": get_workers_status(self.manager),
        }

async def main():
    """메인 함수"""
    load_dotenv()
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    service = QueueWorkerService(settings)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, service.request_stop)

    try:
        await service.start()
        await service.wait_for_stop()
    finally:
        await service.stop()

def run():
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("사용자에 의해 중단됨")
    except Exception as e:
        logger.error(f"워커 서비스 실행 실패: {e}")
        sys.exit(1)

if __name__ == "__main__":
    run()
