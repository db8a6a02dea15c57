"""
Import Worker

연락처 파일 import 작업 처리 (파싱 -> 검증 -> 배치 저장)
"""

import logging
from typing import Any, Dict, Optional

from queue_worker.config import RedisConnectionConfig, get_settings
from queue_worker.models import ImportJobType, Job, QueueName
from queue_worker.monitoring.metrics import record_batches
from queue_worker.services.batch_processor import BatchConfig, BatchProcessor
from queue_worker.services.collaborators import ContactStore, FileParser
from queue_worker.services.contact_validator import validate_contacts
from queue_worker.workers.job_router import JobRouter
from queue_worker.workers.worker_pool import BrokerConnector, WorkerPool, create_worker

logger = logging.getLogger(__name__)

DEFAULT_IMPORT_CONCURRENCY = 2

class ImportJobHandlers:
    """import 도메인 작업 핸들러 모음"""

    def __init__(
        self,
        parser: FileParser,
        contact_store: ContactStore,
        batch_config: Optional[BatchConfig] = None
    ):
        self.parser = parser
        self.contact_store = contact_store
        if batch_config is None:
            settings = get_settings()
            batch_config = BatchConfig(batch_size=settings.BATCH_SIZE, max_errors=settings.MAX_ERRORS)
        self.batch_config = batch_config

    async def process_file(self, job: Job) -> Dict[str, Any]:
        """업로드된 파일 하나를 연락처로 import

        진행률: 5 파싱 시작, 10 파싱 완료, 30 검증 완료, 30~90 저장, 100 완료
        """
        payload = job.payload
        import_id = payload.get('importId')
        tenant_id = payload.get('tenantId')
        user_id = payload.get('userId')
        max_errors = self.batch_config.max_errors

        logger.info(f"📥 파일 import 시작: importId={import_id} file={payload.get('filePath')}")

        await job.update_progress(5)
        # 파일을 읽지 못하면 ImportSourceError로 작업 전체 실패
        rows = await self.parser.parse(payload.get('filePath'), payload.get('fileType'))
        await job.update_progress(10)

        validation = validate_contacts(rows, payload.get('fieldMapping'), max_errors)
        await job.update_progress(30)
        logger.info(
            f"검증 완료: importId={import_id} 전체 {len(rows)}, "
            f"유효 {len(validation.valid)}, 무효 {len(validation.invalid)}"
        )

        processor = BatchProcessor(self.batch_config.with_progress(30, 60))
        inserted = await processor.process(
            validation.valid,
            tenant_id,
            user_id,
            self.contact_store.insert_contacts,
            on_progress=job.update_progress
        )
        record_batches(QueueName.IMPORT.value, inserted.batches, inserted.failed_batches)

        await job.update_progress(100)

        result = {
            'importId': import_id,
            'totalParsed': len(rows),
            'totalValid': len(validation.valid),
            'totalInvalid': len(validation.invalid),
            'totalInserted': inserted.inserted,
            'totalFailed': inserted.failed,
            'errors': validation.errors[:max_errors] + inserted.errors[:max_errors],
        }
        logger.info(
            f"✅ 파일 import 완료: importId={import_id} "
            f"저장 {result['totalInserted']}, 실패 {result['totalFailed']}"
        )
        return result

    async def validate_contacts(self, job: Job) -> Dict[str, Any]:
        """저장 없이 연락처 목록만 검증"""
        contacts = job.payload.get('contacts') or []
        await job.update_progress(10)
        validation = validate_contacts(contacts, job.payload.get('fieldMapping'), self.batch_config.max_errors)
        await job.update_progress(100)
        return validation.to_dict()

    async def insert_batch(self, job: Job) -> Dict[str, Any]:
        """이미 검증된 연락처 목록을 배치로 저장"""
        payload = job.payload
        contacts = payload.get('contacts') or []

        processor = BatchProcessor(self.batch_config.with_progress(0, 90))
        inserted = await processor.process(
            contacts,
            payload.get('tenantId'),
            payload.get('userId'),
            self.contact_store.insert_contacts,
            on_progress=job.update_progress
        )
        record_batches(QueueName.IMPORT.value, inserted.batches, inserted.failed_batches)

        await job.update_progress(100)
        return inserted.to_dict()

    def router(self) -> JobRouter:
        return JobRouter(QueueName.IMPORT.value, ImportJobType, {
            ImportJobType.PROCESS_FILE: self.process_file,
            ImportJobType.VALIDATE_CONTACTS: self.validate_contacts,
            ImportJobType.INSERT_BATCH: self.insert_batch,
        })

async def create_import_worker(
    config: RedisConnectionConfig,
    handlers: ImportJobHandlers,
    concurrency: Optional[int] = None,
    connect: Optional[BrokerConnector] = None
) -> Optional[WorkerPool]:
    """import 워커 풀 생성. 브로커를 쓸 수 없으면 None"""
    return await create_worker(
        QueueName.IMPORT.value,
        handlers.router(),
        concurrency or DEFAULT_IMPORT_CONCURRENCY,
        config,
        connect=connect
    )
