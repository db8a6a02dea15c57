"""
Report Worker

리포트 및 익스포트 생성 작업 처리
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from queue_worker.config import RedisConnectionConfig
from queue_worker.models import Job, QueueName, ReportJobType
from queue_worker.services.collaborators import DocumentGenerator, ReportDataSource
from queue_worker.workers.job_router import JobRouter
from queue_worker.workers.worker_pool import BrokerConnector, WorkerPool, create_worker

logger = logging.getLogger(__name__)

DEFAULT_REPORT_CONCURRENCY = 3

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

def delivery_rate(delivered: int, total: int):
    """전달률(%) 소수점 두 자리 문자열, 메시지가 없으면 0"""
    if not total:
        return 0
    return f"{delivered / total * 100:.2f}"

class ReportJobHandlers:
    """report 도메인 작업 핸들러 모음"""

    def __init__(self, data_source: ReportDataSource, generator: DocumentGenerator):
        self.data_source = data_source
        self.generator = generator

    async def campaign_report(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        report_id = payload.get('reportId')
        campaign_id = payload.get('campaignId')
        format = payload.get('format')
        logger.info(f"📊 캠페인 리포트 생성: reportId={report_id} campaignId={campaign_id} format={format}")

        await job.update_progress(10)
        data = await self.data_source.fetch_campaign_data(campaign_id, payload.get('tenantId'))

        await job.update_progress(40)
        path = await self.generator.generate_report(data, format, report_id)

        await job.update_progress(90)
        total = data.get('totalMessages', 0)
        delivered = data.get('delivered', 0)
        return {
            'reportId': report_id,
            'campaignId': campaign_id,
            'format': format,
            'path': path,
            'generatedAt': _now_iso(),
            'stats': {
                'totalMessages': total,
                'delivered': delivered,
                'failed': data.get('failed', 0),
                'deliveryRate': delivery_rate(delivered, total),
            },
        }

    async def analytics_report(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        report_id = payload.get('reportId')
        date_from = payload.get('dateFrom')
        date_to = payload.get('dateTo')
        format = payload.get('format')
        logger.info(f"📊 분석 리포트 생성: reportId={report_id} {date_from} ~ {date_to}")

        await job.update_progress(10)
        data = await self.data_source.fetch_analytics_data(payload.get('tenantId'), date_from, date_to)

        await job.update_progress(50)
        path = await self.generator.generate_report(data, format, report_id)

        await job.update_progress(90)
        return {
            'reportId': report_id,
            'format': format,
            'path': path,
            'period': {'from': date_from, 'to': date_to},
            'generatedAt': _now_iso(),
            'summary': data.get('summary'),
        }

    async def _export(self, job: Job, kind: str, fetch) -> Dict[str, Any]:
        payload = job.payload
        export_id = payload.get('exportId')
        format = payload.get('format')
        logger.info(f"📤 {kind} 익스포트 시작: exportId={export_id} format={format}")

        await job.update_progress(10)
        records = await fetch(payload.get('tenantId'), payload.get('userId'), payload.get('filters') or {})

        await job.update_progress(40)
        path = await self.generator.generate_export(records, format, export_id, kind)

        await job.update_progress(90)
        return {
            'exportId': export_id,
            'format': format,
            'path': path,
            'totalRecords': len(records),
            'generatedAt': _now_iso(),
        }

    async def export_contacts(self, job: Job) -> Dict[str, Any]:
        return await self._export(job, 'contacts', self.data_source.fetch_contacts)

    async def export_messages(self, job: Job) -> Dict[str, Any]:
        return await self._export(job, 'messages', self.data_source.fetch_messages)

    async def usage_report(self, job: Job) -> Dict[str, Any]:
        payload = job.payload
        report_id = payload.get('reportId')
        tenant_id = payload.get('tenantId')
        period = payload.get('period')
        logger.info(f"📊 사용량 리포트 생성: reportId={report_id} tenantId={tenant_id} period={period}")

        await job.update_progress(20)
        usage = await self.data_source.fetch_usage_data(tenant_id, period)

        await job.update_progress(60)
        return {
            'reportId': report_id,
            'tenantId': tenant_id,
            'period': period,
            'generatedAt': _now_iso(),
            'usage': usage,
        }

    def router(self) -> JobRouter:
        return JobRouter(QueueName.REPORT.value, ReportJobType, {
            ReportJobType.CAMPAIGN_REPORT: self.campaign_report,
            ReportJobType.ANALYTICS_REPORT: self.analytics_report,
            ReportJobType.EXPORT_CONTACTS: self.export_contacts,
            ReportJobType.EXPORT_MESSAGES: self.export_messages,
            ReportJobType.USAGE_REPORT: self.usage_report,
        })

async def create_report_worker(
    config: RedisConnectionConfig,
    handlers: ReportJobHandlers,
    concurrency: Optional[int] = None,
    connect: Optional[BrokerConnector] = None
) -> Optional[WorkerPool]:
    """report 워커 풀 생성. 브로커를 쓸 수 없으면 None"""
    return await create_worker(
        QueueName.REPORT.value,
        handlers.router(),
        concurrency or DEFAULT_REPORT_CONCURRENCY,
        config,
        connect=connect
    )
