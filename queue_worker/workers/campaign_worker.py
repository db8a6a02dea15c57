"""
Campaign Worker

대량 메시지 캠페인 발송 작업 처리

연락처별 발송 실패는 작업을 실패시키지 않는다. 일시적 오류는 백오프 후 재시도하고,
영구 오류는 실패로 집계한다. 세션 오류(연결 끊김/인증 실패)가 나면 캠페인을
paused로 바꾸고 작업을 중단한다.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from queue_worker.config import RedisConnectionConfig, get_settings
from queue_worker.exceptions import CampaignHaltError
from queue_worker.models import CampaignJobType, Job, QueueName
from queue_worker.monitoring.metrics import record_batches
from queue_worker.schemas import DispatchCampaignPayload, SendMessagePayload
from queue_worker.services.batch_processor import BatchConfig, BatchProcessor
from queue_worker.services.collaborators import CampaignStore, MessageSender
from queue_worker.services.error_handler import (
    SESSION_ERRORS,
    calculate_backoff,
    categorize_error,
    should_retry,
)
from queue_worker.services.template import render_message
from queue_worker.workers.job_router import JobRouter
from queue_worker.workers.worker_pool import BrokerConnector, WorkerPool, create_worker

logger = logging.getLogger(__name__)

DEFAULT_CAMPAIGN_CONCURRENCY = 5

def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()

class CampaignJobHandlers:
    """campaign 도메인 작업 핸들러 모음"""

    def __init__(
        self,
        store: CampaignStore,
        sender: MessageSender,
        batch_config: Optional[BatchConfig] = None,
        max_retries: Optional[int] = None,
        retry_base_delay: Optional[float] = None,
        retry_max_delay: Optional[float] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep
    ):
        settings = get_settings()
        self.store = store
        self.sender = sender
        self.batch_config = batch_config or BatchConfig(
            batch_size=settings.BATCH_SIZE,
            max_errors=settings.MAX_ERRORS,
        )
        self.max_retries = max_retries if max_retries is not None else settings.CAMPAIGN_MAX_RETRIES
        self.retry_base_delay = (
            retry_base_delay if retry_base_delay is not None else settings.CAMPAIGN_RETRY_BASE_DELAY
        )
        self.retry_max_delay = (
            retry_max_delay if retry_max_delay is not None else settings.CAMPAIGN_RETRY_MAX_DELAY
        )
        self._sleep = sleep

    async def _deliver(
        self,
        campaign_id: str,
        contact: Dict[str, Any],
        template: str,
        token: str
    ) -> Optional[Dict[str, Any]]:
        """연락처 한 명에게 발송. 성공하면 None, 최종 실패하면 오류 항목 반환"""
        body = render_message(template, {'nome': contact.get('name'), **(contact.get('variables') or {})})
        attempt = 0
        last_error: Optional[Exception] = None

        while True:
            try:
                await self.sender.send_text(contact['phone'], body, token)
            except Exception as e:
                last_error = e
                category = categorize_error(e)
                logger.warning(
                    f"⚠️ 발송 오류: campaign={campaign_id} phone={contact.get('phone')} "
                    f"attempt={attempt + 1} type={category.value} error={e}"
                )

                if category in SESSION_ERRORS:
                    logger.error(f"🛑 세션 사용 불가, 캠페인 일시정지: campaign={campaign_id} type={category.value}")
                    await self.store.update_campaign_status(
                        campaign_id, 'paused', paused_at=_now_iso(), pause_reason=category.value
                    )
                    raise CampaignHaltError(
                        f"Campaign {campaign_id} paused: {category.value}: {e}"
                    ) from e

                if not should_retry(category, attempt, self.max_retries):
                    break

                backoff = calculate_backoff(category, attempt, self.retry_base_delay, self.retry_max_delay)
                logger.info(f"{backoff:.1f}초 후 재시도: phone={contact.get('phone')}")
                await self._sleep(backoff)
                attempt += 1
                continue

            # 발송은 끝났으므로 상태 기록 실패로 재발송하지 않음
            try:
                await self.store.update_contact_status(contact['id'], 'sent')
            except Exception as e:
                logger.error(
                    f"❌ 발송 상태 기록 실패 (메시지는 발송됨): campaign={campaign_id} "
                    f"contact={contact['id']} error={e}"
                )
            return None

        category = categorize_error(last_error)
        await self.store.update_contact_status(contact['id'], 'failed', category.value, str(last_error))
        return {
            'phone': contact.get('phone'),
            'errorType': category.value,
            'error': str(last_error),
        }

    async def dispatch_campaign(self, job: Job) -> Dict[str, Any]:
        """캠페인의 대기 중인 연락처 전체에 발송 (진행률 10~95)"""
        payload = DispatchCampaignPayload.model_validate(job.payload)
        campaign_id = payload.campaignId
        template = payload.message
        token = payload.token

        contacts = await self.store.load_pending_contacts(campaign_id)
        logger.info(f"📨 캠페인 발송 시작: campaign={campaign_id} 대상 {len(contacts)}명")
        await self.store.update_campaign_status(campaign_id, 'running', total_contacts=len(contacts))
        await job.update_progress(10)

        async def send_batch(batch: List[Dict[str, Any]], tenant_id: str, user_id: str) -> Dict[str, Any]:
            sent = 0
            errors = []
            for contact in batch:
                error = await self._deliver(campaign_id, contact, template, token)
                if error is None:
                    sent += 1
                else:
                    errors.append(error)
            return {'inserted': sent, 'failed': len(errors), 'errors': errors}

        processor = BatchProcessor(self.batch_config.with_progress(10, 85))
        outcome = await processor.process(
            contacts,
            payload.tenantId,
            payload.userId,
            send_batch,
            on_progress=job.update_progress
        )
        record_batches(QueueName.CAMPAIGN.value, outcome.batches, outcome.failed_batches)

        completed_at = _now_iso()
        await self.store.update_campaign_status(
            campaign_id, 'completed',
            sent_count=outcome.inserted, failed_count=outcome.failed, completed_at=completed_at
        )
        logger.info(
            f"✅ 캠페인 발송 완료: campaign={campaign_id} 성공 {outcome.inserted}, 실패 {outcome.failed}"
        )
        return {
            'campaignId': campaign_id,
            'total': len(contacts),
            'sent': outcome.inserted,
            'failed': outcome.failed,
            'errors': outcome.errors[:self.batch_config.max_errors],
            'completedAt': completed_at,
        }

    async def send_message(self, job: Job) -> Dict[str, Any]:
        """단건 발송. 실패하면 예외로 작업 실패 (브로커 재시도에 맡김)"""
        payload = SendMessagePayload.model_validate(job.payload)
        body = render_message(payload.message, payload.variables)

        await job.update_progress(10)
        response = await self.sender.send_text(payload.phone, body, payload.token)
        await job.update_progress(100)

        return {
            'phone': payload.phone,
            'messageId': response.get('id'),
            'status': 'sent',
        }

    def router(self) -> JobRouter:
        return JobRouter(QueueName.CAMPAIGN.value, CampaignJobType, {
            CampaignJobType.DISPATCH_CAMPAIGN: self.dispatch_campaign,
            CampaignJobType.SEND_MESSAGE: self.send_message,
        })

async def create_campaign_worker(
    config: RedisConnectionConfig,
    handlers: CampaignJobHandlers,
    concurrency: Optional[int] = None,
    connect: Optional[BrokerConnector] = None
) -> Optional[WorkerPool]:
    """campaign 워커 풀 생성. 브로커를 쓸 수 없으면 None"""
    return await create_worker(
        QueueName.CAMPAIGN.value,
        handlers.router(),
        concurrency or DEFAULT_CAMPAIGN_CONCURRENCY,
        config,
        connect=connect
    )
