"""
Job 데이터 구조

큐 이름, 도메인별 작업 타입, 워커가 처리하는 Job 객체 정의
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

class QueueName(Enum):
    """도메인별 큐 이름"""
    IMPORT = "import"
    REPORT = "report"
    CAMPAIGN = "campaign"

class ImportJobType(Enum):
    """연락처 import 작업 타입"""
    PROCESS_FILE = "process_file"
    VALIDATE_CONTACTS = "validate_contacts"
    INSERT_BATCH = "insert_batch"

class ReportJobType(Enum):
    """리포트/익스포트 작업 타입"""
    CAMPAIGN_REPORT = "campaign_report"
    ANALYTICS_REPORT = "analytics_report"
    EXPORT_CONTACTS = "export_contacts"
    EXPORT_MESSAGES = "export_messages"
    USAGE_REPORT = "usage_report"

class CampaignJobType(Enum):
    """캠페인 발송 작업 타입"""
    DISPATCH_CAMPAIGN = "dispatch_campaign"
    SEND_MESSAGE = "send_message"

ProgressReporter = Callable[["Job", int], Awaitable[None]]

@dataclass
class Job:
    """워커 하나가 처리하는 지연 작업 단위

    progress는 0~100 사이에서 절대 감소하지 않음.
    attempts_made는 브로커가 관리하며 워커는 읽기만 함.
    """
    id: str
    type: str
    queue_name: str
    payload: Dict[str, Any] = field(default_factory=dict)
    progress: int = 0
    attempts_made: int = 0
    max_attempts: int = 1
    result: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    reporter: Optional[ProgressReporter] = field(default=None, repr=False, compare=False)

    async def update_progress(self, value: int) -> None:
        """진행률 갱신 (감소하는 값은 무시)"""
        value = max(0, min(100, int(value)))
        if value <= self.progress:
            if value < self.progress:
                logger.debug(f"진행률 감소 무시: job={self.id} {self.progress} -> {value}")
            return

        self.progress = value
        if self.reporter is not None:
            await self.reporter(self, value)
