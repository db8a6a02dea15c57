"""
Job Router

작업 타입 태그로 도메인 핸들러를 선택해 실행하는 모듈
"""

import logging
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Type

from queue_worker.exceptions import UnknownJobTypeError
from queue_worker.models import Job

logger = logging.getLogger(__name__)

JobHandler = Callable[[Job], Awaitable[Optional[Dict[str, Any]]]]

class JobRouter:
    """도메인 하나의 작업 타입 -> 핸들러 매핑

    job_types enum의 모든 멤버에 핸들러가 있어야 생성된다.
    """

    def __init__(self, domain: str, job_types: Type[Enum], handlers: Dict[Enum, JobHandler]):
        missing = [member.value for member in job_types if member not in handlers]
        if missing:
            raise ValueError(f"{domain} router has no handler for: {', '.join(missing)}")

        self.domain = domain
        self.job_types = job_types
        self._handlers = dict(handlers)

    def resolve(self, type_tag: str) -> Enum:
        try:
            return self.job_types(type_tag)
        except ValueError:
            raise UnknownJobTypeError(type_tag) from None

    async def dispatch(self, job: Job) -> Optional[Dict[str, Any]]:
        """작업 하나 실행. 모르는 타입이면 UnknownJobTypeError"""
        job_type = self.resolve(job.type)
        logger.debug(f"작업 라우팅: {self.domain}/{job_type.value} (job={job.id})")
        return await self._handlers[job_type](job)

    __call__ = dispatch
