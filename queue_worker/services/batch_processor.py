# queue_worker/services/batch_processor.py
import asyncio
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

from queue_worker.exceptions import JobFatalError

logger = logging.getLogger(__name__)

BATCH_SIZE = 100
MAX_ERRORS = 10

# (batch items, tenant_id, user_id) -> {"inserted", "failed", "errors"}
PersistCall = Callable[[List[Any], str, str], Awaitable[Dict[str, Any]]]
ProgressCallback = Callable[[int], Awaitable[None]]

@dataclass
class BatchConfig:
    """배치 처리 설정"""
    batch_size: int = BATCH_SIZE        # 한 번의 저장 호출에 넘길 항목 수
    max_errors: int = MAX_ERRORS        # 결과에 남길 최대 오류 수
    progress_base: int = 30             # 이 단계가 시작하는 진행률
    progress_span: int = 60             # 이 단계가 차지하는 진행률 폭
    delay_between_batches: float = 0.0  # 배치 간 딜레이(초)
    log_every: int = 5                  # N개 배치마다 로그 출력

    def with_progress(self, base: int, span: int) -> 'BatchConfig':
        return BatchConfig(
            batch_size=self.batch_size,
            max_errors=self.max_errors,
            progress_base=base,
            progress_span=span,
            delay_between_batches=self.delay_between_batches,
            log_every=self.log_every,
        )

@dataclass(frozen=True)
class Batch:
    """작업 항목의 일시적인 조각 (저장되지 않음)"""
    items: List[Any]
    index: int

    @property
    def size(self) -> int:
        return len(self.items)

@dataclass
class BatchResult:
    """전체 배치 처리 결과"""
    inserted: int = 0
    failed: int = 0
    errors: List[Any] = field(default_factory=list)
    batches: int = 0
    failed_batches: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'inserted': self.inserted,
            'failed': self.failed,
            'errors': list(self.errors),
        }

def split_into_batches(items: Sequence[Any], batch_size: int = BATCH_SIZE) -> List[Batch]:
    """순서를 유지한 채 최대 batch_size 크기의 연속된 배치로 분할"""
    if batch_size <= 0:
        raise ValueError(f"batch_size must be positive, got {batch_size}")
    items = list(items)
    return [
        Batch(items=items[start:start + batch_size], index=index)
        for index, start in enumerate(range(0, len(items), batch_size))
    ]

class BatchProcessor:
    """대량 항목을 배치 단위로 저장하는 처리기

    배치는 입력 순서대로 하나씩 처리한다. 한 배치의 저장 호출이 예외를 던지면
    그 배치 전체를 실패로 집계하고 다음 배치로 넘어간다. JobFatalError만
    작업 전체를 실패시키기 위해 그대로 전파된다.
    """

    def __init__(self, config: Optional[BatchConfig] = None):
        if config is None:
            from queue_worker.config import get_settings
            settings = get_settings()
            config = BatchConfig(
                batch_size=settings.BATCH_SIZE,
                max_errors=settings.MAX_ERRORS,
            )
        self.config = config

    def progress_for(self, done: int, total: int) -> int:
        """완료된 배치 비율을 이 단계의 진행률 구간으로 환산"""
        if total <= 0:
            return self.config.progress_base + self.config.progress_span
        return self.config.progress_base + math.floor(self.config.progress_span * done / total)

    def _add_error(self, result: BatchResult, error: Any) -> None:
        if len(result.errors) < self.config.max_errors:
            result.errors.append(error)

    async def process(
        self,
        items: Sequence[Any],
        tenant_id: str,
        user_id: str,
        persist: PersistCall,
        on_progress: Optional[ProgressCallback] = None
    ) -> BatchResult:
        """모든 항목을 배치로 나눠 저장하고 합계를 반환

        Args:
            items: 검증이 끝난 항목들 (순서 유지)
            tenant_id: 테넌트 ID
            user_id: 사용자 ID
            persist: 배치 저장 호출
            on_progress: 배치마다 호출되는 진행률 콜백

        Returns:
            BatchResult (카운트는 항상 정확, errors는 max_errors개까지만)
        """
        batches = split_into_batches(items, self.config.batch_size)
        total = len(batches)
        result = BatchResult(batches=total)
        start_time = time.time()

        logger.info(f"배치 처리 시작: 항목 {len(items)}개, 배치 {total}개 (크기 {self.config.batch_size})")

        if total == 0 and on_progress:
            await on_progress(self.progress_for(0, 0))

        for batch in batches:
            try:
                outcome = await persist(batch.items, tenant_id, user_id) or {}
                result.inserted += int(outcome.get('inserted', 0))
                result.failed += int(outcome.get('failed', 0))
                for error in outcome.get('errors') or []:
                    self._add_error(result, error)

            except JobFatalError:
                raise

            except Exception as e:
                result.failed += batch.size
                result.failed_batches += 1
                self._add_error(result, {
                    'batch': batch.index,
                    'count': batch.size,
                    'error': str(e),
                })
                logger.error(f"❌ 배치 {batch.index + 1}/{total} 저장 실패 ({batch.size}개): {e}")

            if on_progress:
                await on_progress(self.progress_for(batch.index + 1, total))

            if (batch.index + 1) % self.config.log_every == 0:
                logger.info(f"진행: 배치 {batch.index + 1}/{total}, 성공 {result.inserted}, 실패 {result.failed}")

            if self.config.delay_between_batches > 0 and batch.index + 1 < total:
                await asyncio.sleep(self.config.delay_between_batches)

        elapsed = time.time() - start_time
        logger.info(
            f"✅ 배치 처리 완료: 성공 {result.inserted}, 실패 {result.failed}, "
            f"실패 배치 {result.failed_batches}/{total} ({elapsed:.2f}s)"
        )
        return result
