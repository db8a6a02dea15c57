"""
Prometheus 메트릭 수집 시스템
워커 풀의 작업 처리 현황을 모니터링합니다.
"""

from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry, generate_latest

# 전역 레지스트리 (테스트에서 격리 가능)
REGISTRY = CollectorRegistry()

# 작업 처리 카운터
WORKER_JOBS_TOTAL = Counter(
    'worker_jobs_total',
    'Total number of jobs processed by worker pools',
    ['queue_name', 'status'],  # status: completed, failed
    registry=REGISTRY
)

# 작업 처리 시간 히스토그램
WORKER_JOB_DURATION = Histogram(
    'worker_job_duration_seconds',
    'Time spent processing jobs',
    ['queue_name', 'job_type'],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0, float('inf')),
    registry=REGISTRY
)

# 배치 처리 카운터
WORKER_BATCHES_TOTAL = Counter(
    'worker_batches_total',
    'Total number of persistence batches',
    ['queue_name', 'status'],  # status: succeeded, failed
    registry=REGISTRY
)

# 활성 풀 게이지
WORKER_ACTIVE_POOLS = Gauge(
    'worker_active_pools',
    'Number of registered worker pools',
    registry=REGISTRY
)

def record_job(queue_name: str, job_type: str, status: str, duration: float) -> None:
    WORKER_JOB_DURATION.labels(queue_name=queue_name, job_type=job_type).observe(duration)
    WORKER_JOBS_TOTAL.labels(queue_name=queue_name, status=status).inc()

def record_batches(queue_name: str, total: int, failed: int) -> None:
    if total - failed > 0:
        WORKER_BATCHES_TOTAL.labels(queue_name=queue_name, status='succeeded').inc(total - failed)
    if failed > 0:
        WORKER_BATCHES_TOTAL.labels(queue_name=queue_name, status='failed').inc(failed)

def get_metrics() -> str:
    """Prometheus 형식으로 메트릭 반환"""
    return generate_latest(REGISTRY).decode('utf-8')

__all__ = [
    'REGISTRY',
    'WORKER_JOBS_TOTAL',
    'WORKER_JOB_DURATION',
    'WORKER_BATCHES_TOTAL',
    'WORKER_ACTIVE_POOLS',
    'record_job',
    'record_batches',
    'get_metrics',
]
