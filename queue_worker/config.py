from dataclasses import dataclass
from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict
import os
from typing import ClassVar, Optional

class Settings(BaseSettings):
    app_name: str = "queue-worker"

    # Redis Connection Info
    REDIS_URL: Optional[str] = None
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    REDIS_PASSWORD: Optional[str] = None
    REDIS_MAX_CONNECTIONS: int = 20
    REDIS_CONNECTION_TIMEOUT: float = 5.0
    REDIS_KEY_PREFIX: str = "queue"
    REDIS_BLOCKING_TIMEOUT: int = 5  # reserve 블로킹 타임아웃(초)

    # 워커 활성화 (WORKERS_ENABLED=False면 브로커를 아예 사용하지 않음)
    WORKERS_ENABLED: bool = True
    IMPORT_WORKER_ENABLED: bool = True
    REPORT_WORKER_ENABLED: bool = True
    CAMPAIGN_WORKER_ENABLED: bool = True

    # 도메인별 동시 처리 수
    IMPORT_CONCURRENCY: int = 2    # 파일 import는 I/O, DB 부하가 커서 낮게 유지
    REPORT_CONCURRENCY: int = 3
    CAMPAIGN_CONCURRENCY: int = 5

    # 배치 처리 관련 설정
    BATCH_SIZE: int = 100
    MAX_ERRORS: int = 10
    JOB_MAX_ATTEMPTS: int = 3

    # 처리 중 작업 잠금(ms). 잠금이 만료된 active 작업은 stalled로 보고 대기열로 되돌림
    JOB_LOCK_DURATION_MS: int = 30000
    STALLED_CHECK_INTERVAL_MS: int = 30000

    # 종료 대기 시간(ms)
    SHUTDOWN_TIMEOUT_MS: int = 30000

    # PostgreSQL Connection Info
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DB: str = "wasend"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""

    # WUZAPI (메시지 발송)
    WUZAPI_BASE_URL: str = "https://wzapi.wasend.com.br"
    WUZAPI_TIMEOUT: float = 15.0

    # 캠페인 재시도 설정
    CAMPAIGN_MAX_RETRIES: int = 3
    CAMPAIGN_RETRY_BASE_DELAY: float = 2.0
    CAMPAIGN_RETRY_MAX_DELAY: float = 300.0

    # 리포트/익스포트 저장 경로
    REPORTS_DIR: str = "./reports"
    EXPORTS_DIR: str = "./exports"

    # 로깅 설정
    LOG_LEVEL: str = "INFO"

    # 환경 파일 선택 및 로드 경로 출력
    env_file_path: ClassVar[str] = os.path.join(".", f".env.{os.getenv('ENVIRONMENT', 'dev')}")
    print(f"🟢 Loading environment file: {env_file_path}", flush=True)

    model_config = SettingsConfigDict(
        env_file=env_file_path,
        env_file_encoding='utf-8',
        extra='ignore'
    )

@dataclass(frozen=True)
class RedisConnectionConfig:
    """모든 워커 풀이 공유하는 읽기 전용 Redis 접속 정보"""
    url: Optional[str]
    host: str
    port: int
    db: int
    password: Optional[str]
    max_connections: int
    connect_timeout: float
    key_prefix: str
    blocking_timeout: int
    enabled: bool = True
    max_attempts: int = 1
    lock_duration_ms: int = 30000
    stalled_interval_ms: int = 30000

def get_redis_config(settings: Optional[Settings] = None) -> RedisConnectionConfig:
    settings = settings or get_settings()
    return RedisConnectionConfig(
        url=settings.REDIS_URL,
        host=settings.REDIS_HOST,
        port=settings.REDIS_PORT,
        db=settings.REDIS_DB,
        password=settings.REDIS_PASSWORD,
        max_connections=settings.REDIS_MAX_CONNECTIONS,
        connect_timeout=settings.REDIS_CONNECTION_TIMEOUT,
        key_prefix=settings.REDIS_KEY_PREFIX,
        blocking_timeout=settings.REDIS_BLOCKING_TIMEOUT,
        enabled=settings.WORKERS_ENABLED,
        max_attempts=settings.JOB_MAX_ATTEMPTS,
        lock_duration_ms=settings.JOB_LOCK_DURATION_MS,
        stalled_interval_ms=settings.STALLED_CHECK_INTERVAL_MS,
    )

@lru_cache()
def get_settings():
    return Settings()
