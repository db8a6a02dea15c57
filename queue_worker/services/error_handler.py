"""
Send Error Classification

메시지 발송 오류 분류 및 재시도 정책 모듈
"""

import random
from enum import Enum
from typing import Any, Optional

class ErrorCategory(Enum):
    """발송 오류 카테고리"""
    NETWORK_ERROR = "NETWORK_ERROR"     # 네트워크 연결 오류 (재시도)
    UNAUTHORIZED = "UNAUTHORIZED"       # 토큰/인증 오류 (캠페인 중단)
    DISCONNECTED = "DISCONNECTED"       # 세션 연결 끊김 (캠페인 중단)
    INVALID_NUMBER = "INVALID_NUMBER"   # 잘못된 번호 (재시도 안 함)
    BLOCKED_NUMBER = "BLOCKED_NUMBER"   # 차단된 번호 (재시도 안 함)
    RATE_LIMIT = "RATE_LIMIT"           # 속도 제한 (재시도)
    SERVER_BUSY = "SERVER_BUSY"         # 서버 오류 (재시도)
    TIMEOUT = "TIMEOUT"                 # 타임아웃 (재시도)
    API_ERROR = "API_ERROR"             # 기타 API 오류 (재시도)
    UNKNOWN_ERROR = "UNKNOWN_ERROR"

PERMANENT_ERRORS = {ErrorCategory.INVALID_NUMBER, ErrorCategory.BLOCKED_NUMBER, ErrorCategory.UNKNOWN_ERROR}
SESSION_ERRORS = {ErrorCategory.DISCONNECTED, ErrorCategory.UNAUTHORIZED}

# 카테고리별 최소 대기 시간(초)
MIN_BACKOFF = {
    ErrorCategory.RATE_LIMIT: 60.0,
    ErrorCategory.SERVER_BUSY: 10.0,
    ErrorCategory.NETWORK_ERROR: 5.0,
    ErrorCategory.TIMEOUT: 3.0,
}

def _status_of(exception: BaseException) -> Optional[int]:
    status = getattr(exception, 'status_code', None)
    response = getattr(exception, 'response', None)
    if status is None and response is not None:
        status = getattr(response, 'status_code', None)
    return status

def categorize_error(exception: Optional[BaseException]) -> ErrorCategory:
    """발송 예외 자동 분류"""
    if exception is None:
        return ErrorCategory.UNKNOWN_ERROR

    error_msg = str(exception).lower()
    error_type = type(exception).__name__
    status = _status_of(exception)

    # 네트워크
    if error_type in ('ConnectError', 'ConnectionRefusedError', 'ConnectionError'):
        return ErrorCategory.NETWORK_ERROR
    if any(keyword in error_msg for keyword in ['network', 'connection refused', 'name resolution']):
        return ErrorCategory.NETWORK_ERROR

    # 인증 (영구 오류보다 먼저 확인)
    if status in (401, 403) or 'unauthorized' in error_msg:
        return ErrorCategory.UNAUTHORIZED
    if 'token' in error_msg and any(keyword in error_msg for keyword in ['invalid', 'expired']):
        return ErrorCategory.UNAUTHORIZED

    # 세션 연결
    if status == 404 or any(keyword in error_msg for keyword in ['disconnected', 'not connected', 'qr code']):
        return ErrorCategory.DISCONNECTED

    # 영구 오류
    if status == 400 or any(keyword in error_msg for keyword in ['invalid number', 'not on whatsapp']):
        return ErrorCategory.INVALID_NUMBER
    if 'blocked' in error_msg:
        return ErrorCategory.BLOCKED_NUMBER

    # 일시적 오류
    if status == 429 or any(keyword in error_msg for keyword in ['rate limit', 'too many']):
        return ErrorCategory.RATE_LIMIT
    if (status is not None and status >= 500) or any(keyword in error_msg for keyword in ['server error', 'busy']):
        return ErrorCategory.SERVER_BUSY
    if error_type in ('TimeoutError', 'TimeoutException', 'ReadTimeout', 'ConnectTimeout') or 'timeout' in error_msg:
        return ErrorCategory.TIMEOUT

    return ErrorCategory.API_ERROR

def should_retry(category: ErrorCategory, attempt: int, max_retries: int) -> bool:
    """재시도 여부 (attempt는 0부터 시작)"""
    if category in PERMANENT_ERRORS or category in SESSION_ERRORS:
        return False
    return attempt + 1 < max_retries

def calculate_backoff(
    category: ErrorCategory,
    attempt: int,
    base_delay: float = 2.0,
    max_delay: float = 300.0,
    jitter: Any = random.random
) -> float:
    """지수 백오프 + 지터 (초)"""
    delay = base_delay * (2 ** attempt)
    delay = max(delay, MIN_BACKOFF.get(category, 0.0) if base_delay > 0 else 0.0)
    return min(delay + jitter() * min(1.0, base_delay), max_delay)
