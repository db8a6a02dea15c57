"""
queue_worker

import / report / campaign 도메인 백그라운드 작업 워커 서비스
"""

__version__ = "0.1.0"
