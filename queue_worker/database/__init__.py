# queue_worker/database/__init__.py
"""
데이터베이스 연결 모듈

Redis 큐 브로커와 PostgreSQL 협력자 구현을 제공합니다.

Usage:
    from queue_worker.database import connect_broker, BrokerUnavailable
    from queue_worker.database.postgresql import PostgreSQLManager
"""

from .redis import BrokerUnavailable, RedisBroker, connect_broker
from .postgresql import (
    PostgreSQLManager,
    PostgresCampaignStore,
    PostgresContactStore,
    PostgresReportDataSource,
)

__all__ = [
    "BrokerUnavailable",
    "RedisBroker",
    "connect_broker",
    "PostgreSQLManager",
    "PostgresCampaignStore",
    "PostgresContactStore",
    "PostgresReportDataSource",
]
