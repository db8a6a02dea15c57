# queue_worker/database/postgresql.py
import asyncio
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional

import asyncpg

from queue_worker.config import Settings, get_settings

logger = logging.getLogger(__name__)

class PostgreSQLManager:
    """PostgreSQL 연결 및 세션 관리자"""

    def __init__(self, settings: Optional[Settings] = None):
        self.config = settings or get_settings()
        self._pool: Optional[asyncpg.Pool] = None
        self._pool_lock = asyncio.Lock()

    async def get_pool(self) -> asyncpg.Pool:
        """연결 풀 가져오기 (Lazy Loading)"""
        if self._pool is None:
            async with self._pool_lock:
                if self._pool is None:
                    try:
                        self._pool = await asyncpg.create_pool(
                            user=self.config.POSTGRES_USER,
                            password=self.config.POSTGRES_PASSWORD,
                            database=self.config.POSTGRES_DB,
                            host=self.config.POSTGRES_HOST,
                            port=self.config.POSTGRES_PORT,
                            min_size=2,
                            max_size=10,
                            command_timeout=60,
                        )
                        logger.info("PostgreSQL 연결 풀이 성공적으로 생성되었습니다")
                    except Exception as e:
                        logger.error(f"PostgreSQL 연결 풀 생성 실패: {e}")
                        raise
        return self._pool

    @asynccontextmanager
    async def get_connection(self) -> AsyncGenerator[asyncpg.Connection, None]:
        """연결 풀에서 연결 가져오기 (Context Manager)"""
        pool = await self.get_pool()
        async with pool.acquire() as connection:
            yield connection

    async def execute_query(self, query: str, *args) -> List[asyncpg.Record]:
        """SELECT 쿼리 실행"""
        async with self.get_connection() as conn:
            try:
                return await conn.fetch(query, *args)
            except Exception as e:
                logger.error(f"쿼리 실행 실패: {query[:100]}... - {e}")
                raise

    async def execute_single(self, query: str, *args) -> Optional[asyncpg.Record]:
        """단일 행 SELECT 쿼리 실행"""
        async with self.get_connection() as conn:
            try:
                return await conn.fetchrow(query, *args)
            except Exception as e:
                logger.error(f"단일 행 쿼리 실행 실패: {query[:100]}... - {e}")
                raise

    async def execute_command(self, query: str, *args) -> str:
        """INSERT/UPDATE/DELETE 쿼리 실행"""
        async with self.get_connection() as conn:
            try:
                return await conn.execute(query, *args)
            except Exception as e:
                logger.error(f"명령 실행 실패: {query[:100]}... - {e}")
                raise

    async def close(self):
        """연결 풀 종료"""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("PostgreSQL 연결 풀 종료")

class PostgresContactStore:
    """연락처 배치 저장"""

    def __init__(self, manager: PostgreSQLManager):
        self.manager = manager

    async def insert_contacts(
        self,
        contacts: List[Dict[str, Any]],
        tenant_id: str,
        user_id: str
    ) -> Dict[str, Any]:
        """배치 하나를 한 트랜잭션으로 upsert

        이미 존재하는 (tenant_id, phone)은 건너뛰며 failed로 집계하지 않는다.
        """
        rows = [
            (
                tenant_id,
                user_id,
                contact['name'],
                contact['phone'],
                contact.get('email'),
                contact.get('tags') or [],
                json.dumps(contact.get('metadata') or {}, ensure_ascii=False),
            )
            for contact in contacts
        ]
        inserted = 0
        async with self.manager.get_connection() as conn:
            async with conn.transaction():
                for row in rows:
                    contact_id = await conn.fetchval(
                        """
                        INSERT INTO contacts (tenant_id, user_id, name, phone, email, tags, metadata)
                        VALUES ($1, $2, $3, $4, $5, $6, $7::jsonb)
                        ON CONFLICT (tenant_id, phone) DO NOTHING
                        RETURNING id
                        """,
                        *row
                    )
                    if contact_id is not None:
                        inserted += 1

        return {'inserted': inserted, 'failed': 0, 'errors': []}

class PostgresReportDataSource:
    """리포트/익스포트용 데이터 조회"""

    def __init__(self, manager: PostgreSQLManager):
        self.manager = manager

    async def fetch_campaign_data(self, campaign_id: str, tenant_id: str) -> Dict[str, Any]:
        row = await self.manager.execute_single(
            """
            SELECT c.id, c.name, c.created_at,
                   COUNT(cc.id) AS total_messages,
                   COUNT(cc.id) FILTER (WHERE cc.status = 'sent') AS delivered,
                   COUNT(cc.id) FILTER (WHERE cc.status = 'failed') AS failed
            FROM bulk_campaigns c
            LEFT JOIN campaign_contacts cc ON cc.campaign_id = c.id
            WHERE c.id = $1 AND c.tenant_id = $2
            GROUP BY c.id
            """,
            campaign_id, tenant_id
        )
        if row is None:
            raise ValueError(f"Campaign not found: {campaign_id}")
        return {
            'id': str(row['id']),
            'name': row['name'],
            'totalMessages': row['total_messages'],
            'delivered': row['delivered'],
            'failed': row['failed'],
            'createdAt': row['created_at'].isoformat() if row['created_at'] else None,
        }

    async def fetch_analytics_data(self, tenant_id: str, date_from: str, date_to: str) -> Dict[str, Any]:
        row = await self.manager.execute_single(
            """
            SELECT
                (SELECT COUNT(*) FROM messages
                  WHERE tenant_id = $1 AND created_at::date BETWEEN $2::date AND $3::date) AS total_messages,
                (SELECT COUNT(*) FROM bulk_campaigns
                  WHERE tenant_id = $1 AND created_at::date BETWEEN $2::date AND $3::date) AS total_campaigns,
                (SELECT COUNT(*) FROM contacts WHERE tenant_id = $1) AS active_contacts,
                (SELECT COALESCE(AVG(CASE WHEN status = 'delivered' THEN 100.0 ELSE 0 END), 0)
                   FROM messages
                  WHERE tenant_id = $1 AND created_at::date BETWEEN $2::date AND $3::date) AS avg_delivery_rate
            """,
            tenant_id, date_from, date_to
        )
        return {
            'summary': {
                'totalMessages': row['total_messages'],
                'totalCampaigns': row['total_campaigns'],
                'avgDeliveryRate': round(float(row['avg_delivery_rate']), 2),
                'activeContacts': row['active_contacts'],
            },
        }

    async def fetch_contacts(self, tenant_id: str, user_id: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = "SELECT id, name, phone, email, tags FROM contacts WHERE tenant_id = $1 AND user_id = $2"
        args: List[Any] = [tenant_id, user_id]
        if filters.get('tag'):
            args.append(filters['tag'])
            query += f" AND ${len(args)} = ANY(tags)"
        rows = await self.manager.execute_query(query + " ORDER BY name", *args)
        return [dict(row) for row in rows]

    async def fetch_messages(self, tenant_id: str, user_id: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        query = "SELECT id, phone, body AS text, status, created_at FROM messages WHERE tenant_id = $1 AND user_id = $2"
        args: List[Any] = [tenant_id, user_id]
        if filters.get('status'):
            args.append(filters['status'])
            query += f" AND status = ${len(args)}"
        rows = await self.manager.execute_query(query + " ORDER BY created_at", *args)
        return [dict(row) for row in rows]

    async def fetch_usage_data(self, tenant_id: str, period: str) -> Dict[str, Any]:
        row = await self.manager.execute_single(
            """
            SELECT u.messages_sent, u.campaigns_created, u.contacts_total,
                   p.max_messages, p.max_campaigns, p.max_contacts
            FROM tenant_usage u
            JOIN tenant_plans p ON p.tenant_id = u.tenant_id
            WHERE u.tenant_id = $1 AND u.period = $2
            """,
            tenant_id, period
        )
        if row is None:
            return {'messages': {'sent': 0}, 'campaigns': {'created': 0}, 'contacts': {'total': 0}}
        return {
            'messages': {'sent': row['messages_sent'], 'limit': row['max_messages']},
            'campaigns': {'created': row['campaigns_created'], 'limit': row['max_campaigns']},
            'contacts': {'total': row['contacts_total'], 'limit': row['max_contacts']},
        }

class PostgresCampaignStore:
    """캠페인 발송 상태 저장"""

    def __init__(self, manager: PostgreSQLManager):
        self.manager = manager

    async def load_pending_contacts(self, campaign_id: str) -> List[Dict[str, Any]]:
        rows = await self.manager.execute_query(
            """
            SELECT id, phone, name, variables
            FROM campaign_contacts
            WHERE campaign_id = $1 AND status = 'pending'
            ORDER BY processing_order NULLS LAST, id
            """,
            campaign_id
        )
        contacts = []
        for row in rows:
            variables = row['variables']
            if isinstance(variables, str):
                variables = json.loads(variables)
            contacts.append({
                'id': str(row['id']),
                'phone': row['phone'],
                'name': row['name'],
                'variables': variables or {},
            })
        return contacts

    async def update_campaign_status(self, campaign_id: str, status: str, **fields: Any) -> None:
        await self.manager.execute_command(
            "UPDATE bulk_campaigns SET status = $2, stats = COALESCE(stats, '{}'::jsonb) || $3::jsonb, "
            "updated_at = NOW() WHERE id = $1",
            campaign_id, status, json.dumps(fields, default=str)
        )

    async def update_contact_status(
        self,
        contact_id: str,
        status: str,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> None:
        await self.manager.execute_command(
            "UPDATE campaign_contacts SET status = $2, error_type = $3, error_message = $4, "
            "sent_at = CASE WHEN $2 = 'sent' THEN NOW() ELSE sent_at END WHERE id = $1",
            contact_id, status, error_type, error_message
        )
