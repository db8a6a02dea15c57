"""
워커가 호출하는 외부 협력자 인터페이스

파일 파싱, 레코드 저장, 리포트 데이터 조회, 문서 생성, 메시지 발송은
모두 이 좁은 인터페이스로만 접근한다.
"""

from typing import Any, Dict, List, Optional, Protocol

class FileParser(Protocol):
    async def parse(self, file_path: str, file_type: str) -> List[Dict[str, Any]]:
        ...

class ContactStore(Protocol):
    async def insert_contacts(
        self,
        contacts: List[Dict[str, Any]],
        tenant_id: str,
        user_id: str
    ) -> Dict[str, Any]:
        """Returns {"inserted": int, "failed": int, "errors": list}"""
        ...

class ReportDataSource(Protocol):
    async def fetch_campaign_data(self, campaign_id: str, tenant_id: str) -> Dict[str, Any]:
        ...

    async def fetch_analytics_data(self, tenant_id: str, date_from: str, date_to: str) -> Dict[str, Any]:
        ...

    async def fetch_contacts(self, tenant_id: str, user_id: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...

    async def fetch_messages(self, tenant_id: str, user_id: str, filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        ...

    async def fetch_usage_data(self, tenant_id: str, period: str) -> Dict[str, Any]:
        ...

class DocumentGenerator(Protocol):
    async def generate_report(self, data: Dict[str, Any], format: str, report_id: str) -> str:
        ...

    async def generate_export(self, records: List[Dict[str, Any]], format: str, export_id: str, kind: str) -> str:
        ...

class CampaignStore(Protocol):
    async def load_pending_contacts(self, campaign_id: str) -> List[Dict[str, Any]]:
        ...

    async def update_campaign_status(self, campaign_id: str, status: str, **fields: Any) -> None:
        ...

    async def update_contact_status(
        self,
        contact_id: str,
        status: str,
        error_type: Optional[str] = None,
        error_message: Optional[str] = None
    ) -> None:
        ...

class MessageSender(Protocol):
    async def send_text(self, phone: str, body: str, token: str) -> Dict[str, Any]:
        ...
