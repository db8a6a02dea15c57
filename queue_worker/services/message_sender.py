# queue_worker/services/message_sender.py
import logging
from typing import Any, Dict

import httpx

logger = logging.getLogger(__name__)

class SendError(Exception):
    """WUZAPI가 성공 응답을 주지 않았을 때"""

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.status_code = status_code

class WuzapiSender:
    """WUZAPI 텍스트 메시지 발송 클라이언트"""

    def __init__(self, base_url: str, timeout: float = 15.0):
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout

    async def send_text(self, phone: str, body: str, token: str) -> Dict[str, Any]:
        async with httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout) as client:
            response = await client.post(
                '/chat/send/text',
                json={'Phone': phone, 'Body': body},
                headers={'Token': token} if token else {},
            )

        if response.status_code >= 400:
            raise SendError(
                f"WUZAPI send failed ({response.status_code}): {response.text[:200]}",
                status_code=response.status_code,
            )

        data = response.json() if response.content else {}
        if isinstance(data, dict) and data.get('success') is False:
            raise SendError(f"WUZAPI send failed: {data.get('error') or data}")

        payload = data.get('data', {}) if isinstance(data, dict) else {}
        logger.debug(f"메시지 발송 완료: {phone}")
        return {'id': payload.get('Id') or payload.get('id'), 'raw': data}
