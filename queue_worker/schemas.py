from typing import Any, Dict, Optional
from pydantic import BaseModel, Field, model_validator


class DispatchCampaignPayload(BaseModel):
    """dispatch_campaign 작업 payload"""
    campaignId: str = Field(..., description="발송할 캠페인 ID")
    tenantId: Optional[str] = Field(None, description="테넌트 ID")
    userId: Optional[str] = Field(None, description="요청한 사용자 ID")
    token: str = Field(..., description="WUZAPI 인스턴스 토큰")
    message: str = Field("", description="메시지 템플릿 ({{변수}} 치환)")


class SendMessagePayload(BaseModel):
    """send_message 작업 payload"""
    phone: str = Field(..., description="수신자 전화번호 (숫자만)")
    message: str = Field("", description="메시지 템플릿")
    variables: Dict[str, Any] = Field(default_factory=dict, description="템플릿 변수")
    token: Optional[str] = Field(None, description="WUZAPI 인스턴스 토큰")

    @model_validator(mode='after')
    def validate_phone(self):
        """전화번호가 비어 있으면 발송 불가"""
        if not self.phone.strip():
            raise ValueError("phone은 비어 있을 수 없습니다.")
        return self
