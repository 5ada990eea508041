"""
API 요청/응답 스키마 정의
"""
from pydantic import BaseModel, Field
from typing import Any, Dict, Literal, Optional

NotificationStatus = Literal["pending", "success", "failed"]

class ProfileCallbackRequest(BaseModel):
    """최초 로그인 후 프로필 생성 요청"""
    full_name: Optional[str] = Field(None, description="표시 이름 (없으면 이메일 앞부분)", max_length=200)
    referrer_id: Optional[str] = Field(None, description="가입 링크의 제휴 코드 (최초 1회만 기록)", max_length=200)

class UserProfile(BaseModel):
    """profiles 테이블 레코드"""
    user_id: str = Field(..., description="사용자 ID")
    email: Optional[str] = Field(None, description="이메일")
    full_name: Optional[str] = Field(None, description="표시 이름")
    plan: Optional[str] = Field(None, description="요금제")
    subscription_active: Optional[bool] = Field(False, description="구독 활성 여부")
    subscription_started_at: Optional[str] = Field(None, description="최초 활성화 시각")
    subscription_expires_at: Optional[str] = Field(None, description="만료 시각")
    subscription_last_payment_at: Optional[str] = Field(None, description="마지막 결제 시각")
    referrer_id: Optional[str] = Field(None, description="추천인 제휴 코드")
    commission_notified: Optional[bool] = Field(False, description="커미션 통지 완료 여부")
    commission_notified_at: Optional[str] = Field(None, description="커미션 통지 시각")

    class Config:
        extra = "ignore"

class CheckoutInitRequest(BaseModel):
    """결제 초기화 요청"""
    plan: str = Field(..., description="요금제 이름 (Individual / Professional)", min_length=1)

class CheckoutInitResponse(BaseModel):
    """결제 초기화 응답"""
    authorization_url: Optional[str] = Field(None, description="Paystack 결제 페이지 URL")
    reference: Optional[str] = Field(None, description="거래 reference")
    access_code: Optional[str] = Field(None, description="Paystack access code")
    plan: str = Field(..., description="요금제")
    amount: int = Field(..., description="결제 금액 (최소 화폐 단위)")

class CommissionNotification(BaseModel):
    """commission_notifications 테이블 레코드"""
    user_id: str
    referrer_id: Optional[str] = None
    payment_reference: str
    user_email: Optional[str] = None
    amount: Optional[int] = None
    status: NotificationStatus
    response_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    retry_count: Optional[int] = 0
    created_at: Optional[str] = None
    updated_at: Optional[str] = None

    class Config:
        extra = "ignore"

class RetryCommissionsResponse(BaseModel):
    """재시도 엔드포인트 응답 (cron 호출자용 평문 JSON)"""
    success: bool
    retriedCount: int
    limit: int
    message: str

class WebhookAck(BaseModel):
    """Paystack 웹훅 응답"""
    ok: bool

__all__ = [
    "NotificationStatus",
    "ProfileCallbackRequest",
    "UserProfile",
    "CheckoutInitRequest",
    "CheckoutInitResponse",
    "CommissionNotification",
    "RetryCommissionsResponse",
    "WebhookAck",
]
