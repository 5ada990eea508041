from __future__ import annotations

from pydantic import BaseModel, Field
from typing import List, Optional

from schemas import CommissionNotification


class CommissionStatusResponse(BaseModel):
    user_id: str = Field(..., description="조회 대상 사용자 ID")
    profile_found: bool = Field(..., description="프로필 존재 여부")
    referrer_id: Optional[str] = Field(None, description="추천인 제휴 코드")
    subscription_active: bool = Field(False, description="구독 활성 여부")
    commission_notified: bool = Field(False, description="커미션 통지 완료 여부")
    commission_notified_at: Optional[str] = Field(None, description="커미션 통지 시각")
    eligible: bool = Field(..., description="현재 통지 자격 여부")
    ineligible_reason: Optional[str] = Field(None, description="자격이 없는 이유")
    notifications: List[CommissionNotification] = Field(default_factory=list, description="감사 로그 (최신순)")


class CommissionResetRequest(BaseModel):
    reason: Optional[str] = Field(None, description="초기화 사유", max_length=500)
