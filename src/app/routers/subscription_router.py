"""
구독 결제 라우터
- 결제 페이지 초기화
- 결제 후 브라우저 리다이렉트 검증 (Paystack 거래 조회로 재확인)
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from core.responses import success_response
from routers.auth_router import get_current_user
from schemas import CheckoutInitRequest, CheckoutInitResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/subscriptions", tags=["subscriptions"])

subscription_service = None  # type: ignore


def set_dependencies(subscription_svc) -> None:
    global subscription_service
    subscription_service = subscription_svc


def _require_service():
    if subscription_service is None:
        raise HTTPException(status_code=500, detail="구독 서비스가 초기화되지 않았습니다.")
    return subscription_service


@router.post("/initialize")
async def initialize_subscription(body: CheckoutInitRequest, current_user=Depends(get_current_user)):
    """Paystack 결제 페이지 URL 발급"""
    service = _require_service()
    result = await service.initialize_checkout(
        current_user.id,
        getattr(current_user, "email", None),
        body.plan,
    )
    return success_response(
        data=CheckoutInitResponse(**result).model_dump(),
        message="결제 페이지가 생성되었습니다",
    )


@router.get("/verify")
async def verify_subscription(reference: Optional[str] = Query(default=None)):
    """결제 후 리다이렉트 - 성공 시 대시보드로 이동, 실패 시 JSON 오류"""
    service = _require_service()
    result = await service.verify_and_activate(reference or "")
    logger.info(f"[PAYSTACK] 리다이렉트 검증 완료: reference={reference} user_id={result.get('user_id')}")
    return RedirectResponse(url=result["redirect_url"], status_code=303)
