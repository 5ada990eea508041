"""
관리자 전용 API 라우터 - 커미션 상태 조회 및 초기화
"""
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Path, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from core.responses import AuthorizationException, success_response
from schemas.admin import CommissionResetRequest, CommissionStatusResponse
from services.auth_service import is_admin

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

# 의존성 주입 대상 서비스들
auth_service = None  # type: ignore
commission_service = None  # type: ignore

# HTTP Bearer 인증 스키마
security = HTTPBearer(auto_error=False)


def set_dependencies(auth_svc, commission_svc=None) -> None:
    """main.py에서 호출하여 서비스 인스턴스를 주입한다."""
    global auth_service, commission_service
    auth_service = auth_svc
    commission_service = commission_svc


async def authorize_admin(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
):
    """Supabase JWT의 app_metadata를 확인해 관리자 권한을 검증한다."""
    if auth_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="관리자 인증 서비스가 초기화되지 않았습니다.",
        )

    if credentials is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="인증 토큰이 필요합니다.",
        )

    user = await auth_service.verify_auth(credentials)
    if not is_admin(user):
        raise AuthorizationException("관리자 권한이 필요합니다.")

    return user


async def get_current_admin(user=Depends(authorize_admin)):
    """엔드포인트에서 관리자 정보를 활용할 수 있도록 반환."""
    if commission_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="관리자 서비스 의존성이 초기화되지 않았습니다.",
        )
    return user


@router.get("/commissions/{user_id}")
async def get_commission_status(
    user_id: str = Path(..., description="조회할 사용자 ID"),
    admin=Depends(get_current_admin),
):
    """사용자의 커미션 통지 플래그와 감사 로그 조회"""
    result = await commission_service.get_commission_status(user_id)
    return success_response(
        data=CommissionStatusResponse(**result).model_dump(),
        message="커미션 상태 조회 완료",
    )


@router.post("/commissions/{user_id}/reset")
async def reset_commission(
    user_id: str = Path(..., description="초기화할 사용자 ID"),
    payload: Optional[CommissionResetRequest] = Body(default=None),
    admin=Depends(get_current_admin),
):
    """감사 로그 삭제 + commission_notified 해제 (다음 활성화 때 다시 통지 대상이 된다)"""
    result = await commission_service.reset_commission(user_id, admin_id=getattr(admin, "id", None))
    if payload and payload.reason:
        result["reason"] = payload.reason
    return success_response(data=result, message="커미션 상태가 초기화되었습니다")
