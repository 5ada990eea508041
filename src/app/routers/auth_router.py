from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
import logging

from core.responses import success_response
from schemas import ProfileCallbackRequest, UserProfile

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1", tags=["authentication"])
security = HTTPBearer(auto_error=False)

# 의존성 주입 대상 서비스들
auth_service = None  # type: ignore
profile_service = None  # type: ignore


def set_dependencies(auth_svc, profile_svc=None) -> None:
    """main.py에서 호출하여 서비스 인스턴스를 주입한다."""
    global auth_service, profile_service
    auth_service = auth_svc
    profile_service = profile_svc


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)):
    """현재 사용자 정보를 가져오는 의존성"""
    if auth_service is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="인증 서비스가 초기화되지 않았습니다.",
        )
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="인증 토큰이 필요합니다.")
    return await auth_service.verify_auth(credentials)


@router.post("/auth/callback")
async def auth_callback(body: ProfileCallbackRequest, current_user=Depends(get_current_user)):
    """로그인 직후 프로필 생성 - 추천인은 최초 1회만 기록된다"""
    if profile_service is None:
        raise HTTPException(status_code=500, detail="프로필 서비스가 초기화되지 않았습니다.")

    profile = await profile_service.create_or_update_profile(
        current_user.id,
        getattr(current_user, "email", None),
        body.full_name,
        body.referrer_id,
    )
    return success_response(
        data=UserProfile(**profile).model_dump(),
        message="프로필이 준비되었습니다",
    )
