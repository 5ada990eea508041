"""
프로필 부트스트랩 서비스
최초 로그인 시 프로필을 만들고, 추천인(referrer_id)은 한 번만 기록한다.
"""
from typing import Any, Dict, Optional

from core.base_service import BaseService
from core.interfaces import IDatabaseHelper
from core.responses import BusinessException, ValidationException


class ProfileService(BaseService):
    """프로필 생성/갱신 서비스"""

    def __init__(self, db_helper: IDatabaseHelper):
        super().__init__(db_helper)

    async def create_or_update_profile(
        self,
        user_id: str,
        email: Optional[str],
        full_name: Optional[str] = None,
        referrer_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """프로필 upsert 후 referrer_id가 비어 있을 때만 추천인을 기록

        이미 추천인이 있는 프로필에 다른 추천인이 와도 기존 값이 유지된다.
        """
        self.validate_required_fields({"user_id": user_id, "email": email}, ["user_id", "email"])

        name = (full_name or "").strip() or None
        profile = await self.db_helper.upsert_user_profile(user_id, email, name)
        if not profile:
            raise BusinessException("프로필 생성에 실패했습니다", "DATABASE_ERROR", 500)

        referrer = (referrer_id or "").strip()
        if referrer:
            if referrer == user_id:
                raise ValidationException("자기 자신을 추천인으로 지정할 수 없습니다", errors=["referrer_id"])

            applied = await self.db_helper.set_referrer_if_absent(user_id, referrer)
            if applied:
                self.logger.info(f"추천인 기록: user_id={user_id} referrer={referrer}")
            else:
                self.logger.info(f"추천인 유지 (이미 설정됨): user_id={user_id}")

        stored = await self.db_helper.get_user_profile(user_id)
        return stored or profile
