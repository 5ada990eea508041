from typing import Optional, Sequence, Set

from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials
from supabase import Client
import logging

# Core imports
from core.interfaces import IAuthService, IDatabaseHelper
from core.base_service import BaseService
from core.responses import AuthenticationException

logger = logging.getLogger(__name__)

# 허용되는 관리자 역할
ADMIN_ROLES: Sequence[str] = ("admin", "super_admin", "owner")


def extract_roles(user) -> Set[str]:
    """Supabase 사용자 app_metadata의 role/roles 값을 소문자 집합으로 반환"""
    metadata = getattr(user, "app_metadata", {}) or {}
    roles: Set[str] = set()
    if not isinstance(metadata, dict):
        return roles

    role_value: Optional[str] = metadata.get("role")
    if isinstance(role_value, str):
        roles.add(role_value.lower())

    roles_field = metadata.get("roles")
    if isinstance(roles_field, list):
        roles.update(str(value).lower() for value in roles_field if isinstance(value, str))
    elif isinstance(roles_field, str):
        roles.update(part.strip().lower() for part in roles_field.split(",") if part.strip())

    return roles


def is_admin(user) -> bool:
    return any(role in ADMIN_ROLES for role in extract_roles(user))


class AuthService(BaseService, IAuthService):
    """Supabase JWT 인증 서비스"""

    def __init__(self, supabase_client: Client, db_helper: IDatabaseHelper):
        super().__init__(db_helper)
        self.supabase = supabase_client

    async def verify_auth(self, credentials: HTTPAuthorizationCredentials):
        """JWT 토큰 검증 후 Supabase 사용자 객체 반환"""

        try:
            return await self._verify_token_internal(credentials)
        except AuthenticationException:
            raise HTTPException(status_code=401, detail="유효하지 않은 토큰입니다.")
        except Exception as e:
            self.logger.error(f"인증 실패: {e}")
            raise HTTPException(status_code=401, detail="인증에 실패했습니다.")

    async def _verify_token_internal(self, credentials: HTTPAuthorizationCredentials):
        """내부 토큰 검증 로직"""
        if credentials is None or not credentials.credentials:
            raise AuthenticationException("인증 토큰이 필요합니다")

        try:
            response = self.supabase.auth.get_user(credentials.credentials)
        except Exception as e:
            self.logger.error(f"토큰 검증 중 오류: {e}")
            raise AuthenticationException("인증 처리 중 오류가 발생했습니다")

        if response is None or response.user is None:
            raise AuthenticationException("유효하지 않은 토큰입니다")

        return response.user
