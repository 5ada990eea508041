"""
데이터베이스 연결 및 CRUD 작업을 위한 헬퍼 모듈

profiles / commission_notifications 테이블은 모두 키 기반 단일 행 연산으로만 변경한다.
"""

from typing import Dict, List, Optional, Any
from datetime import datetime, timezone
from supabase import Client
import logging

from core.interfaces import IDatabaseHelper

logger = logging.getLogger(__name__)

PROFILES_TABLE = 'profiles'
COMMISSION_TABLE = 'commission_notifications'

# 감사 로그 upsert 충돌 키 (UNIQUE 인덱스 필요)
COMMISSION_CONFLICT_KEY = 'user_id,payment_reference'

# record_commission_notification이 매번 덮어쓰는 필드
COMMISSION_FIELDS = (
    'user_id',
    'referrer_id',
    'payment_reference',
    'user_email',
    'amount',
    'status',
    'response_data',
    'error_message',
    'retry_count',
)


class DatabaseHelper(IDatabaseHelper):
    def __init__(self, supabase_client: Client, admin_client: Client = None):
        self.supabase = supabase_client
        self.admin_client = admin_client or supabase_client

    def _get_client(self, use_admin: bool = False):
        """적절한 클라이언트 반환 - 일반적으로 admin client 사용"""
        return self.admin_client if use_admin or self.admin_client else self.supabase

    @staticmethod
    def _now_iso() -> str:
        return datetime.now(timezone.utc).isoformat()

    @staticmethod
    def _parse_iso_datetime(value: Any) -> Optional[datetime]:
        """ISO 포맷 문자열을 datetime 객체로 변환 (Z 접두 처리 포함)"""
        if not value:
            return None
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                normalized = value.replace('Z', '+00:00')
                return datetime.fromisoformat(normalized)
            except Exception:
                return None
        return None

    # Profiles 관련 함수들
    async def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """사용자 프로필 조회"""
        try:
            client = self._get_client(use_admin=True)
            result = client.table(PROFILES_TABLE).select('*').eq('user_id', user_id).limit(1).execute()
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"사용자 프로필 조회 실패: {e}")
            return None

    async def upsert_user_profile(self, user_id: str, email: str, full_name: Optional[str] = None) -> Dict[str, Any]:
        """사용자 프로필 생성/갱신 - referrer_id는 이 경로에서 절대 쓰지 않는다"""
        try:
            profile_data = {
                'user_id': user_id,
                'email': email,
                'full_name': full_name or (email.split('@')[0] if email else None),
                'updated_at': self._now_iso(),
            }
            client = self._get_client(use_admin=True)
            result = client.table(PROFILES_TABLE).upsert(profile_data, on_conflict='user_id').execute()
            return result.data[0] if result.data else {}
        except Exception as e:
            logger.error(f"사용자 프로필 생성 실패: {e}")
            return {}

    async def set_referrer_if_absent(self, user_id: str, referrer_id: str) -> bool:
        """referrer_id IS NULL 조건부 갱신으로 최초 추천인만 보존"""
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table(PROFILES_TABLE)
                .update({'referrer_id': referrer_id, 'updated_at': self._now_iso()})
                .eq('user_id', user_id)
                .is_('referrer_id', 'null')
                .execute()
            )
            return bool(result.data)
        except Exception as e:
            logger.error(f"추천인 설정 실패: {e}")
            return False

    async def update_subscription_state(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """user_id 키로 구독 필드를 절대값으로 갱신

        Returns:
            갱신된 행, 일치하는 프로필이 없으면 {}, DB 오류면 None
        """
        try:
            update_data = {**fields, 'updated_at': self._now_iso()}
            client = self._get_client(use_admin=True)
            result = client.table(PROFILES_TABLE).update(update_data).eq('user_id', user_id).execute()
            return result.data[0] if result.data else {}
        except Exception as e:
            logger.error(f"구독 상태 갱신 실패: user_id={user_id} error={e}")
            return None

    async def mark_commission_notified(self, user_id: str) -> bool:
        """커미션 통지 완료 플래그 설정"""
        try:
            now = self._now_iso()
            client = self._get_client(use_admin=True)
            result = client.table(PROFILES_TABLE).update({
                'commission_notified': True,
                'commission_notified_at': now,
                'updated_at': now,
            }).eq('user_id', user_id).execute()
            return bool(result.data)
        except Exception as e:
            logger.error(f"commission_notified 설정 실패: user_id={user_id} error={e}")
            return False

    async def count_active_subscriptions(self, plan: str) -> Optional[int]:
        """요금제별 활성 구독자 수 (오류 시 None)"""
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table(PROFILES_TABLE)
                .select('user_id', count='exact')
                .eq('plan', plan)
                .eq('subscription_active', True)
                .execute()
            )
            if result.count is not None:
                return result.count
            return len(result.data or [])
        except Exception as e:
            logger.error(f"활성 구독자 수 조회 실패: {e}")
            return None

    async def deactivate_expired_subscriptions(self, now: Optional[datetime] = None) -> int:
        """subscription_expires_at이 지난 활성 구독을 비활성화"""
        try:
            current_time = (now or datetime.now(timezone.utc)).isoformat()
            client = self._get_client(use_admin=True)
            result = (
                client.table(PROFILES_TABLE)
                .update({'subscription_active': False, 'updated_at': self._now_iso()})
                .eq('subscription_active', True)
                .lt('subscription_expires_at', current_time)
                .execute()
            )
            return len(result.data or [])
        except Exception as e:
            logger.error(f"만료 구독 비활성화 실패: {e}")
            return 0

    # Commission Notifications 관련 함수들
    async def get_commission_notification(self, user_id: str, payment_reference: str) -> Optional[Dict[str, Any]]:
        """감사 로그 단건 조회"""
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table(COMMISSION_TABLE)
                .select('*')
                .eq('user_id', user_id)
                .eq('payment_reference', payment_reference)
                .limit(1)
                .execute()
            )
            return result.data[0] if result.data else None
        except Exception as e:
            logger.error(f"커미션 통지 조회 실패: {e}")
            return None

    async def has_commission_been_notified(self, user_id: str, payment_reference: str) -> bool:
        """success 행이 있을 때만 True"""
        row = await self.get_commission_notification(user_id, payment_reference)
        return bool(row) and row.get('status') == 'success'

    async def record_commission_notification(self, notification: Dict[str, Any], overwrite: bool = True) -> bool:
        """(user_id, payment_reference) 충돌 시 상태/응답/오류/재시도 횟수를 덮어쓴다

        overwrite=False이면 ON CONFLICT DO NOTHING (기존 행 보존)
        """
        try:
            row = {field: notification.get(field) for field in COMMISSION_FIELDS}
            row['updated_at'] = self._now_iso()
            client = self._get_client(use_admin=True)
            client.table(COMMISSION_TABLE).upsert(
                row,
                on_conflict=COMMISSION_CONFLICT_KEY,
                ignore_duplicates=not overwrite,
            ).execute()
            return True
        except Exception as e:
            logger.error(f"커미션 통지 기록 실패: {e}")
            return False

    async def list_retryable_commission_notifications(self, limit: int, max_retry_count: int) -> List[Dict[str, Any]]:
        """재시도 예산이 남은 실패 행을 오래된 순으로 조회"""
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table(COMMISSION_TABLE)
                .select('*')
                .eq('status', 'failed')
                .lt('retry_count', max_retry_count)
                .order('created_at', desc=False)
                .limit(limit)
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error(f"실패한 커미션 통지 조회 실패: {e}")
            return []

    async def list_commission_notifications(self, user_id: str) -> List[Dict[str, Any]]:
        """사용자의 감사 로그 전체 조회"""
        try:
            client = self._get_client(use_admin=True)
            result = (
                client.table(COMMISSION_TABLE)
                .select('*')
                .eq('user_id', user_id)
                .order('created_at', desc=True)
                .execute()
            )
            return result.data or []
        except Exception as e:
            logger.error(f"커미션 통지 목록 조회 실패: {e}")
            return []

    async def reset_commission_state(self, user_id: str) -> int:
        """감사 로그 삭제 후 commission_notified 플래그 해제 (삭제된 행 수 반환)"""
        client = self._get_client(use_admin=True)
        deleted = client.table(COMMISSION_TABLE).delete().eq('user_id', user_id).execute()
        client.table(PROFILES_TABLE).update({
            'commission_notified': False,
            'commission_notified_at': None,
            'updated_at': self._now_iso(),
        }).eq('user_id', user_id).execute()
        return len(deleted.data or [])

    # System Logs
    async def log_system_event(self, user_id: str = None, event_type: str = 'info',
                               event_data: Dict[str, Any] = None) -> bool:
        """시스템 이벤트 로그 기록"""
        try:
            log_data = {
                'user_id': user_id,
                'event_type': event_type,
                'event_data': event_data or {},
            }
            result = self.admin_client.table('system_logs').insert(log_data).execute()
            return bool(result.data)
        except Exception as e:
            logger.error(f"시스템 로그 기록 실패: {e}")
            return False
