"""
서비스 인터페이스 정의
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional


class IAuthService(ABC):
    """인증 서비스 인터페이스"""

    @abstractmethod
    async def verify_auth(self, credentials) -> Any:
        """토큰 검증"""
        pass


class IDatabaseHelper(ABC):
    """데이터베이스 헬퍼 인터페이스

    프로필과 커미션 감사 로그는 모두 단일 행 키 기반 연산(UPDATE/UPSERT)으로만 변경한다.
    """

    # 프로필
    @abstractmethod
    async def get_user_profile(self, user_id: str) -> Optional[Dict[str, Any]]:
        """사용자 프로필 조회"""
        pass

    @abstractmethod
    async def upsert_user_profile(self, user_id: str, email: str, full_name: Optional[str] = None) -> Dict[str, Any]:
        """사용자 프로필 생성 또는 갱신 (referrer_id는 건드리지 않음)"""
        pass

    @abstractmethod
    async def set_referrer_if_absent(self, user_id: str, referrer_id: str) -> bool:
        """referrer_id가 비어 있을 때만 설정 (한 번만 기록)"""
        pass

    @abstractmethod
    async def update_subscription_state(self, user_id: str, fields: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """user_id 키로 구독 필드 갱신. 갱신된 행, 대상 없음이면 {}, DB 오류면 None"""
        pass

    @abstractmethod
    async def mark_commission_notified(self, user_id: str) -> bool:
        """커미션 통지 완료 플래그 설정"""
        pass

    @abstractmethod
    async def count_active_subscriptions(self, plan: str) -> Optional[int]:
        """요금제별 활성 구독자 수"""
        pass

    @abstractmethod
    async def deactivate_expired_subscriptions(self, now: Optional[datetime] = None) -> int:
        """만료된 구독 일괄 비활성화"""
        pass

    # 커미션 감사 로그
    @abstractmethod
    async def has_commission_been_notified(self, user_id: str, payment_reference: str) -> bool:
        """(user_id, payment_reference)에 success 행이 있는지 확인"""
        pass

    @abstractmethod
    async def get_commission_notification(self, user_id: str, payment_reference: str) -> Optional[Dict[str, Any]]:
        """감사 로그 단건 조회"""
        pass

    @abstractmethod
    async def record_commission_notification(self, notification: Dict[str, Any], overwrite: bool = True) -> bool:
        """(user_id, payment_reference) 충돌 키로 upsert. overwrite=False면 기존 행 보존"""
        pass

    @abstractmethod
    async def list_retryable_commission_notifications(self, limit: int, max_retry_count: int) -> List[Dict[str, Any]]:
        """status=failed 이고 retry_count < max_retry_count 인 행을 오래된 순으로 조회"""
        pass

    @abstractmethod
    async def list_commission_notifications(self, user_id: str) -> List[Dict[str, Any]]:
        """사용자의 감사 로그 전체 조회"""
        pass

    @abstractmethod
    async def reset_commission_state(self, user_id: str) -> int:
        """관리자 초기화: 감사 로그 삭제 및 commission_notified 해제"""
        pass

    @abstractmethod
    async def log_system_event(self, user_id: str = None, event_type: str = 'info',
                               event_data: Dict[str, Any] = None) -> bool:
        """시스템 이벤트 로깅"""
        pass


class ISubscriptionService(ABC):
    """구독 상태 머신 인터페이스"""

    @abstractmethod
    async def handle_charge_event(self, event: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """charge.success / charge.failed 이벤트 적용"""
        pass

    @abstractmethod
    async def verify_and_activate(self, reference: str) -> Dict[str, Any]:
        """결제 리다이렉트 검증 후 활성화"""
        pass


class ICommissionService(ABC):
    """커미션 통지 서비스 인터페이스"""

    @abstractmethod
    async def should_notify(self, user_id: str) -> Dict[str, Any]:
        """커미션 통지 자격 확인"""
        pass

    @abstractmethod
    async def notify(
        self,
        user_id: str,
        agent_code: str,
        user_email: str,
        plan: str,
        payment_reference: str,
        client_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """제휴 시스템에 커미션 통지"""
        pass

    @abstractmethod
    async def retry_failed(self, limit: int = 10) -> int:
        """실패한 통지 재시도"""
        pass
