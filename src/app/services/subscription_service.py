"""
구독 상태 머신 서비스
charge.success / charge.failed 웹훅과 결제 리다이렉트 검증을 같은 프로필 갱신으로 수렴시킨다.
"""
import json
from datetime import timedelta
from typing import Any, Dict, Optional

from core.background import BackgroundTaskRunner
from core.base_service import BaseService
from core.billing_config import DEFAULT_PLAN_CATALOG, PlanCatalog, normalize_plan, parse_plan
from core.interfaces import IDatabaseHelper, ISubscriptionService
from core.responses import (
    BusinessException,
    ConfigurationException,
    ConflictException,
    ExternalServiceException,
    NotFoundException,
    PaymentRequiredException,
    ValidationException,
)
from services.commission_service import CommissionService
from services.paystack_client import PaystackAPIError, PaystackClient

CHARGE_SUCCESS = "charge.success"
CHARGE_FAILED = "charge.failed"


def extract_metadata(data: Dict[str, Any]) -> Dict[str, Any]:
    """거래 데이터의 metadata (문자열 JSON 포함) 를 dict로 반환"""
    raw = data.get("metadata") if isinstance(data, dict) else None
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def extract_user_id(data: Dict[str, Any]) -> Optional[str]:
    user_id = extract_metadata(data).get("user_id")
    if user_id is None:
        return None
    user_id = str(user_id).strip()
    return user_id or None


class SubscriptionService(BaseService, ISubscriptionService):
    """구독 활성화/비활성화 서비스"""

    def __init__(
        self,
        db_helper: IDatabaseHelper,
        commission_service: CommissionService,
        task_runner: BackgroundTaskRunner,
        paystack_client: Optional[PaystackClient] = None,
        plan_catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
        app_base_url: str = "http://localhost:3000",
        api_public_url: str = "http://localhost:8000",
        currency: Optional[str] = None,
    ):
        super().__init__(db_helper)
        self.commission_service = commission_service
        self.task_runner = task_runner
        self.paystack_client = paystack_client
        self.plan_catalog = plan_catalog
        self.app_base_url = app_base_url.rstrip("/")
        self.api_public_url = api_public_url.rstrip("/")
        self.currency = currency

    @property
    def dashboard_success_url(self) -> str:
        return f"{self.app_base_url}/dashboard?subscription=success"

    @property
    def verify_callback_url(self) -> str:
        return f"{self.api_public_url}/api/v1/subscriptions/verify"

    async def handle_charge_event(self, event: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """charge.* 이벤트 적용. user_id를 알 수 없으면 기록만 하고 no-op"""
        data = data if isinstance(data, dict) else {}
        user_id = extract_user_id(data)
        reference = data.get("reference")

        if not user_id:
            self.logger.warning(f"[PAYSTACK] {event} 이벤트에 metadata.user_id 없음: reference={reference}")
            return {"handled": False, "reason": "missing_user_id"}

        if event == CHARGE_SUCCESS:
            plan = extract_metadata(data).get("plan")
            return await self.activate(user_id, plan, reference)

        if event == CHARGE_FAILED:
            return await self.deactivate(user_id, reference)

        self.logger.info(f"[PAYSTACK] 처리하지 않는 charge 이벤트: {event}")
        return {"handled": False, "reason": "unsupported_event"}

    async def activate(self, user_id: str, plan: Any, reference: Optional[str]) -> Dict[str, Any]:
        """구독 활성화 후 커미션 통지를 백그라운드로 넘긴다

        같은 이벤트가 여러 번 와도 모든 필드를 절대값으로 쓰므로 결과가 같다.
        subscription_started_at 은 최초 활성화 시각을 유지한다.
        """
        now = self.utcnow()
        plan_value = normalize_plan(plan).value
        fields: Dict[str, Any] = {
            "subscription_active": True,
            "subscription_expires_at": (now + timedelta(days=self.plan_catalog.period_days)).isoformat(),
            "plan": plan_value,
            "subscription_last_payment_at": now.isoformat(),
        }

        profile = await self.db_helper.get_user_profile(user_id)
        if not (profile or {}).get("subscription_started_at"):
            fields["subscription_started_at"] = now.isoformat()

        updated = await self.db_helper.update_subscription_state(user_id, fields)
        if updated is None:
            raise BusinessException("구독 상태 저장에 실패했습니다", "DATABASE_ERROR", 500)
        if not updated:
            self.logger.warning(f"[PAYSTACK] 활성화 대상 프로필 없음: user_id={user_id} reference={reference}")
            return {"handled": False, "reason": "profile_not_found", "user_id": user_id}

        self.logger.info(f"[PAYSTACK] 구독 활성화: user_id={user_id} plan={plan_value} reference={reference}")

        self.task_runner.submit(
            self.commission_service.process_activation(user_id, reference or ""),
            name=f"commission:{user_id}:{reference}",
        )

        return {
            "handled": True,
            "action": "activated",
            "user_id": user_id,
            "plan": plan_value,
            "subscription_expires_at": fields["subscription_expires_at"],
        }

    async def deactivate(self, user_id: str, reference: Optional[str] = None) -> Dict[str, Any]:
        """결제 실패 시 비활성화 (커미션 통지 없음)"""
        updated = await self.db_helper.update_subscription_state(user_id, {"subscription_active": False})
        if updated is None:
            raise BusinessException("구독 상태 저장에 실패했습니다", "DATABASE_ERROR", 500)
        if not updated:
            self.logger.warning(f"[PAYSTACK] 비활성화 대상 프로필 없음: user_id={user_id} reference={reference}")
            return {"handled": False, "reason": "profile_not_found", "user_id": user_id}

        self.logger.info(f"[PAYSTACK] 결제 실패로 구독 비활성화: user_id={user_id} reference={reference}")
        return {"handled": True, "action": "deactivated", "user_id": user_id}

    def _require_paystack(self) -> PaystackClient:
        if self.paystack_client is None:
            raise ConfigurationException("PAYSTACK_SECRET_KEY가 설정되지 않았습니다")
        return self.paystack_client

    async def verify_and_activate(self, reference: str) -> Dict[str, Any]:
        """결제 리다이렉트 검증 - 쿼리 파라미터 대신 Paystack 거래 조회 결과를 신뢰한다"""
        if not reference or not reference.strip():
            raise BusinessException("reference가 필요합니다", "MISSING_REFERENCE", 400)

        client = self._require_paystack()
        try:
            transaction = await client.verify_transaction(reference)
        except PaystackAPIError as e:
            if e.status_code == 404:
                raise NotFoundException("결제 거래를 찾을 수 없습니다")
            raise ExternalServiceException("Paystack", str(e))

        status = transaction.get("status")
        if status != "success":
            self.logger.warning(f"[PAYSTACK] 거래 상태가 success 아님: reference={reference} status={status}")
            raise PaymentRequiredException()

        user_id = extract_user_id(transaction)
        if not user_id:
            self.logger.warning(f"[PAYSTACK] 거래 metadata.user_id 없음: reference={reference}")
            raise BusinessException("metadata.user_id가 없습니다", "MISSING_USER_ID", 400)

        result = await self.activate(
            user_id,
            extract_metadata(transaction).get("plan"),
            transaction.get("reference") or reference,
        )
        if not result.get("handled"):
            raise NotFoundException("사용자 프로필을 찾을 수 없습니다")

        return {**result, "redirect_url": self.dashboard_success_url}

    async def initialize_checkout(self, user_id: str, email: Optional[str], plan_name: str) -> Dict[str, Any]:
        """Paystack 결제 페이지 생성 (metadata에 user_id/plan을 실어 보낸다)"""
        plan = parse_plan(plan_name)
        if plan is None:
            raise ValidationException(f"알 수 없는 요금제입니다: {plan_name}", errors=["plan"])

        profile = await self.db_helper.get_user_profile(user_id)
        if not profile:
            raise NotFoundException("사용자 프로필을 찾을 수 없습니다")

        customer_email = profile.get("email") or email
        if not customer_email:
            raise ValidationException("결제에 사용할 이메일이 없습니다", errors=["email"])

        spec = self.plan_catalog.get(plan)
        if spec.max_active is not None:
            active = await self.db_helper.count_active_subscriptions(plan.value)
            if active is None:
                raise BusinessException("구독자 수 조회에 실패했습니다", "DATABASE_ERROR", 500)
            if active >= spec.max_active:
                raise ConflictException(f"{plan.value} 요금제 정원이 찼습니다", "PLAN_FULL")

        client = self._require_paystack()
        try:
            init = await client.initialize_transaction(
                customer_email,
                spec.price,
                self.verify_callback_url,
                {"user_id": user_id, "plan": plan.value},
                self.currency,
            )
        except PaystackAPIError as e:
            raise ExternalServiceException("Paystack", str(e))

        self.logger.info(f"[PAYSTACK] 결제 초기화: user_id={user_id} plan={plan.value} reference={init.get('reference')}")
        return {
            "authorization_url": init.get("authorization_url"),
            "reference": init.get("reference"),
            "access_code": init.get("access_code"),
            "plan": plan.value,
            "amount": spec.price,
        }

    async def deactivate_expired(self) -> int:
        """만료일이 지난 활성 구독 비활성화 (스케줄러용)"""
        count = await self.db_helper.deactivate_expired_subscriptions(self.utcnow())
        if count:
            self.logger.info(f"만료된 구독 {count}건 비활성화")
            await self.log_event("subscription_expiry_sweep", {"deactivated": count})
        return count
