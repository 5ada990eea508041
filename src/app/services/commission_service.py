"""
제휴 커미션 통지 서비스
활성화된 추천 사용자에 대해 제휴 시스템에 커미션을 1회 통지하고, 모든 시도를 감사 로그에 남긴다.
"""
import logging
import re
import secrets
import time
from typing import Any, Dict, Optional, Tuple

from core.base_service import BaseService
from core.billing_config import DEFAULT_PLAN_CATALOG, PlanCatalog, normalize_plan
from core.interfaces import ICommissionService, IDatabaseHelper
from services.affiliate_client import (
    AffiliateAPIError,
    AffiliateClient,
    AffiliateConfigError,
    build_commission_payload,
)

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

STATUS_PENDING = "pending"
STATUS_SUCCESS = "success"
STATUS_FAILED = "failed"


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_PATTERN.match(value.strip()))


def evaluate_eligibility(profile: Optional[Dict[str, Any]]) -> Tuple[bool, Optional[str]]:
    """프로필 기준 커미션 통지 자격 판단. (자격 여부, 불가 사유)"""

    if not profile:
        return False, "profile_not_found"

    referrer_id = profile.get("referrer_id")
    if not isinstance(referrer_id, str) or not referrer_id.strip():
        return False, "no_referrer"

    if not bool(profile.get("subscription_active")):
        return False, "subscription_inactive"

    # 커미션은 사용자당 최초 활성화 1회 (결제 주기마다가 아님)
    if bool(profile.get("commission_notified")):
        return False, "already_notified"

    if not is_valid_email(profile.get("email")):
        return False, "invalid_email"

    return True, None


class CommissionService(BaseService, ICommissionService):
    """커미션 통지 서비스"""

    def __init__(
        self,
        db_helper: IDatabaseHelper,
        affiliate_client: AffiliateClient,
        plan_catalog: PlanCatalog = DEFAULT_PLAN_CATALOG,
    ):
        super().__init__(db_helper)
        self.affiliate_client = affiliate_client
        self.plan_catalog = plan_catalog

    @property
    def max_attempts(self) -> int:
        return self.affiliate_client.config.max_attempts

    @staticmethod
    def generate_reference(user_id: str) -> str:
        return f"LCS_{user_id}_{int(time.time() * 1000)}_{secrets.token_hex(5)}"

    async def should_notify(self, user_id: str) -> Dict[str, Any]:
        """활성화 이벤트마다 새로 평가하는 자격 확인"""
        profile = await self.db_helper.get_user_profile(user_id)
        eligible, reason = evaluate_eligibility(profile)

        if not eligible:
            self.logger.info(f"[COMMISSION] 통지 대상 아님: user_id={user_id} reason={reason}")
            return {"should": False, "reason": reason}

        plan = normalize_plan(profile.get("plan")).value
        self.logger.info(f"[COMMISSION] 통지 대상: user_id={user_id} referrer={profile['referrer_id']}")
        return {
            "should": True,
            "reason": None,
            "agent_code": profile["referrer_id"].strip(),
            "email": profile["email"].strip(),
            "plan": plan,
            "client_name": profile.get("full_name") or "",
        }

    def _notification_row(
        self,
        *,
        user_id: str,
        agent_code: str,
        user_email: str,
        payment_reference: str,
        amount: int,
        status: str,
        retry_count: int,
        response_data: Optional[Dict[str, Any]] = None,
        error_message: Optional[str] = None,
    ) -> Dict[str, Any]:
        return {
            "user_id": user_id,
            "referrer_id": agent_code,
            "payment_reference": payment_reference,
            "user_email": user_email,
            "amount": amount,
            "status": status,
            "response_data": response_data,
            "error_message": error_message,
            "retry_count": retry_count,
        }

    async def _record_notification(self, row: Dict[str, Any], overwrite: bool = True) -> bool:
        """감사 로그 기록 (실패 시 reference와 함께 error 로그)"""
        recorded = await self.db_helper.record_commission_notification(row, overwrite=overwrite)
        if not recorded:
            self.logger.error(
                f"[COMMISSION] 감사 로그 기록 실패: user_id={row.get('user_id')} "
                f"reference={row.get('payment_reference')} status={row.get('status')}"
            )
        return recorded

    async def notify(
        self,
        user_id: str,
        agent_code: str,
        user_email: str,
        plan: str,
        payment_reference: str,
        client_name: Optional[str] = None,
    ) -> Dict[str, Any]:
        """제휴 시스템에 커미션 통지

        모든 결과(성공/영구 실패/재시도 소진/설정 오류)는 반환 전에 감사 로그에 기록된다.
        """
        reference = (payment_reference or "").strip() or self.generate_reference(user_id)
        plan_value = normalize_plan(plan).value
        amount = self.plan_catalog.commission_amount(plan_value)

        row_base = {
            "user_id": user_id,
            "agent_code": agent_code,
            "user_email": user_email,
            "payment_reference": reference,
            "amount": amount,
        }

        # 1. 설정 확인 - 운영자 오류이므로 재시도하지 않는다
        try:
            self.affiliate_client.ensure_configured()
        except AffiliateConfigError as config_error:
            self.logger.error(f"[COMMISSION] {config_error}")
            if await self.db_helper.has_commission_been_notified(user_id, reference):
                return {"success": True, "already_notified": True, "reference": reference}
            existing = await self.db_helper.get_commission_notification(user_id, reference)
            prior_retries = int((existing or {}).get("retry_count") or 0)
            await self._record_notification(
                self._notification_row(
                    **row_base,
                    status=STATUS_FAILED,
                    retry_count=prior_retries,
                    error_message=str(config_error),
                )
            )
            return {
                "success": False,
                "error": str(config_error),
                "code": "configuration_error",
                "reference": reference,
            }

        # 2. 멱등성 확인 - 이미 성공한 통지는 네트워크 호출 없이 성공 처리
        if await self.db_helper.has_commission_been_notified(user_id, reference):
            self.logger.info(f"[COMMISSION] 이미 통지됨: user_id={user_id} reference={reference}")
            return {"success": True, "already_notified": True, "reference": reference}

        existing = await self.db_helper.get_commission_notification(user_id, reference)
        prior_retries = int((existing or {}).get("retry_count") or 0)
        remaining = self.max_attempts - prior_retries
        if remaining <= 0:
            message = f"retry budget exhausted ({prior_retries}/{self.max_attempts})"
            self.logger.warning(f"[COMMISSION] {message}: user_id={user_id} reference={reference}")
            return {"success": False, "error": message, "code": "retry_budget_exhausted", "reference": reference}

        if existing is None:
            # 최초 시도는 pending으로 남긴다 (기존 행은 덮어쓰지 않음)
            await self._record_notification(
                self._notification_row(**row_base, status=STATUS_PENDING, retry_count=0),
                overwrite=False,
            )

        # 3. 페이로드 구성
        payload = build_commission_payload(
            self.affiliate_client.config.payload_version,
            agent_code=agent_code,
            user_email=user_email,
            plan=plan_value,
            reference=reference,
            amount=amount,
            client_name=client_name,
        )

        # 4~5. 전송 및 응답 처리
        try:
            delivery = await self.affiliate_client.send_commission(payload, max_attempts=remaining)
        except AffiliateAPIError as api_error:
            retry_count = prior_retries + api_error.failed_attempts
            if not api_error.retryable:
                # 404/400/401 은 종결 상태: 재시도 스윕 대상에서 제외 (관리자 초기화로만 복구)
                retry_count = max(retry_count, self.max_attempts)
            await self._record_notification(
                self._notification_row(
                    **row_base,
                    status=STATUS_FAILED,
                    retry_count=retry_count,
                    response_data=api_error.payload or None,
                    error_message=str(api_error),
                )
            )
            self.logger.error(
                f"[COMMISSION] 통지 실패: user_id={user_id} reference={reference} "
                f"code={api_error.code} status={api_error.status_code} retry_count={retry_count} error={api_error}"
            )
            return {
                "success": False,
                "error": str(api_error),
                "code": api_error.code,
                "status_code": api_error.status_code,
                "retryable": api_error.retryable,
                "retry_count": retry_count,
                "reference": reference,
            }

        retry_count = prior_retries + delivery.failed_attempts
        await self._record_notification(
            self._notification_row(
                **row_base,
                status=STATUS_SUCCESS,
                retry_count=retry_count,
                response_data=delivery.response_data,
            )
        )
        # 다음 결제 주기(다른 reference)에서 재통지되지 않도록 사용자 단위 플래그를 세운다
        await self.db_helper.mark_commission_notified(user_id)

        self.logger.info(f"[COMMISSION] 통지 성공: user_id={user_id} agent={agent_code} reference={reference}")
        return {"success": True, "reference": reference, "retry_count": retry_count}

    async def process_activation(self, user_id: str, payment_reference: str) -> Dict[str, Any]:
        """활성화 직후 백그라운드에서 실행 - 예외를 호출자에게 전파하지 않는다"""
        try:
            eligibility = await self.should_notify(user_id)
            if not eligibility.get("should"):
                return {"success": False, "skipped": True, "reason": eligibility.get("reason")}

            return await self.notify(
                user_id,
                eligibility["agent_code"],
                eligibility["email"],
                eligibility["plan"],
                payment_reference,
                eligibility.get("client_name"),
            )
        except Exception as e:
            self.logger.error(f"[COMMISSION] 활성화 후 통지 처리 실패: user_id={user_id} error={e}", exc_info=True)
            return {"success": False, "error": "internal_error"}

    async def retry_failed(self, limit: int = 10) -> int:
        """재시도 예산이 남은 실패 통지를 다시 시도하고, 새로 성공한 건수를 반환"""
        rows = await self.db_helper.list_retryable_commission_notifications(limit, self.max_attempts)
        self.logger.info(f"[SWEEP] 재시도 대상 {len(rows)}건 (limit={limit})")

        success_count = 0
        skipped = 0
        for row in rows:
            user_id = row.get("user_id")
            try:
                # 실패 이후 관리자 조치 등으로 자격이 바뀌었을 수 있다
                eligibility = await self.should_notify(user_id)
                if not eligibility.get("should"):
                    skipped += 1
                    self.logger.info(
                        f"[SWEEP] 자격 상실로 건너뜀: user_id={user_id} reason={eligibility.get('reason')}"
                    )
                    continue

                result = await self.notify(
                    user_id,
                    row.get("referrer_id") or eligibility["agent_code"],
                    row.get("user_email") or eligibility["email"],
                    eligibility["plan"],
                    row.get("payment_reference"),
                    eligibility.get("client_name"),
                )
                if result.get("success") and not result.get("already_notified"):
                    success_count += 1
            except Exception as e:
                self.logger.error(f"[SWEEP] 재시도 처리 실패: user_id={user_id} error={e}", exc_info=True)

        await self.log_event(
            "commission_retry_sweep",
            {"limit": limit, "candidates": len(rows), "succeeded": success_count, "skipped": skipped},
        )
        return success_count

    async def get_commission_status(self, user_id: str) -> Dict[str, Any]:
        """운영자 조회용 커미션 상태"""
        profile = await self.db_helper.get_user_profile(user_id)
        notifications = await self.db_helper.list_commission_notifications(user_id)
        eligible, reason = evaluate_eligibility(profile)
        return {
            "user_id": user_id,
            "profile_found": profile is not None,
            "referrer_id": (profile or {}).get("referrer_id"),
            "subscription_active": bool((profile or {}).get("subscription_active")),
            "commission_notified": bool((profile or {}).get("commission_notified")),
            "commission_notified_at": (profile or {}).get("commission_notified_at"),
            "eligible": eligible,
            "ineligible_reason": reason,
            "notifications": notifications,
        }

    async def reset_commission(self, user_id: str, *, admin_id: Optional[str] = None) -> Dict[str, Any]:
        """관리자 초기화: 감사 로그 삭제 + 통지 플래그 해제"""
        deleted = await self.db_helper.reset_commission_state(user_id)
        await self.log_event(
            "commission_reset",
            {"target_user_id": user_id, "deleted_notifications": deleted, "admin_id": admin_id},
            user_id=admin_id,
        )
        self.logger.warning(f"[COMMISSION] 관리자 초기화: user_id={user_id} deleted={deleted} admin={admin_id}")
        return {"user_id": user_id, "deleted_notifications": deleted}
