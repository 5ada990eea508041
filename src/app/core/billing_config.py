"""
요금제 및 제휴 연동 설정
"""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional


class SubscriptionPlan(str, Enum):
    """구독 요금제"""
    INDIVIDUAL = "Individual"
    PROFESSIONAL = "Professional"


# 이전 요금제 이름 → 현재 요금제
LEGACY_PLAN_ALIASES: Dict[str, SubscriptionPlan] = {
    "early access": SubscriptionPlan.INDIVIDUAL,
    "standard": SubscriptionPlan.INDIVIDUAL,
    "basic": SubscriptionPlan.INDIVIDUAL,
    "pro": SubscriptionPlan.PROFESSIONAL,
}


def normalize_plan(value: Any) -> SubscriptionPlan:
    """요금제 문자열을 검증하고, 알 수 없는 값은 하위 요금제로 처리"""
    if isinstance(value, SubscriptionPlan):
        return value
    if isinstance(value, str):
        raw = value.strip().lower()
        for plan in SubscriptionPlan:
            if plan.value.lower() == raw:
                return plan
        if raw in LEGACY_PLAN_ALIASES:
            return LEGACY_PLAN_ALIASES[raw]
    return SubscriptionPlan.INDIVIDUAL


def parse_plan(value: Any) -> Optional[SubscriptionPlan]:
    """요금제 문자열을 엄격하게 해석 (알 수 없으면 None)"""
    if not isinstance(value, str) or not value.strip():
        return None
    raw = value.strip().lower()
    for plan in SubscriptionPlan:
        if plan.value.lower() == raw:
            return plan
    return LEGACY_PLAN_ALIASES.get(raw)


@dataclass(frozen=True)
class PlanSpec:
    """요금제별 설정"""
    price: int  # 최소 화폐 단위
    commission_amount: int = 0
    max_active: Optional[int] = None  # None이면 무제한


@dataclass(frozen=True)
class PlanCatalog:
    """요금제 카탈로그"""
    plans: Dict[SubscriptionPlan, PlanSpec] = field(default_factory=dict)
    period_days: int = 30

    def get(self, plan: SubscriptionPlan) -> PlanSpec:
        spec = self.plans.get(plan)
        if spec is None:
            return self.plans.get(SubscriptionPlan.INDIVIDUAL, PlanSpec(price=0))
        return spec

    def commission_amount(self, plan: Any) -> int:
        return self.get(normalize_plan(plan)).commission_amount


DEFAULT_PLAN_CATALOG = PlanCatalog(
    {
        SubscriptionPlan.INDIVIDUAL: PlanSpec(price=49900),
        SubscriptionPlan.PROFESSIONAL: PlanSpec(price=99900),
    }
)


@dataclass(frozen=True)
class AffiliateConfig:
    """제휴 시스템 연동 설정 - 기동 시 한 번 확정되어 주입된다"""

    api_url: Optional[str] = None
    api_secret: Optional[str] = None
    transfer_webhook_url: Optional[str] = None
    payload_version: str = "plan"
    timeout: float = 10.0
    max_attempts: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 10.0

    @property
    def is_configured(self) -> bool:
        return bool((self.api_url or "").strip() and (self.api_secret or "").strip())
