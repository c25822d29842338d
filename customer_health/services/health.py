# customer_health/services/health.py
"""
Health score engine.

Five sub-scores (0..100) -> weighted overall score (0..100, integer) -> tier.

Inputs per customer (already aggregated, zeros for "no data"):
- Login activity:    distinct active days, last 30d
- Feature adoption:  distinct features ever used
- Support load:      tickets / high-priority tickets, last 90d
- Payment behavior:  total / on-time / overdue payments, last 6 months
- API usage:         total requests / active days, last 30d

Everything here is pure: the customer id and timestamp are handed in by the
caller, so identical bundles always produce identical scores.
"""

import math
from dataclasses import dataclass
from datetime import datetime
from typing import Dict

WEIGHTS: Dict[str, float] = {
    "loginFrequency":    0.25,
    "featureAdoption":   0.20,
    "supportTickets":    0.15,
    "paymentTimeliness": 0.25,
    "apiUsage":          0.15,
}

TOTAL_FEATURES: int = 15

HEALTHY = "healthy"
AT_RISK = "at-risk"
CRITICAL = "critical"
CHURNED = "churned"

# (lower bound inclusive, level), checked top-down
LEVEL_THRESHOLDS = ((80, HEALTHY), (60, AT_RISK), (40, CRITICAL), (0, CHURNED))

# (more than N tickets, penalty); only the first matching row applies
TICKET_PENALTIES = ((10, 30), (5, 20), (2, 10))
HIGH_PRIORITY_PENALTIES = ((3, 25), (1, 15), (0, 5))

# (at least N requests, base score)
API_VOLUME_STEPS = ((5000, 100), (2500, 80), (1000, 60), (500, 40), (100, 20))
API_VOLUME_FLOOR = 10
# (at least N active days, bonus)
API_ACTIVE_DAY_BONUS = ((25, 10), (15, 5))


@dataclass(frozen=True)
class LoginActivity:
    active_days: int = 0


@dataclass(frozen=True)
class FeatureAdoption:
    used_features: int = 0


@dataclass(frozen=True)
class SupportLoad:
    total_tickets: int = 0
    high_priority_tickets: int = 0


@dataclass(frozen=True)
class PaymentBehavior:
    total_payments: int = 0
    on_time_payments: int = 0
    overdue_payments: int = 0


@dataclass(frozen=True)
class ApiUsageStats:
    total_requests: int = 0
    active_days: int = 0


@dataclass(frozen=True)
class MetricBundle:
    login: LoginActivity = LoginActivity()
    features: FeatureAdoption = FeatureAdoption()
    support: SupportLoad = SupportLoad()
    payments: PaymentBehavior = PaymentBehavior()
    api: ApiUsageStats = ApiUsageStats()


@dataclass(frozen=True)
class SubScore:
    score: float
    weight: float

    @property
    def display_score(self) -> int:
        return round_half_up(self.score)


@dataclass(frozen=True)
class HealthScore:
    customer_id: int
    breakdown: Dict[str, SubScore]
    overall_score: int
    health_level: str
    calculated_at: datetime


def round_half_up(x: float) -> int:
    """Round to nearest integer, .5 going up (Python's round() is banker's)."""
    return int(math.floor(x + 0.5))


def _clamp(x: float, lo: float = 0.0, hi: float = 100.0) -> float:
    return lo if x < lo else hi if x > hi else x


def _tiered(value: int, tiers, strict: bool) -> int:
    for bound, amount in tiers:
        if (value > bound) if strict else (value >= bound):
            return amount
    return 0


def score_login_frequency(active_days: int) -> float:
    """5 points per active day, saturating at 20 days."""
    return _clamp(min(active_days * 5, 100))


def score_feature_adoption(used_features: int, total_features: int = TOTAL_FEATURES) -> float:
    return _clamp(min(used_features / float(total_features) * 100.0, 100.0))


def score_support_load(total_tickets: int, high_priority_tickets: int) -> float:
    """
    Start at 100 and apply one volume penalty and one priority penalty.

    Within each track the highest threshold wins; the two tracks add up.
    """
    score = 100
    score -= _tiered(total_tickets, TICKET_PENALTIES, strict=True)
    score -= _tiered(high_priority_tickets, HIGH_PRIORITY_PENALTIES, strict=True)
    return _clamp(max(score, 0))


def score_payment_timeliness(total_payments: int, on_time_payments: int, overdue_payments: int) -> float:
    # No billing history is not penalized
    if total_payments <= 0:
        return 100.0
    on_time_rate = on_time_payments / float(total_payments) * 100.0
    return _clamp(max(on_time_rate - overdue_payments * 5, 0.0))


def score_api_usage(total_requests: int, active_days: int) -> float:
    if total_requests <= 0:
        return 0.0
    base = _tiered(total_requests, API_VOLUME_STEPS, strict=False) or API_VOLUME_FLOOR
    bonus = _tiered(active_days, API_ACTIVE_DAY_BONUS, strict=False)
    return _clamp(min(base + bonus, 100))


def weighted_score(factors_0_100: Dict[str, float]) -> int:
    total = 0.0
    for name, w in WEIGHTS.items():
        total += w * factors_0_100.get(name, 0.0)
    return round_half_up(_clamp(total))


def health_level(score: float) -> str:
    """Map an overall score to healthy / at-risk / critical / churned."""
    for lower, level in LEVEL_THRESHOLDS:
        if score >= lower:
            return level
    return CHURNED


def compute_health_score(bundle: MetricBundle, customer_id: int, calculated_at: datetime) -> HealthScore:
    factors = {
        "loginFrequency": score_login_frequency(bundle.login.active_days),
        "featureAdoption": score_feature_adoption(bundle.features.used_features),
        "supportTickets": score_support_load(
            bundle.support.total_tickets, bundle.support.high_priority_tickets
        ),
        "paymentTimeliness": score_payment_timeliness(
            bundle.payments.total_payments,
            bundle.payments.on_time_payments,
            bundle.payments.overdue_payments,
        ),
        "apiUsage": score_api_usage(bundle.api.total_requests, bundle.api.active_days),
    }
    overall = weighted_score(factors)
    return HealthScore(
        customer_id=customer_id,
        breakdown={name: SubScore(score=value, weight=WEIGHTS[name]) for name, value in factors.items()},
        overall_score=overall,
        health_level=health_level(overall),
        calculated_at=calculated_at,
    )
