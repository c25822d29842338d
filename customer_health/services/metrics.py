"""
Metric aggregation: turns stored activity, billing and support rows into the
`MetricBundle` consumed by the health score engine.

Windows (fixed):
    * Login activity    -> distinct calendar days with a login, [now-30d, now]
    * Feature adoption  -> distinct features ever used
    * Support load      -> tickets created in [now-90d, now], plus high/critical ones
    * Payment behavior  -> payments due in [now-6 months, now]
    * API usage         -> requests and distinct active dates in [now-30d, now]

Each collector is an independent query; `collect` runs them all and joins the
results. Empty results become zeros. A failing query raises
`MetricAggregationError` instead of being replaced by a default.
"""

import calendar
import logging
from datetime import date, datetime, timedelta
from typing import Callable, Dict

from sqlalchemy import and_, case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import MetricAggregationError
from ..models import ApiUsage, CustomerEvent, FeatureUsage, HIGH_PRIORITIES, Payment, SupportTicket
from .health import (
    ApiUsageStats,
    FeatureAdoption,
    LoginActivity,
    MetricBundle,
    PaymentBehavior,
    SupportLoad,
)

logger = logging.getLogger(__name__)

LOGIN_WINDOW_DAYS = 30
SUPPORT_WINDOW_DAYS = 90
PAYMENT_WINDOW_MONTHS = 6
API_WINDOW_DAYS = 30
RECENT_EVENTS_DAYS = 30
OPEN_TICKET_STATUSES = ("open", "in_progress")


def months_before(moment: datetime, months: int) -> datetime:
    """Same day-of-month `months` calendar months earlier, clamped to the month's end."""
    month_index = moment.month - 1 - months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def _count(value) -> int:
    return int(value or 0)


class MetricAggregator:
    """Answers the five per-customer metric queries against one session."""

    def __init__(self, db: Session):
        self.db = db

    # --- individual collectors -------------------------------------------------

    def login_activity(self, customer_id: int, now: datetime) -> LoginActivity:
        since = now - timedelta(days=LOGIN_WINDOW_DAYS)
        active_days = self.db.execute(
            select(func.count(func.distinct(func.date(CustomerEvent.created_at))))
            .where(CustomerEvent.customer_id == customer_id)
            .where(CustomerEvent.event_type == "login")
            .where(CustomerEvent.created_at >= since)
            .where(CustomerEvent.created_at <= now)
        ).scalar()
        return LoginActivity(active_days=_count(active_days))

    def feature_adoption(self, customer_id: int, now: datetime) -> FeatureAdoption:
        used = self.db.execute(
            select(func.count(func.distinct(FeatureUsage.feature_name)))
            .where(FeatureUsage.customer_id == customer_id)
        ).scalar()
        return FeatureAdoption(used_features=_count(used))

    def support_load(self, customer_id: int, now: datetime) -> SupportLoad:
        since = now - timedelta(days=SUPPORT_WINDOW_DAYS)
        row = self.db.execute(
            select(
                func.count(SupportTicket.id).label("total"),
                func.count(case((SupportTicket.priority.in_(HIGH_PRIORITIES), 1))).label("high"),
            )
            .where(SupportTicket.customer_id == customer_id)
            .where(SupportTicket.created_at >= since)
            .where(SupportTicket.created_at <= now)
        ).one()
        return SupportLoad(total_tickets=_count(row.total), high_priority_tickets=_count(row.high))

    def payment_behavior(self, customer_id: int, now: datetime) -> PaymentBehavior:
        since = months_before(now, PAYMENT_WINDOW_MONTHS)
        on_time = and_(
            Payment.status == "paid",
            Payment.paid_date.isnot(None),
            Payment.paid_date <= Payment.due_date,
        )
        row = self.db.execute(
            select(
                func.count(Payment.id).label("total"),
                func.count(case((on_time, 1))).label("on_time"),
                func.count(case((Payment.status == "overdue", 1))).label("overdue"),
            )
            .where(Payment.customer_id == customer_id)
            .where(Payment.due_date >= since)
            .where(Payment.due_date <= now)
        ).one()
        return PaymentBehavior(
            total_payments=_count(row.total),
            on_time_payments=_count(row.on_time),
            overdue_payments=_count(row.overdue),
        )

    def api_usage(self, customer_id: int, now: datetime) -> ApiUsageStats:
        since: date = (now - timedelta(days=API_WINDOW_DAYS)).date()
        row = self.db.execute(
            select(
                func.coalesce(func.sum(ApiUsage.request_count), 0).label("requests"),
                func.count(func.distinct(ApiUsage.date)).label("days"),
            )
            .where(ApiUsage.customer_id == customer_id)
            .where(ApiUsage.date >= since)
            .where(ApiUsage.date <= now.date())
        ).one()
        return ApiUsageStats(total_requests=_count(row.requests), active_days=_count(row.days))

    # --- fan-out / fan-in ------------------------------------------------------

    def collect(self, customer_id: int, now: datetime) -> MetricBundle:
        collectors: Dict[str, Callable] = {
            "login": self.login_activity,
            "features": self.feature_adoption,
            "support": self.support_load,
            "payments": self.payment_behavior,
            "api": self.api_usage,
        }
        results = {}
        for key, collector in collectors.items():
            try:
                results[key] = collector(customer_id, now)
            except SQLAlchemyError as exc:
                raise MetricAggregationError(
                    f"{key} metrics query failed for customer {customer_id}"
                ) from exc
        bundle = MetricBundle(**results)
        logger.debug("Metrics for customer %s: %s", customer_id, bundle)
        return bundle

    # --- profile metrics shown next to the score --------------------------------

    def usage_metrics(self, customer_id: int, now: datetime) -> Dict[str, int]:
        recent = now - timedelta(days=RECENT_EVENTS_DAYS)
        api_since = (now - timedelta(days=API_WINDOW_DAYS)).date()
        queries = {
            "totalEvents": select(func.count(CustomerEvent.id))
            .where(CustomerEvent.customer_id == customer_id),
            "recentEvents": select(func.count(CustomerEvent.id))
            .where(CustomerEvent.customer_id == customer_id)
            .where(CustomerEvent.created_at >= recent),
            "totalTickets": select(func.count(SupportTicket.id))
            .where(SupportTicket.customer_id == customer_id),
            "openTickets": select(func.count(SupportTicket.id))
            .where(SupportTicket.customer_id == customer_id)
            .where(SupportTicket.status.in_(OPEN_TICKET_STATUSES)),
            "totalPayments": select(func.count(Payment.id))
            .where(Payment.customer_id == customer_id),
            "overduePayments": select(func.count(Payment.id))
            .where(Payment.customer_id == customer_id)
            .where(Payment.status == "overdue"),
            "featuresUsed": select(func.count(func.distinct(FeatureUsage.feature_name)))
            .where(FeatureUsage.customer_id == customer_id),
            "apiRequests": select(func.coalesce(func.sum(ApiUsage.request_count), 0))
            .where(ApiUsage.customer_id == customer_id)
            .where(ApiUsage.date >= api_since),
        }
        return {name: _count(self.db.execute(query).scalar()) for name, query in queries.items()}
