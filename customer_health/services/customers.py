"""
Customer-facing reads and writes behind the API: listing with latest scores,
profile lookup, event recording, raw component data and dashboard aggregates.

All sort fields go through a fixed name -> column mapping, so user input never
reaches the SQL text.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import and_, case, extract, func, select
from sqlalchemy.orm import Session

from ..models import ApiUsage, Customer, CustomerEvent, FeatureUsage, HealthScoreRecord, Payment, SupportTicket
from .health import AT_RISK, CHURNED, CRITICAL, HEALTHY, health_level
from .metrics import months_before
from .score_store import latest_scores_subquery

logger = logging.getLogger(__name__)

COMPONENT_ROW_LIMIT = 100

# health level -> [lower, upper) bounds on the overall score
LEVEL_BOUNDS: Dict[str, Tuple[Optional[int], Optional[int]]] = {
    HEALTHY: (80, None),
    AT_RISK: (60, 80),
    CRITICAL: (40, 60),
    CHURNED: (None, 40),
}


class CustomerService:
    def __init__(self, db: Session):
        self.db = db

    def get_customer(self, customer_id: int) -> Optional[Customer]:
        return self.db.get(Customer, customer_id)

    # --- listing -------------------------------------------------------------

    def _listing(self, segment: Optional[str], level: Optional[str]):
        latest = latest_scores_subquery()
        score = func.coalesce(latest.c.overall_score, 0)
        stmt = (
            select(
                Customer,
                score.label("overall_score"),
                func.coalesce(latest.c.login_frequency_score, 0).label("login_frequency_score"),
                func.coalesce(latest.c.feature_adoption_score, 0).label("feature_adoption_score"),
                func.coalesce(latest.c.support_ticket_score, 0).label("support_ticket_score"),
                func.coalesce(latest.c.payment_timeliness_score, 0).label("payment_timeliness_score"),
                func.coalesce(latest.c.api_usage_score, 0).label("api_usage_score"),
                latest.c.calculated_at,
            )
            .outerjoin(latest, and_(latest.c.customer_id == Customer.id, latest.c.rn == 1))
        )
        if segment:
            stmt = stmt.where(Customer.segment == segment)
        if level:
            lower, upper = LEVEL_BOUNDS[level]
            if lower is not None:
                stmt = stmt.where(score >= lower)
            if upper is not None:
                stmt = stmt.where(score < upper)
        return stmt, score

    def list_customers(
        self,
        page: int = 1,
        limit: int = 20,
        segment: Optional[str] = None,
        level: Optional[str] = None,
        sort_by: str = "overall_score",
        sort_order: str = "desc",
    ) -> List[Dict[str, Any]]:
        stmt, score = self._listing(segment, level)
        sort_columns = {
            "overall_score": score,
            "company_name": Customer.company_name,
            "monthly_revenue": Customer.monthly_revenue,
            "signup_date": Customer.signup_date,
        }
        column = sort_columns[sort_by]
        ordered = column.asc() if sort_order == "asc" else column.desc()
        stmt = stmt.order_by(ordered, Customer.id.asc()).limit(limit).offset((page - 1) * limit)

        rows = []
        for row in self.db.execute(stmt).all():
            c = row.Customer
            rows.append({
                "id": c.id,
                "company_name": c.company_name,
                "contact_email": c.contact_email,
                "contact_name": c.contact_name,
                "segment": c.segment,
                "plan_type": c.plan_type,
                "monthly_revenue": c.monthly_revenue,
                "signup_date": c.signup_date,
                "last_login_date": c.last_login_date,
                "overall_score": int(row.overall_score),
                "login_frequency_score": int(row.login_frequency_score),
                "feature_adoption_score": int(row.feature_adoption_score),
                "support_ticket_score": int(row.support_ticket_score),
                "payment_timeliness_score": int(row.payment_timeliness_score),
                "api_usage_score": int(row.api_usage_score),
                "calculated_at": row.calculated_at,
                "healthLevel": health_level(row.overall_score),
            })
        logger.debug("Listed %d customers (page=%s, limit=%s)", len(rows), page, limit)
        return rows

    def count_customers(self, segment: Optional[str] = None, level: Optional[str] = None) -> int:
        stmt, _ = self._listing(segment, level)
        return self.db.execute(select(func.count()).select_from(stmt.subquery())).scalar() or 0

    # --- events --------------------------------------------------------------

    def record_event(self, customer: Customer, event_type: str, event_data: Optional[dict] = None) -> Dict[str, Any]:
        now = datetime.utcnow()
        event = CustomerEvent(
            customer_id=customer.id,
            event_type=event_type,
            event_data=event_data or {},
            created_at=now,
        )
        self.db.add(event)
        if event_type == "login":
            customer.last_login_date = now
        self.db.commit()
        self.db.refresh(event)
        logger.info("Recorded %s event %s for customer %s", event_type, event.id, customer.id)
        return {
            "id": event.id,
            "customerId": customer.id,
            "eventType": event.event_type,
            "eventData": event.event_data,
            "createdAt": event.created_at,
        }

    # --- raw component rows ----------------------------------------------------

    def component_data(self, customer_id: int, component: str) -> List[Dict[str, Any]]:
        """Rows behind one score component, newest first."""
        if component == "login-events":
            fields = ("id", "event_type", "event_data", "created_at")
            stmt = (
                select(CustomerEvent)
                .where(CustomerEvent.customer_id == customer_id, CustomerEvent.event_type == "login")
                .order_by(CustomerEvent.created_at.desc())
                .limit(COMPONENT_ROW_LIMIT)
            )
        elif component == "feature-usage":
            fields = ("id", "feature_name", "usage_count", "last_used", "created_at", "updated_at")
            stmt = (
                select(FeatureUsage)
                .where(FeatureUsage.customer_id == customer_id)
                .order_by(FeatureUsage.usage_count.desc(), FeatureUsage.last_used.desc())
            )
        elif component == "support-tickets":
            fields = ("id", "ticket_id", "priority", "status", "subject", "created_at", "resolved_at")
            stmt = (
                select(SupportTicket)
                .where(SupportTicket.customer_id == customer_id)
                .order_by(SupportTicket.created_at.desc())
                .limit(COMPONENT_ROW_LIMIT)
            )
        elif component == "payments":
            fields = ("id", "invoice_id", "amount", "due_date", "paid_date", "status", "created_at")
            stmt = (
                select(Payment)
                .where(Payment.customer_id == customer_id)
                .order_by(Payment.due_date.desc())
                .limit(COMPONENT_ROW_LIMIT)
            )
        elif component == "api-usage":
            fields = ("id", "endpoint", "request_count", "date", "created_at")
            stmt = (
                select(ApiUsage)
                .where(ApiUsage.customer_id == customer_id)
                .order_by(ApiUsage.date.desc())
                .limit(COMPONENT_ROW_LIMIT)
            )
        else:
            raise ValueError(f"Invalid health component: {component}")

        return [{f: getattr(obj, f) for f in fields} for obj in self.db.execute(stmt).scalars()]

    # --- dashboard -----------------------------------------------------------

    def dashboard_stats(self) -> Dict[str, Any]:
        latest = latest_scores_subquery()
        rows = self.db.execute(
            select(Customer.id, latest.c.overall_score)
            .outerjoin(latest, and_(latest.c.customer_id == Customer.id, latest.c.rn == 1))
        ).all()

        levels = Counter(health_level(row.overall_score or 0) for row in rows)
        scored = [row.overall_score for row in rows if row.overall_score is not None]
        average = round(sum(scored) / len(scored), 2) if scored else 0
        return {
            "total": len(rows),
            "healthy": levels[HEALTHY],
            "atRisk": levels[AT_RISK],
            "critical": levels[CRITICAL],
            "churned": levels[CHURNED],
            "averageHealthScore": average,
        }

    def health_trends(self, months: int = 6, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        since = months_before(now or datetime.utcnow(), months)
        year = extract("year", HealthScoreRecord.calculated_at)
        month = extract("month", HealthScoreRecord.calculated_at)
        rows = self.db.execute(
            select(
                year.label("year"),
                month.label("month"),
                func.avg(HealthScoreRecord.overall_score).label("avg_score"),
                func.count(HealthScoreRecord.id).label("customer_count"),
            )
            .where(HealthScoreRecord.calculated_at >= since)
            .group_by(year, month)
            .order_by(year, month)
        ).all()
        return [
            {
                "month": f"{int(r.year):04d}-{int(r.month):02d}",
                "score": round(float(r.avg_score or 0), 2),
                "customerCount": int(r.customer_count or 0),
            }
            for r in rows
        ]

    def usage_trends(self, months: int = 6, now: Optional[datetime] = None) -> List[Dict[str, Any]]:
        since = months_before(now or datetime.utcnow(), months)
        year = extract("year", CustomerEvent.created_at)
        month = extract("month", CustomerEvent.created_at)
        rows = self.db.execute(
            select(
                year.label("year"),
                month.label("month"),
                func.count(case((CustomerEvent.event_type == "login", 1))).label("logins"),
                func.count(case((CustomerEvent.event_type == "api_call", 1))).label("api_calls"),
            )
            .where(CustomerEvent.created_at >= since)
            .group_by(year, month)
            .order_by(year, month)
        ).all()
        return [
            {
                "month": f"{int(r.year):04d}-{int(r.month):02d}",
                "logins": int(r.logins or 0),
                "apiCalls": int(r.api_calls or 0),
            }
            for r in rows
        ]
