"""
test_metrics.py
---------------
Metric aggregation against the SQLite test DB.

Each test seeds rows around a fixed `NOW` so the window edges are explicit,
then checks the single collector (or the full bundle) it is about.
"""

from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from customer_health.errors import DataAccessError, MetricAggregationError
from customer_health.models import ApiUsage, CustomerEvent, FeatureUsage, Payment, SupportTicket
from customer_health.services.health import MetricBundle
from customer_health.services.metrics import MetricAggregator, months_before

NOW = datetime(2026, 6, 15, 12, 0, 0)


def test_months_before_clamps_to_month_end():
    assert months_before(datetime(2026, 6, 15, 12), 6) == datetime(2025, 12, 15, 12)
    assert months_before(datetime(2026, 8, 31), 6) == datetime(2026, 2, 28)
    assert months_before(datetime(2026, 1, 10), 1) == datetime(2025, 12, 10)


def test_empty_customer_yields_zero_bundle(db_session, make_customer):
    c = make_customer()
    bundle = MetricAggregator(db_session).collect(c.id, NOW)
    assert bundle == MetricBundle()


def test_login_activity_counts_distinct_days_in_window(db_session, make_customer):
    c = make_customer()
    day = (NOW - timedelta(days=2)).replace(hour=9)
    db_session.add_all([
        CustomerEvent(customer_id=c.id, event_type="login", created_at=day),
        CustomerEvent(customer_id=c.id, event_type="login", created_at=day + timedelta(hours=3)),
        CustomerEvent(customer_id=c.id, event_type="login", created_at=NOW - timedelta(days=10)),
        CustomerEvent(customer_id=c.id, event_type="login", created_at=NOW - timedelta(days=40)),
        CustomerEvent(customer_id=c.id, event_type="page_view", created_at=NOW - timedelta(days=1)),
        CustomerEvent(customer_id=c.id, event_type="login", created_at=NOW + timedelta(days=1)),
    ])
    db_session.commit()

    activity = MetricAggregator(db_session).login_activity(c.id, NOW)
    assert activity.active_days == 2


def test_feature_adoption_counts_distinct_names_all_time(db_session, make_customer):
    c = make_customer()
    other = make_customer()
    db_session.add_all([
        FeatureUsage(customer_id=c.id, feature_name="sso_integration", usage_count=3),
        FeatureUsage(customer_id=c.id, feature_name="sso_integration", usage_count=1),
        FeatureUsage(customer_id=c.id, feature_name="audit_logs", last_used=NOW - timedelta(days=400)),
        FeatureUsage(customer_id=other.id, feature_name="data_export"),
    ])
    db_session.commit()

    assert MetricAggregator(db_session).feature_adoption(c.id, NOW).used_features == 2


def test_support_load_counts_high_and_critical(db_session, make_customer):
    c = make_customer()
    db_session.add_all([
        SupportTicket(customer_id=c.id, priority="low", created_at=NOW - timedelta(days=5)),
        SupportTicket(customer_id=c.id, priority="high", created_at=NOW - timedelta(days=10)),
        SupportTicket(customer_id=c.id, priority="critical", created_at=NOW - timedelta(days=20)),
        SupportTicket(customer_id=c.id, priority="medium", created_at=NOW - timedelta(days=100)),
        SupportTicket(customer_id=c.id, priority="high", created_at=NOW - timedelta(days=95)),
    ])
    db_session.commit()

    load = MetricAggregator(db_session).support_load(c.id, NOW)
    assert load.total_tickets == 3
    assert load.high_priority_tickets == 2


def test_payment_behavior_classifies_payments_in_six_months(db_session, make_customer):
    c = make_customer()
    due = NOW - timedelta(days=30)
    db_session.add_all([
        # paid on time
        Payment(customer_id=c.id, amount=100, due_date=due, paid_date=due - timedelta(days=1), status="paid"),
        # paid late
        Payment(customer_id=c.id, amount=100, due_date=due, paid_date=due + timedelta(days=4), status="paid"),
        Payment(customer_id=c.id, amount=100, due_date=NOW - timedelta(days=60), status="overdue"),
        Payment(customer_id=c.id, amount=100, due_date=NOW - timedelta(days=2), status="pending"),
        # outside the window on both sides
        Payment(customer_id=c.id, amount=100, due_date=NOW - timedelta(days=220), status="overdue"),
        Payment(customer_id=c.id, amount=100, due_date=NOW + timedelta(days=10), status="pending"),
    ])
    db_session.commit()

    payments = MetricAggregator(db_session).payment_behavior(c.id, NOW)
    assert payments.total_payments == 4
    assert payments.on_time_payments == 1
    assert payments.overdue_payments == 1


def test_api_usage_sums_requests_and_counts_dates(db_session, make_customer):
    c = make_customer()
    yesterday = (NOW - timedelta(days=1)).date()
    db_session.add_all([
        ApiUsage(customer_id=c.id, endpoint="/api/users", request_count=500, date=yesterday),
        ApiUsage(customer_id=c.id, endpoint="/api/reports", request_count=300, date=yesterday),
        ApiUsage(customer_id=c.id, endpoint="/api/users", request_count=200, date=(NOW - timedelta(days=10)).date()),
        ApiUsage(customer_id=c.id, endpoint="/api/users", request_count=999, date=(NOW - timedelta(days=40)).date()),
    ])
    db_session.commit()

    api = MetricAggregator(db_session).api_usage(c.id, NOW)
    assert api.total_requests == 1000
    assert api.active_days == 2


def test_usage_metrics_profile_counts(db_session, make_customer):
    c = make_customer()
    db_session.add_all([
        CustomerEvent(customer_id=c.id, event_type="login", created_at=NOW - timedelta(days=1)),
        CustomerEvent(customer_id=c.id, event_type="api_call", created_at=NOW - timedelta(days=45)),
        SupportTicket(customer_id=c.id, status="open", created_at=NOW - timedelta(days=1)),
        SupportTicket(customer_id=c.id, status="closed", created_at=NOW - timedelta(days=1)),
        Payment(customer_id=c.id, due_date=NOW - timedelta(days=3), status="overdue"),
        FeatureUsage(customer_id=c.id, feature_name="api_access"),
        ApiUsage(customer_id=c.id, request_count=42, date=(NOW - timedelta(days=3)).date()),
    ])
    db_session.commit()

    metrics = MetricAggregator(db_session).usage_metrics(c.id, NOW)
    assert metrics == {
        "totalEvents": 2,
        "recentEvents": 1,
        "totalTickets": 2,
        "openTickets": 1,
        "totalPayments": 1,
        "overduePayments": 1,
        "featuresUsed": 1,
        "apiRequests": 42,
    }


class _BrokenSession:
    def execute(self, *args, **kwargs):
        raise OperationalError("SELECT ...", {}, Exception("disk I/O error"))


def test_query_failure_is_an_aggregation_error_not_zero():
    with pytest.raises(MetricAggregationError) as excinfo:
        MetricAggregator(_BrokenSession()).collect(1, NOW)
    assert isinstance(excinfo.value, DataAccessError)
    assert isinstance(excinfo.value.__cause__, OperationalError)
