"""
main.py
FastAPI application entrypoint for the Customer Health service.

What this service does
----------------------
- Lists customers together with their latest health score (filter, sort, paginate)
- Computes a customer's health breakdown on read and stores it as the latest score
- Ingests activity events (login, api_call, ...) and rescores the customer right away
- Serves dashboard aggregates: tier counts, monthly score and usage trends

Design decisions (high level)
-----------------------------
- The database is an explicit `Database` object on `app.state`, connected once
  in the lifespan hook (and retried per request if that fails). Until it is
  connected, requests get a 503 and `/api/health` reports
  `"database": "initializing"`.
- Scoring is a pure function (`services.health`) fed by `services.metrics`;
  storing the result is best effort and never fails the request.
- Every response is `{"success": ..., "data" | "error": ...}`; request
  validation failures are 400s (see `errors.py`).
"""

import logging
import math
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import Depends, FastAPI, Path, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from . import config
from .db import Database, get_db
from .errors import NotFoundError, register_exception_handlers
from .schemas import (
    ApiResponse,
    Component,
    ComponentData,
    CustomerHealthData,
    CustomerListResponse,
    CustomerProfileOut,
    CustomerRef,
    DashboardStats,
    DashboardStatsData,
    EventIn,
    EventOut,
    EventRecorded,
    EventRecordedResponse,
    HealthCheckOut,
    HealthLevel,
    HealthScoreOut,
    HealthTrendPoint,
    Pagination,
    Segment,
    SortField,
    SortOrder,
    UsageMetrics,
    UsageTrendPoint,
)
from .services.customers import CustomerService
from .services.metrics import MetricAggregator
from .services.score_store import ScoreStore
from .services.scoring import HealthScorer

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Connect the database once at startup; dispose it at shutdown if we created it.

    A failed connection is logged and leaves the app running in the
    "not ready" state instead of crashing it; `get_db` retries on the next request.
    """
    database: Database = app.state.database
    if not database.ready:
        try:
            database.connect()
        except Exception:
            logger.exception("Database connection failed; serving 503 until it is available")
    logger.info("Customer Health API started (env=%s)", config.APP_ENV)
    yield
    if app.state.owns_database:
        database.dispose()
    logger.info("Customer Health API stopped")


# --- dependencies -------------------------------------------------------------

def get_customer_service(db: Session = Depends(get_db)) -> CustomerService:
    return CustomerService(db)


def get_aggregator(db: Session = Depends(get_db)) -> MetricAggregator:
    return MetricAggregator(db)


def get_scorer(
    aggregator: MetricAggregator = Depends(get_aggregator),
    db: Session = Depends(get_db),
) -> HealthScorer:
    return HealthScorer(aggregator, ScoreStore(db))


def require_customer(
    customer_id: int = Path(..., gt=0, description="Positive customer id"),
    customers: CustomerService = Depends(get_customer_service),
):
    customer = customers.get_customer(customer_id)
    if customer is None:
        raise NotFoundError("Customer not found")
    return customer


# --- routes ---------------------------------------------------------------------

def _register_routes(app: FastAPI) -> None:

    @app.get("/api/customers", response_model=CustomerListResponse, tags=["Customers"])
    def list_customers(
        page: int = Query(1, ge=1),
        limit: int = Query(20, ge=1, le=100),
        segment: Optional[Segment] = None,
        healthLevel: Optional[HealthLevel] = None,
        sortBy: SortField = "overall_score",
        sortOrder: SortOrder = "desc",
        customers: CustomerService = Depends(get_customer_service),
    ) -> CustomerListResponse:
        """
        List customers with their latest health score.

        Customers never scored show `overall_score = 0` (churned). `total`
        counts every customer matching the filters, not just this page.
        """
        rows = customers.list_customers(
            page=page, limit=limit, segment=segment, level=healthLevel,
            sort_by=sortBy, sort_order=sortOrder,
        )
        total = customers.count_customers(segment=segment, level=healthLevel)
        return CustomerListResponse(
            data=rows,
            pagination=Pagination(
                page=page, limit=limit, total=total, totalPages=math.ceil(total / limit),
            ),
        )

    @app.get("/api/customers/{customer_id}/health", response_model=ApiResponse[CustomerHealthData], tags=["Health"])
    def customer_health(
        customer=Depends(require_customer),
        scorer: HealthScorer = Depends(get_scorer),
        aggregator: MetricAggregator = Depends(get_aggregator),
    ) -> ApiResponse[CustomerHealthData]:
        """
        Compute (and store) a customer's health score with its full breakdown.

        The overall score is the weighted sum of five 0..100 factors:
        loginFrequency (0.25), featureAdoption (0.20), supportTickets (0.15),
        paymentTimeliness (0.25) and apiUsage (0.15).
        """
        now = datetime.utcnow()
        score = scorer.score(customer.id, now)
        metrics = aggregator.usage_metrics(customer.id, now)
        return ApiResponse[CustomerHealthData](
            data=CustomerHealthData(
                customer=CustomerProfileOut.from_customer(customer),
                healthScore=HealthScoreOut.from_score(score),
                metrics=UsageMetrics(**metrics),
            )
        )

    @app.get(
        "/api/customers/{customer_id}/health-data/{component}",
        response_model=ApiResponse[ComponentData],
        tags=["Health"],
    )
    def health_component_data(
        component: Component,
        customer=Depends(require_customer),
        customers: CustomerService = Depends(get_customer_service),
    ) -> ApiResponse[ComponentData]:
        """Raw rows behind one score component (newest first, at most 100)."""
        return ApiResponse[ComponentData](
            data=ComponentData(
                customer=CustomerRef(id=customer.id, companyName=customer.company_name),
                component=component,
                data=customers.component_data(customer.id, component),
            )
        )

    @app.post(
        "/api/customers/{customer_id}/events",
        status_code=201,
        response_model=EventRecordedResponse,
        tags=["Ingest"],
    )
    def record_event(
        payload: EventIn,
        customer=Depends(require_customer),
        customers: CustomerService = Depends(get_customer_service),
        scorer: HealthScorer = Depends(get_scorer),
    ) -> EventRecordedResponse:
        """
        Append an activity event, then rescore the customer.

        Unknown customers get a 404 before anything is written.
        """
        event = customers.record_event(customer, payload.eventType, payload.eventData)
        score = scorer.score(customer.id)
        return EventRecordedResponse(
            data=EventRecorded(
                event=EventOut(**event),
                updatedHealthScore=score.overall_score,
                healthLevel=score.health_level,
            )
        )

    @app.get("/api/dashboard/stats", response_model=ApiResponse[DashboardStatsData], tags=["Dashboard"])
    def dashboard_stats(
        customers: CustomerService = Depends(get_customer_service),
    ) -> ApiResponse[DashboardStatsData]:
        stats = DashboardStats(**customers.dashboard_stats())
        return ApiResponse[DashboardStatsData](
            data=DashboardStatsData(stats=stats, averageHealthScore=stats.averageHealthScore)
        )

    @app.get("/api/dashboard/trends", response_model=ApiResponse[List[HealthTrendPoint]], tags=["Dashboard"])
    def health_trends(
        months: int = Query(6, ge=1, le=60),
        customers: CustomerService = Depends(get_customer_service),
    ):
        return ApiResponse[List[HealthTrendPoint]](data=customers.health_trends(months))

    @app.get("/api/dashboard/usage-trends", response_model=ApiResponse[List[UsageTrendPoint]], tags=["Dashboard"])
    def usage_trends(
        months: int = Query(6, ge=1, le=60),
        customers: CustomerService = Depends(get_customer_service),
    ):
        return ApiResponse[List[UsageTrendPoint]](data=customers.usage_trends(months))

    @app.get("/api/health", response_model=HealthCheckOut, tags=["Meta"])
    def health_check(request: Request) -> HealthCheckOut:
        """Liveness/readiness probe; never touches the database."""
        database: Database = request.app.state.database
        return HealthCheckOut(
            status="healthy",
            timestamp=datetime.now(timezone.utc),
            version=config.APP_VERSION,
            environment=config.APP_ENV,
            database="ready" if database.ready else "initializing",
        )


def create_app(database: Optional[Database] = None) -> FastAPI:
    app = FastAPI(
        title="Customer Health API",
        description="Customer health scores from usage, support and billing signals.",
        version=config.APP_VERSION,
        lifespan=lifespan,
    )
    app.state.owns_database = database is None
    app.state.database = database or Database(config.DATABASE_URL)

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins(),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        start = time.time()
        response = await call_next(request)
        logger.info(
            "%s %s - %s - %.2fms",
            request.method, request.url.path, response.status_code, (time.time() - start) * 1000,
        )
        return response

    register_exception_handlers(app)
    _register_routes(app)
    return app


app = create_app()
