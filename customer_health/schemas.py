"""
Pydantic schemas for API input/output.

Every response is wrapped in `ApiResponse[T]`: {"success": true, "data": ...}.
Field names follow what the dashboard already consumes: customer list rows
use the raw column names, score payloads use camelCase.

Schemas:
- EventIn: request body for POST /api/customers/{id}/events.
- CustomerRow / Pagination: rows of GET /api/customers.
- HealthScoreOut / CustomerProfileOut: detailed breakdown for one customer.
- DashboardStats / HealthTrendPoint / UsageTrendPoint: dashboard aggregates.
"""

from datetime import datetime
from typing import Any, Dict, Generic, List, Literal, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field

from .services.health import HealthScore

T = TypeVar("T")

EventType = Literal["login", "feature_used", "api_call", "page_view", "support_ticket", "payment"]
Segment = Literal["enterprise", "smb", "startup"]
HealthLevel = Literal["healthy", "at-risk", "critical", "churned"]
SortField = Literal["overall_score", "company_name", "monthly_revenue", "signup_date"]
SortOrder = Literal["asc", "desc"]
Component = Literal["login-events", "feature-usage", "support-tickets", "payments", "api-usage"]


class ApiResponse(BaseModel, Generic[T]):
    success: bool = True
    data: T


class EventIn(BaseModel):
    """Input schema for POST /api/customers/{id}/events."""
    eventType: EventType
    eventData: Optional[Dict[str, Any]] = None


class CustomerRow(BaseModel):
    """Customer with its latest score, as listed by GET /api/customers."""
    id: int
    company_name: str
    contact_email: Optional[str] = None
    contact_name: Optional[str] = None
    segment: str
    plan_type: str
    monthly_revenue: float
    signup_date: datetime
    last_login_date: Optional[datetime] = None
    overall_score: int
    login_frequency_score: int
    feature_adoption_score: int
    support_ticket_score: int
    payment_timeliness_score: int
    api_usage_score: int
    calculated_at: Optional[datetime] = None
    healthLevel: HealthLevel


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    totalPages: int


class CustomerListResponse(ApiResponse[List[CustomerRow]]):
    pagination: Pagination


class SubScoreOut(BaseModel):
    score: int = Field(..., ge=0, le=100)
    weight: float


class HealthScoreOut(BaseModel):
    customerId: int
    overallScore: int = Field(..., ge=0, le=100)
    healthLevel: HealthLevel
    breakdown: Dict[str, SubScoreOut]
    calculatedAt: datetime

    @classmethod
    def from_score(cls, score: HealthScore) -> "HealthScoreOut":
        return cls(
            customerId=score.customer_id,
            overallScore=score.overall_score,
            healthLevel=score.health_level,
            breakdown={
                name: SubScoreOut(score=sub.display_score, weight=sub.weight)
                for name, sub in score.breakdown.items()
            },
            calculatedAt=score.calculated_at,
        )


class CustomerProfileOut(BaseModel):
    id: int
    companyName: str
    segment: str
    planType: str
    monthlyRevenue: float
    signupDate: datetime
    lastLoginDate: Optional[datetime] = None

    @classmethod
    def from_customer(cls, customer) -> "CustomerProfileOut":
        return cls(
            id=customer.id,
            companyName=customer.company_name,
            segment=customer.segment,
            planType=customer.plan_type,
            monthlyRevenue=customer.monthly_revenue,
            signupDate=customer.signup_date,
            lastLoginDate=customer.last_login_date,
        )


class UsageMetrics(BaseModel):
    totalEvents: int
    recentEvents: int
    totalTickets: int
    openTickets: int
    totalPayments: int
    overduePayments: int
    featuresUsed: int
    apiRequests: int


class CustomerHealthData(BaseModel):
    """Detailed health breakdown returned by GET /api/customers/{id}/health."""
    customer: CustomerProfileOut
    healthScore: HealthScoreOut
    metrics: UsageMetrics


class CustomerRef(BaseModel):
    id: int
    companyName: str


class ComponentData(BaseModel):
    customer: CustomerRef
    component: Component
    data: List[Dict[str, Any]]


class EventOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)
    id: int
    customerId: int
    eventType: EventType
    eventData: Optional[Dict[str, Any]] = None
    createdAt: datetime


class EventRecorded(BaseModel):
    event: EventOut
    updatedHealthScore: int
    healthLevel: HealthLevel


class EventRecordedResponse(ApiResponse[EventRecorded]):
    message: str = "Event recorded and health score updated"


class DashboardStats(BaseModel):
    total: int
    healthy: int
    atRisk: int
    critical: int
    churned: int
    averageHealthScore: float


class DashboardStatsData(BaseModel):
    stats: DashboardStats
    averageHealthScore: float


class HealthTrendPoint(BaseModel):
    month: str
    score: float
    customerCount: int


class UsageTrendPoint(BaseModel):
    month: str
    logins: int
    apiCalls: int


class HealthCheckOut(BaseModel):
    status: str
    timestamp: datetime
    version: str
    environment: str
    database: Literal["ready", "initializing"]
