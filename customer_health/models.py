"""
SQLAlchemy ORM models for the Customer Health service.

These tables capture customers and the signals their health is derived from:
- Customer: static profile (segment, plan, revenue, signup and last login)
- CustomerEvent: append-only activity log (login, api_call, feature_used, ...)
- FeatureUsage: per-feature adoption counters
- SupportTicket: support cases with priority and status
- Payment: invoices with due/paid dates and a billing status
- ApiUsage: daily API request counts per endpoint
- HealthScoreRecord: every computed score; the newest row per customer wins

Relationships are bidirectional with cascades for clean deletion.
"""

from datetime import datetime

from sqlalchemy import Column, Integer, String, Float, Date, DateTime, ForeignKey, JSON, Index
from sqlalchemy.orm import relationship

from .db import Base

HIGH_PRIORITIES = ("high", "critical")


class Customer(Base):
    """Customer profile; provisioned externally, only last_login_date changes here."""
    __tablename__ = "customers"
    id = Column(Integer, primary_key=True, index=True)
    company_name = Column(String, nullable=False)
    contact_email = Column(String, nullable=True)
    contact_name = Column(String, nullable=True)
    segment = Column(String, nullable=False, default="smb")  # enterprise | smb | startup
    plan_type = Column(String, nullable=False, default="basic")
    monthly_revenue = Column(Float, nullable=False, default=0.0)
    signup_date = Column(DateTime, nullable=False, default=datetime.utcnow)
    last_login_date = Column(DateTime, nullable=True)

    events = relationship("CustomerEvent", back_populates="customer", cascade="all, delete-orphan")
    features = relationship("FeatureUsage", back_populates="customer", cascade="all, delete-orphan")
    tickets = relationship("SupportTicket", back_populates="customer", cascade="all, delete-orphan")
    payments = relationship("Payment", back_populates="customer", cascade="all, delete-orphan")
    api_usage = relationship("ApiUsage", back_populates="customer", cascade="all, delete-orphan")
    health_scores = relationship("HealthScoreRecord", back_populates="customer", cascade="all, delete-orphan")


class CustomerEvent(Base):
    """One customer interaction. Never updated or deleted."""
    __tablename__ = "customer_events"
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    event_type = Column(String, nullable=False)  # login | feature_used | api_call | page_view | support_ticket | payment
    event_data = Column(JSON, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    customer = relationship("Customer", back_populates="events")


class FeatureUsage(Base):
    """Adoption counter for one feature of one customer."""
    __tablename__ = "feature_usage"
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    feature_name = Column(String, nullable=False)
    usage_count = Column(Integer, nullable=False, default=1)
    last_used = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    customer = relationship("Customer", back_populates="features")


class SupportTicket(Base):
    """Support case tied to a customer."""
    __tablename__ = "support_tickets"
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    ticket_id = Column(String, nullable=True)
    priority = Column(String, nullable=False, default="medium")  # low | medium | high | critical
    status = Column(String, nullable=False, default="open")  # open | in_progress | resolved | closed
    subject = Column(String, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    resolved_at = Column(DateTime, nullable=True)

    customer = relationship("Customer", back_populates="tickets")


class Payment(Base):
    """Invoice with due date, payment date and billing status."""
    __tablename__ = "payments"
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    invoice_id = Column(String, nullable=True)
    amount = Column(Float, nullable=False, default=0.0)
    due_date = Column(DateTime, nullable=False)
    paid_date = Column(DateTime, nullable=True)
    status = Column(String, nullable=False, default="pending")  # paid | pending | overdue
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    customer = relationship("Customer", back_populates="payments")


class ApiUsage(Base):
    """Requests made by a customer to one endpoint on one day."""
    __tablename__ = "api_usage"
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), index=True, nullable=False)
    endpoint = Column(String, nullable=True)
    request_count = Column(Integer, nullable=False, default=0)
    date = Column(Date, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    customer = relationship("Customer", back_populates="api_usage")


class HealthScoreRecord(Base):
    """A persisted health score. Older rows stay but only the newest is read."""
    __tablename__ = "health_scores"
    __table_args__ = (Index("ix_health_scores_customer_calculated", "customer_id", "calculated_at"),)
    id = Column(Integer, primary_key=True)
    customer_id = Column(Integer, ForeignKey("customers.id"), nullable=False)
    overall_score = Column(Integer, nullable=False)
    login_frequency_score = Column(Integer, nullable=False)
    feature_adoption_score = Column(Integer, nullable=False)
    support_ticket_score = Column(Integer, nullable=False)
    payment_timeliness_score = Column(Integer, nullable=False)
    api_usage_score = Column(Integer, nullable=False)
    calculated_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    customer = relationship("Customer", back_populates="health_scores")
