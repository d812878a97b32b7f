"""SQLAlchemy ORM models for tabs, billing groups, payments and invoices"""

import uuid
from sqlalchemy import Column, String, BigInteger, Integer, DateTime, ForeignKey, Text, JSON
from sqlalchemy.orm import declarative_base, relationship

from tabs_billing.utils.date_utils import utcnow

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Tab(Base):
    """Running customer bill owned by an organization"""

    __tablename__ = "tabs"

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(Text, nullable=False, index=True)
    customer_email = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default="open")  # open | partial | paid | void
    currency = Column(Text, nullable=False, default="USD")
    total_cents = Column(BigInteger, nullable=False, default=0)
    paid_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    billing_groups = relationship("BillingGroup", back_populates="tab")
    line_items = relationship("LineItem", back_populates="tab")
    payments = relationship("Payment", back_populates="tab")
    invoices = relationship("Invoice", back_populates="tab")


class Invoice(Base):
    """Invoice generated from a tab or billing group"""

    __tablename__ = "invoices"

    id = Column(String(36), primary_key=True, default=_uuid)
    tab_id = Column(String(36), ForeignKey("tabs.id"), nullable=False, index=True)
    invoice_number = Column(Text, nullable=False, unique=True)
    status = Column(Text, nullable=False, default="draft")
    total_cents = Column(BigInteger, nullable=False, default=0)
    paid_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    tab = relationship("Tab", back_populates="invoices")
    line_items = relationship("InvoiceLineItem", back_populates="invoice")


class InvoiceLineItem(Base):
    __tablename__ = "invoice_line_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=False, index=True)
    description = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(BigInteger, nullable=False)
    total_cents = Column(BigInteger, nullable=False)

    invoice = relationship("Invoice", back_populates="line_items")


class BillingGroup(Base):
    """Sub-ledger of a tab (or invoice) with its own outstanding balance"""

    __tablename__ = "billing_groups"

    id = Column(String(36), primary_key=True, default=_uuid)
    tab_id = Column(String(36), ForeignKey("tabs.id"), nullable=True, index=True)
    invoice_id = Column(String(36), ForeignKey("invoices.id"), nullable=True)
    group_number = Column(Text, nullable=True)
    name = Column(Text, nullable=False)
    group_type = Column(Text, nullable=False, default="standard")
    status = Column(Text, nullable=False, default="active")
    current_balance_cents = Column(BigInteger, nullable=False, default=0)
    credit_limit_cents = Column(BigInteger, nullable=True)
    deposit_amount_cents = Column(BigInteger, nullable=False, default=0)
    deposit_applied_cents = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    tab = relationship("Tab", back_populates="billing_groups")
    invoice = relationship("Invoice")
    line_items = relationship("LineItem", back_populates="billing_group")


class LineItem(Base):
    """Billable unit on a tab, optionally assigned to a billing group"""

    __tablename__ = "line_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    tab_id = Column(String(36), ForeignKey("tabs.id", ondelete="CASCADE"), nullable=False, index=True)
    billing_group_id = Column(
        String(36), ForeignKey("billing_groups.id", ondelete="SET NULL"), nullable=True, index=True
    )
    description = Column(Text, nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price_cents = Column(BigInteger, nullable=False)
    total_cents = Column(BigInteger, nullable=False)
    # "metadata" is reserved on declarative classes
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    tab = relationship("Tab", back_populates="line_items")
    billing_group = relationship("BillingGroup", back_populates="line_items")


class Payment(Base):
    """Inbound fund movement reported by a payment processor"""

    __tablename__ = "payments"

    id = Column(String(36), primary_key=True, default=_uuid)
    tab_id = Column(String(36), ForeignKey("tabs.id"), nullable=False, index=True)
    billing_group_id = Column(
        String(36), ForeignKey("billing_groups.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount_cents = Column(BigInteger, nullable=False)
    currency = Column(Text, nullable=False, default="USD")
    status = Column(Text, nullable=False, default="pending")
    processor = Column(Text, nullable=False, default="stripe")
    processor_payment_id = Column(Text, nullable=True, index=True)
    metadata_ = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    tab = relationship("Tab", back_populates="payments")
    allocations = relationship("PaymentAllocation", back_populates="payment")


class PaymentAllocation(Base):
    """Portion of a payment applied to a billing group"""

    __tablename__ = "payment_allocations"

    id = Column(String(36), primary_key=True, default=_uuid)
    payment_id = Column(String(36), ForeignKey("payments.id"), nullable=False, index=True)
    billing_group_id = Column(
        String(36), ForeignKey("billing_groups.id", ondelete="SET NULL"), nullable=True, index=True
    )
    amount_cents = Column(BigInteger, nullable=False)
    method = Column(Text, nullable=False)
    allocated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    reversed_at = Column(DateTime(timezone=True), nullable=True)

    payment = relationship("Payment", back_populates="allocations")
