"""Dependency injection for FastAPI endpoints"""

from typing import Optional

from fastapi import Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabs_billing.infrastructure.database.session import get_session_factory
from tabs_billing.services.allocation_service import PaymentAllocationService
from tabs_billing.services.billing_group_service import BillingGroupService
from tabs_billing.services.deletion_service import BillingGroupDeletionService
from tabs_billing.services.payment_event_service import PaymentEventService


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_organization_id(x_organization_id: Optional[str] = Header(None)) -> str:
    """Caller's tenant, set by the authentication layer in front of this service"""
    if not x_organization_id:
        raise HTTPException(status_code=401, detail="Missing organization context")
    return x_organization_id


def get_user_id(x_user_id: Optional[str] = Header(None)) -> str:
    return x_user_id or "system"


def get_allocation_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> PaymentAllocationService:
    return PaymentAllocationService(session_factory)


def get_deletion_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BillingGroupDeletionService:
    return BillingGroupDeletionService(session_factory)


def get_billing_group_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BillingGroupService:
    return BillingGroupService(session_factory)


def get_payment_event_service(
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    allocation_service: PaymentAllocationService = Depends(get_allocation_service),
) -> PaymentEventService:
    return PaymentEventService(session_factory, allocation_service)
