"""Transaction scope shared by every mutating use case"""

from types import TracebackType
from typing import Optional, Type
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from tabs_billing.infrastructure.database.repositories import (
    BillingGroupRepository,
    InvoiceRepository,
    LineItemRepository,
    PaymentRepository,
    TabRepository,
)


class UnitOfWork:
    """
    One database transaction with repositories bound to it.

    Usage:
        async with UnitOfWork(session_factory) as uow:
            payment = await uow.payments.get(payment_id)
            ...

    Commits when the block exits cleanly, rolls back on any exception (including
    cancellation), and always releases the connection.
    """

    session: AsyncSession

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def __aenter__(self) -> "UnitOfWork":
        self.session = self.session_factory()
        self.tabs = TabRepository(self.session)
        self.billing_groups = BillingGroupRepository(self.session)
        self.line_items = LineItemRepository(self.session)
        self.payments = PaymentRepository(self.session)
        self.invoices = InvoiceRepository(self.session)
        return self

    async def __aexit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc: Optional[BaseException],
        tb: Optional[TracebackType],
    ) -> None:
        try:
            if exc_type is None:
                await self.session.commit()
            else:
                await self.session.rollback()
        finally:
            await self.session.close()
