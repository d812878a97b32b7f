"""Pytest fixtures for testing"""

import pytest
import pytest_asyncio
from typing import AsyncGenerator, Optional
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from tabs_billing.api.main import create_app
from tabs_billing.infrastructure.database.models import (
    Base,
    BillingGroup,
    Invoice,
    InvoiceLineItem,
    LineItem,
    Payment,
    Tab,
)
from tabs_billing.infrastructure.database.session import get_session_factory

ORG_ID = "org_acme"
OTHER_ORG_ID = "org_rival"


@pytest_asyncio.fixture
async def session_factory(tmp_path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Fresh SQLite database per test"""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


class Seeder:
    """Inserts committed rows for a test scenario"""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory
        self._invoice_seq = 0

    async def _add(self, row):
        async with self.session_factory() as session:
            session.add(row)
            await session.commit()
        return row

    async def tab(self, organization_id: str = ORG_ID, total_cents: int = 0) -> Tab:
        return await self._add(Tab(organization_id=organization_id, total_cents=total_cents))

    async def group(
        self,
        tab: Optional[Tab],
        balance_cents: int = 0,
        name: str = "Group",
        invoice: Optional[Invoice] = None,
        **fields,
    ) -> BillingGroup:
        return await self._add(
            BillingGroup(
                tab_id=tab.id if tab is not None else None,
                invoice_id=invoice.id if invoice is not None else None,
                name=name,
                current_balance_cents=balance_cents,
                **fields,
            )
        )

    async def line_item(
        self,
        tab: Tab,
        group: Optional[BillingGroup],
        total_cents: int,
        description: str = "Item",
        quantity: int = 1,
    ) -> LineItem:
        return await self._add(
            LineItem(
                tab_id=tab.id,
                billing_group_id=group.id if group is not None else None,
                description=description,
                quantity=quantity,
                unit_price_cents=total_cents // quantity,
                total_cents=total_cents,
            )
        )

    async def payment(
        self,
        tab: Tab,
        amount_cents: int,
        status: str = "succeeded",
        group: Optional[BillingGroup] = None,
        processor_payment_id: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> Payment:
        return await self._add(
            Payment(
                tab_id=tab.id,
                billing_group_id=group.id if group is not None else None,
                amount_cents=amount_cents,
                status=status,
                processor_payment_id=processor_payment_id,
                metadata_=metadata or {},
            )
        )

    async def invoice(
        self,
        tab: Tab,
        status: str = "draft",
        total_cents: int = 0,
        paid_cents: int = 0,
        line_item_totals: tuple = (),
    ) -> Invoice:
        self._invoice_seq += 1
        invoice = await self._add(
            Invoice(
                tab_id=tab.id,
                invoice_number=f"INV-{self._invoice_seq:04d}",
                status=status,
                total_cents=total_cents,
                paid_cents=paid_cents,
            )
        )
        for total in line_item_totals:
            await self._add(
                InvoiceLineItem(
                    invoice_id=invoice.id,
                    description="Invoice line",
                    unit_price_cents=total,
                    total_cents=total,
                )
            )
        return invoice

    async def reload(self, model, row_id: str):
        async with self.session_factory() as session:
            return await session.get(model, row_id)


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_factory)


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the test database"""
    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


@pytest.fixture
def org_headers() -> dict:
    return {"X-Organization-ID": ORG_ID, "X-User-ID": "user_1"}
