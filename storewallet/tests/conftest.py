
import os
import uuid
from decimal import Decimal

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from typing import AsyncGenerator
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from storewallet.main import app
from storewallet.db.session import get_db, create_tables
from storewallet.models import Account, AccountRole, CatalogItem, ItemStatus


@pytest_asyncio.fixture(loop_scope="function")
async def engine(tmp_path):
    # File-backed so that separate sessions get separate connections
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storewallet.db'}")
    await create_tables(engine)
    yield engine
    await engine.dispose()

@pytest_asyncio.fixture(loop_scope="function")
async def session_factory(engine):
    return async_sessionmaker(bind=engine, expire_on_commit=False)

@pytest_asyncio.fixture(loop_scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session

@pytest_asyncio.fixture(loop_scope="function")
async def client(db_session) -> AsyncGenerator[AsyncClient, None]:
    # Override get_db dependency
    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)

    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()

@pytest.fixture
def make_account(db_session):
    async def _make(balance=0, role=AccountRole.USER, login=None, display_name="Test User"):
        account = Account(
            login=login or f"user-{uuid.uuid4().hex[:8]}",
            display_name=display_name,
            balance=Decimal(str(balance)),
            role=role,
        )
        db_session.add(account)
        await db_session.commit()
        await db_session.refresh(account)
        # Detached so a rolled-back service call cannot expire it
        db_session.expunge(account)
        return account
    return _make

@pytest.fixture
def make_item(db_session):
    async def _make(price=10, quantity=1, title="Test Item", status=ItemStatus.AVAILABLE):
        item = CatalogItem(
            title=title,
            description="",
            image_ref="",
            price=Decimal(str(price)),
            quantity=quantity,
            status=status,
        )
        db_session.add(item)
        await db_session.commit()
        await db_session.refresh(item)
        db_session.expunge(item)
        return item
    return _make

@pytest.fixture
def balance_of(db_session):
    async def _balance(account_id) -> Decimal:
        result = await db_session.execute(select(Account.balance).where(Account.id == account_id))
        return Decimal(result.scalar_one())
    return _balance
