"""Pytest configuration and fixtures."""

import os
import tempfile

# Settings are read at import time, so the environment must be ready first.
_TMP_DIR = tempfile.mkdtemp(prefix="ledger-bank-tests-")
os.environ.setdefault("DATABASE_URL", f"sqlite+aiosqlite:///{_TMP_DIR}/bootstrap.db")
os.environ.setdefault("LOG_DIR", os.path.join(_TMP_DIR, "logs"))
os.environ["AUTO_CREATE_TABLES"] = "false"

from decimal import Decimal  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import update  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from ledger_bank.db.models import Account  # noqa: E402
from ledger_bank.db.session import init_models  # noqa: E402
from ledger_bank.security import create_access_token  # noqa: E402
from ledger_bank.services.accounts import AccountService, NewAccount  # noqa: E402


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Fresh SQLite database per test."""
    eng = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'ledger.db'}")
    await init_models(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def open_account(session_factory):
    """Open an account in its own session; optionally force a status afterwards."""

    async def _open(
        name="Test User",
        balance="0.00",
        phone=None,
        email=None,
        status="active",
        bank_name="Ledger Bank",
    ) -> Account:
        async with session_factory() as session:
            account = await AccountService(session).open_account(
                NewAccount(
                    name=name,
                    email=email or f"{uuid4().hex[:10]}@example.com",
                    phone=phone,
                    initial_deposit=Decimal(str(balance)),
                    bank_name=bank_name,
                    ifsc_code="LDGR0000001",
                )
            )
            if status != "active":
                await session.execute(
                    update(Account).where(Account.account_id == account.account_id).values(status=status)
                )
                await session.commit()
                account.status = status
            return account

    return _open


@pytest.fixture
def get_balance(session_factory):
    async def _balance(account_id) -> Decimal:
        async with session_factory() as session:
            account = await session.get(Account, account_id)
            return Decimal(str(account.balance)).quantize(Decimal("0.01"))

    return _balance


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP client against the FastAPI app with the DB dependency pointed at the test database."""
    from ledger_bank.api.deps import get_db
    from ledger_bank.app import app

    async def _get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = _get_db
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(account) -> dict:
        return {"Authorization": f"Bearer {create_access_token(account.account_id)}"}

    return _headers
