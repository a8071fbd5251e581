"""
Shared fixtures: an in-memory SQLite database seeded with reference data.
"""

import os
from datetime import date, timedelta

# Must be set before cfo_assistant.config is imported
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from cfo_assistant import models
from cfo_assistant.database import Base
from cfo_assistant.schemas.agents import AgentTask
from cfo_assistant.seed import seed_reference_data


def make_engine():
    return create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


def make_session_factory(engine):
    return sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


@pytest.fixture(autouse=True)
def no_llm(monkeypatch):
    """Keep every test on the keyword fallback path."""
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)


@pytest_asyncio.fixture
async def engine():
    engine = make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db(engine):
    async with make_session_factory(engine)() as session:
        await seed_reference_data(session)
        yield session


@pytest.fixture
def make_task():
    """Build an AgentTask the way the orchestrator would."""
    def _make(agent_type, description, **input_values):
        return AgentTask(type=agent_type, description=description, input=input_values)
    return _make


@pytest.fixture
def find_client(db):
    """Look up a seeded client by first name."""
    async def _find(first_name):
        return (await db.execute(
            select(models.Client).where(models.Client.name.ilike(f"{first_name}%"))
        )).scalars().first()
    return _find


async def post_transaction(db, description, amount, lines=(), days_ago=0, status="Posted", kind="Expense", on=None):
    """Store a ledger transaction with (account_code, debit, credit) lines."""
    accounts = {a.account_code: a for a in (await db.execute(select(models.Account))).scalars().all()}
    txn = models.Transaction(
        transaction_date=on or date.today() - timedelta(days=days_ago),
        description=description,
        total_amount=amount,
        transaction_type=kind,
        status=status,
    )
    txn.line_items = [
        models.TransactionLineItem(account_id=accounts[code].id, debit_amount=debit, credit_amount=credit)
        for code, debit, credit in lines
    ]
    db.add(txn)
    await db.commit()
    # Later selectinload queries must build fresh instances
    db.expunge_all()
    return txn
