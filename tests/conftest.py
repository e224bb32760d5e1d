"""
Shared fixtures.

DATABASE_URL points at a throwaway SQLite file before shiprate is imported,
so the app's module-level engine never touches a real database.
"""
import asyncio
import os
import tempfile
import uuid

_TEST_DIR = tempfile.mkdtemp(prefix="shiprate-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_TEST_DIR, 'api.db')}"
os.environ["CONFIG_SOURCE"] = "settings"
os.environ["LOG_LEVEL"] = "WARNING"

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from shiprate import models  # noqa: F401
from shiprate.core.config_provider import StaticConfigProvider
from shiprate.database import Base, custom_json_dumps
from shiprate.services.zone_resolver import PincodeInfo, ZoneResolver


METROS = ["NEW DELHI", "DELHI", "MUMBAI", "BANGALORE", "CHENNAI"]
SPECIAL_STATES = ["ASSAM", "JAMMU AND KASHMIR"]

PINCODES = [
    PincodeInfo("110001", "New Delhi", "Delhi", "Delhi", "New Delhi", "NORTH"),
    PincodeInfo("110020", "New Delhi", "Delhi", "Delhi", "New Delhi", "NORTH"),
    PincodeInfo("110085", "North West Delhi", "Delhi", "Delhi", "Delhi", "NORTH"),
    PincodeInfo("122001", "Gurgaon", "Haryana", "Haryana", "Gurgaon", "NORTH"),
    PincodeInfo("400001", "Mumbai", "Maharashtra", "Maharashtra", "Mumbai", "WEST"),
    PincodeInfo("411001", "Pune", "Maharashtra", "Maharashtra", "Pune", "WEST"),
    PincodeInfo("380001", "Ahmedabad", "Gujarat", "Gujarat", "Ahmedabad", "WEST"),
    PincodeInfo("560001", "Bangalore", "Karnataka", "Karnataka", "Bangalore", "SOUTH"),
    PincodeInfo("781001", "Kamrup Metropolitan", "Assam", "North East", "Guwahati", "EAST", is_oda=True),
    PincodeInfo("700001", "Kolkata", "West Bengal", "West Bengal", "Kolkata", "EAST"),
]


def make_resolver(pincodes=None, metros=None, special_states=None) -> ZoneResolver:
    return ZoneResolver(
        StaticConfigProvider(
            METROS if metros is None else metros,
            SPECIAL_STATES if special_states is None else special_states,
        ),
        pincodes=PINCODES if pincodes is None else pincodes,
    )


@pytest.fixture
def resolver() -> ZoneResolver:
    return make_resolver()


@pytest.fixture
def company_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def run_db():
    """
    Run an async scenario against a fresh in-memory database.

    Usage:
        result = run_db(scenario)   # scenario(session_factory) -> awaitable
    """
    def runner(scenario):
        async def main():
            engine = create_async_engine(
                "sqlite+aiosqlite://",
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                json_serializer=custom_json_dumps,
            )
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)
            try:
                return await scenario(factory)
            finally:
                await engine.dispose()

        return asyncio.run(main())

    return runner
