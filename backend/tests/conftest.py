import os
import sys
import tempfile
from pathlib import Path

import pytest

# Point the app at a throwaway SQLite file before settings import
_DB_DIR = Path(tempfile.mkdtemp(prefix="dms-tests-"))
os.environ.setdefault("DB_URL", f"sqlite+aiosqlite:///{(_DB_DIR / 'dms_test.db').as_posix()}")
os.environ.setdefault("LOG_SERIALIZE", "false")

# Add the backend directory so `dms` package imports resolve during tests
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.append(str(BACKEND_DIR))

TESTS_DIR = Path(__file__).resolve().parent
if str(TESTS_DIR) not in sys.path:
    sys.path.insert(0, str(TESTS_DIR))


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def db(anyio_backend):
    """Fresh schema per test; the engine is disposed so no connection outlives the loop."""

    from dms.core.db import engine
    from dms.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def seeded(db):
    from dms.core.db import SessionLocal
    from factories import seed_masters

    async with SessionLocal() as session:
        async with session.begin():
            await seed_masters(session)
    return db


@pytest.fixture
async def session(seeded):
    from dms.core.db import SessionLocal

    async with SessionLocal() as s:
        yield s
