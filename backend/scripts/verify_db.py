import sys, pathlib, asyncio
sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from sqlalchemy import text
from dms.core.db import SessionLocal, engine

async def main():
    async with SessionLocal() as s:
        # Simple ping
        one = await s.execute(text("SELECT 1"))
        print("db-ping:", one.scalar())
        print("dialect:", engine.dialect.name)

        if engine.dialect.name == "mysql":
            iso = await s.execute(text("SELECT @@transaction_isolation"))
            print("transaction_isolation:", iso.scalar())
    await engine.dispose()

asyncio.run(main())
