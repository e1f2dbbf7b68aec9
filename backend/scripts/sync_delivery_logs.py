"""Attach invoices missing from the delivery logs.

Usage: python scripts/sync_delivery_logs.py [--from YYYY-MM-DD] [--to YYYY-MM-DD] [--deliver-by CODE]
"""

import argparse
import asyncio
import pathlib
import sys
from datetime import date

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))

from loguru import logger

from dms.core.db import SessionLocal, engine
from dms.core.logging import setup_logging
from dms.services.delivery_sync import SyncProgress, SyncScope, sync_missing_invoices


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--from", dest="date_from", type=date.fromisoformat)
    parser.add_argument("--to", dest="date_to", type=date.fromisoformat)
    parser.add_argument("--deliver-by", dest="deliver_by")
    return parser.parse_args(argv)


async def _print_progress(event: SyncProgress) -> None:
    print(f"[{event.progress:3d}%] {event.step.value:<8} {event.message}", flush=True)


async def main(argv: list[str] | None = None) -> int:
    args = _parse_args(argv)
    setup_logging()
    scope = SyncScope(date_from=args.date_from, date_to=args.date_to, deliver_by=args.deliver_by)
    try:
        async with SessionLocal() as session:
            summary = await sync_missing_invoices(session, scope, _print_progress)
    finally:
        await engine.dispose()

    print(
        f"total={summary.total} linked={summary.linked} "
        f"skipped={summary.skipped} errors={len(summary.errors)}"
    )
    for item in summary.errors:
        logger.bind(invoice_no=item.invoice_no).warning(item.error)
    return 1 if summary.errors else 0


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
