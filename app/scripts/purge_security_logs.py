"""
Retention purge batch job.

Deletes device-ledger and security-event rows older than the cutoff in
one transaction.  Schedule it (cron, k8s CronJob, ...) independently of
the API; it never runs inside a user request.

Usage:
    uv run python -m app.scripts.purge_security_logs
    uv run python -m app.scripts.purge_security_logs --days-to-keep 30
"""

import argparse
import asyncio
import logging

from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from app.core.config import settings
from app.schemas import PurgeResult
from app.services import audit_service

logger = logging.getLogger("app.purge")


async def run_purge(days_to_keep: int, database_url: str | None = None) -> PurgeResult:
    engine = create_async_engine(database_url or settings.DATABASE_URL, echo=False)
    session_factory = async_sessionmaker(engine, expire_on_commit=False)
    try:
        async with session_factory() as session:
            async with session.begin():
                return await audit_service.purge_security_logs(session, days_to_keep)
    finally:
        await engine.dispose()


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Purge old security events and device logs.")
    parser.add_argument(
        "--days-to-keep",
        type=int,
        default=settings.AUDIT_RETENTION_DAYS,
        help=f"rows older than this many days are removed (default {settings.AUDIT_RETENTION_DAYS})",
    )
    args = parser.parse_args(argv)
    if not 0 <= args.days_to_keep <= audit_service.MAX_RETENTION_DAYS:
        parser.error(f"--days-to-keep must be between 0 and {audit_service.MAX_RETENTION_DAYS}")

    logging.basicConfig(
        level=logging.DEBUG if settings.DEBUG else logging.INFO,
        format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
    )

    result = asyncio.run(run_purge(args.days_to_keep))
    logger.info(
        "Purge complete: security_events=%d device_logs=%d",
        result.events_removed, result.ledger_entries_removed,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
