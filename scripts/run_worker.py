#!/usr/bin/env python3
"""
Job Worker — Run the queue consumers and recurring jobs without the HTTP API.

Usage:
    # Local:
    python scripts/run_worker.py

    # Alternate config, no cron (e.g. a second worker box):
    NYAYA_CONFIG=/etc/nyaya/settings.yaml python scripts/run_worker.py --no-cron

    # Only create the SQL tables, then exit:
    python scripts/run_worker.py --init-db

Several workers may share one Redis; each waiting job goes to exactly one
of them.
"""
import asyncio
import os
import signal
import sys
import argparse

# Ensure app root is on path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))


async def run_worker(enable_cron: bool = True, init_only: bool = False):
    from dotenv import load_dotenv
    load_dotenv()

    import structlog
    from backend.case_records import create_case_record_source
    from backend.emergency import create_emergency_gateway
    from channels import create_channel_registry
    from config.log import configure_logging
    from config.settings import load_settings
    from database.session import close_db, init_db
    from database.store_factory import create_store
    from job_queue.scheduler import create_job_system

    settings = load_settings()
    configure_logging(settings.debug)
    logger = structlog.get_logger()

    uses_sql = settings.database.store_backend == "sql"
    if uses_sql or init_only:
        await init_db(settings.database.url)
    if init_only:
        await close_db()
        return

    settings.schedule.enabled = settings.schedule.enabled and enable_cron
    store = create_store({"store_backend": settings.database.store_backend})
    channels = await create_channel_registry(settings.channels)
    case_source = create_case_record_source(settings.case_api)
    emergency = create_emergency_gateway(settings.emergency)

    scheduler, _ = create_job_system(settings, store, channels, case_source, emergency)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    await scheduler.start()
    logger.info("worker_started", queue_backend=settings.queue.backend, cron=settings.schedule.enabled)
    try:
        await stop.wait()
    finally:
        logger.info("worker_stopping")
        await scheduler.stop()
        await channels.shutdown_all()
        await case_source.close()
        await emergency.close()
        if uses_sql:
            await close_db()


def main():
    parser = argparse.ArgumentParser(description="NyayaMitra job worker")
    parser.add_argument("--no-cron", action="store_true", help="Do not schedule recurring jobs")
    parser.add_argument("--init-db", action="store_true", help="Create SQL tables and exit")
    args = parser.parse_args()
    asyncio.run(run_worker(enable_cron=not args.no_cron, init_only=args.init_db))


if __name__ == "__main__":
    main()
