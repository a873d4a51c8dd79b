"""Main entry point for NihontoWatch."""

import argparse
import asyncio
import json
import sys

from loguru import logger

from .orchestrator.coordinator import JobCoordinator
from .orchestrator.scheduler import JobScheduler
from .utils.config import get_config
from .utils.logger import setup_logging


async def run_scheduler():
    """Run the job scheduler."""
    config = get_config()
    setup_logging(component="scheduler")

    logger.info("=" * 80)
    logger.info("NihontoWatch - Starting")
    logger.info("=" * 80)

    coordinator = JobCoordinator(config.model_dump())
    scheduler = JobScheduler(coordinator, config.model_dump())

    scheduler.configure_jobs()
    scheduler.start()

    logger.info("Scheduler started. Press Ctrl+C to stop.")

    try:
        while True:
            await asyncio.sleep(1)
    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.info("Shutting down...")
        scheduler.stop()


async def run_job(name: str, *args, **kwargs):
    """Run one coordinator job and log its result.

    Args:
        name: Coordinator coroutine to run
    """
    config = get_config()
    setup_logging(component="job")

    logger.info(f"Running job: {name}")

    coordinator = JobCoordinator(config.model_dump())
    result = await getattr(coordinator, name)(*args, **kwargs)

    logger.info(f"Job {name} completed: {json.dumps(result, default=str)}")
    return result


def run_api():
    """Run the FastAPI server."""
    import uvicorn

    config = get_config()
    setup_logging(component="api")

    logger.info("=" * 80)
    logger.info("NihontoWatch API - Starting")
    logger.info("=" * 80)

    uvicorn.run(
        "nihontowatch.api.main:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
    )


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description="NihontoWatch batch jobs and API")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    subparsers.add_parser("scheduler", help="Run the job scheduler")

    subparsers.add_parser("api", help="Run the API server")

    subparsers.add_parser("score", help="Recompute featured scores")

    alerts_parser = subparsers.add_parser("alerts", help="Process listing alerts")
    alerts_parser.add_argument("kind", choices=["price", "stock"], help="Alert type to process")

    searches_parser = subparsers.add_parser(
        "saved-searches", help="Send saved search notifications"
    )
    searches_parser.add_argument(
        "frequency", choices=["instant", "daily"], help="Notification frequency"
    )

    elite_parser = subparsers.add_parser(
        "sync-elite", help="Copy artisan elite factors onto listings"
    )
    elite_parser.add_argument(
        "codes", nargs="*", help="Artisan codes to sync (all artisans when omitted)"
    )

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    try:
        if args.command == "scheduler":
            asyncio.run(run_scheduler())
        elif args.command == "api":
            run_api()
        elif args.command == "score":
            asyncio.run(run_job("compute_featured_scores"))
        elif args.command == "alerts":
            job = "process_price_alerts" if args.kind == "price" else "process_stock_alerts"
            asyncio.run(run_job(job))
        elif args.command == "saved-searches":
            asyncio.run(run_job("process_saved_searches", args.frequency))
        elif args.command == "sync-elite":
            if args.codes:
                asyncio.run(run_job("sync_elite_factors", args.codes))
            else:
                asyncio.run(run_job("sync_elite_factors", sync_all=True))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.opt(exception=True).error(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
