"""Job scheduling for NihontoWatch."""

from typing import TYPE_CHECKING

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

if TYPE_CHECKING:
    from .coordinator import JobCoordinator


class JobScheduler:
    """Manages scheduled batch jobs.

    Default schedule:
    - Featured scores: Every 4 hours
    - Price drop alerts: Every 15 minutes
    - Back-in-stock alerts: Every 15 minutes
    - Instant saved searches: Every 15 minutes
    - Daily saved search digest: 8 AM UTC
    - Elite factor sync: 3 AM UTC
    """

    def __init__(self, coordinator: "JobCoordinator", config: dict):
        """Initialize job scheduler.

        Args:
            coordinator: Job coordinator instance
            config: Configuration dictionary
        """
        self.coordinator = coordinator
        self.config = config
        schedule_config = config.get("schedule", {})
        self.scheduler = AsyncIOScheduler(
            job_defaults={
                "coalesce": True,
                "max_instances": schedule_config.get("max_instances_per_job", 1),
                "misfire_grace_time": schedule_config.get("misfire_grace_time_seconds", 120),
            }
        )

    def configure_jobs(self):
        """Set up all scheduled jobs based on configuration."""
        schedule_config = self.config.get("schedule", {})

        featured_hours = schedule_config.get("featured_scores_hours", 4)
        self.scheduler.add_job(
            self.coordinator.compute_featured_scores,
            IntervalTrigger(hours=featured_hours),
            id="featured_scores",
            name="Featured Score Computation",
            replace_existing=True,
        )
        logger.info(f"Scheduled featured scores every {featured_hours} hours")

        price_minutes = schedule_config.get("price_alerts_minutes", 15)
        self.scheduler.add_job(
            self.coordinator.process_price_alerts,
            IntervalTrigger(minutes=price_minutes),
            id="price_alerts",
            name="Price Drop Alerts",
            replace_existing=True,
        )
        logger.info(f"Scheduled price drop alerts every {price_minutes} minutes")

        stock_minutes = schedule_config.get("stock_alerts_minutes", 15)
        self.scheduler.add_job(
            self.coordinator.process_stock_alerts,
            IntervalTrigger(minutes=stock_minutes),
            id="stock_alerts",
            name="Back-in-Stock Alerts",
            replace_existing=True,
        )
        logger.info(f"Scheduled back-in-stock alerts every {stock_minutes} minutes")

        instant_minutes = schedule_config.get("saved_search_instant_minutes", 15)
        self.scheduler.add_job(
            self.coordinator.process_saved_searches,
            IntervalTrigger(minutes=instant_minutes),
            args=["instant"],
            id="saved_searches_instant",
            name="Instant Saved Search Notifications",
            replace_existing=True,
        )
        logger.info(f"Scheduled instant saved searches every {instant_minutes} minutes")

        daily_hour = schedule_config.get("saved_search_daily_hour", 8)
        self.scheduler.add_job(
            self.coordinator.process_saved_searches,
            CronTrigger(hour=daily_hour, minute=0),
            args=["daily"],
            id="saved_searches_daily",
            name="Daily Saved Search Digest",
            replace_existing=True,
        )
        logger.info(f"Scheduled daily saved search digest at {daily_hour}:00")

        elite_hour = schedule_config.get("elite_sync_hour", 3)
        self.scheduler.add_job(
            self.coordinator.sync_elite_factors,
            CronTrigger(hour=elite_hour, minute=0),
            kwargs={"sync_all": True},
            id="elite_sync",
            name="Elite Factor Sync",
            replace_existing=True,
        )
        logger.info(f"Scheduled elite factor sync daily at {elite_hour}:00")

    def start(self):
        """Start the scheduler."""
        logger.info("Starting job scheduler")
        self.scheduler.start()

    def stop(self):
        """Stop the scheduler."""
        logger.info("Stopping job scheduler")
        self.scheduler.shutdown()

    def get_jobs(self):
        """Get list of scheduled jobs."""
        return self.scheduler.get_jobs()
