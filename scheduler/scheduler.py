# scheduler/scheduler.py
import asyncio
import os
import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from dotenv import load_dotenv
from scheduler.jobs import update_promotions

load_dotenv()
DATA_UPDATE_SCHEDULE = os.getenv("DATA_UPDATE_SCHEDULE", "*/5 * * * *")
EMAIL_SCHEDULE = os.getenv("EMAIL_SCHEDULE", "0 7 * * *")
SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "America/Sao_Paulo")
ENABLE_DATA_UPDATE = os.getenv("ENABLE_DATA_UPDATE", "true").lower() != "false"
ENABLE_EMAIL_CRON = os.getenv("ENABLE_EMAIL_CRON", "true").lower() != "false"


logger = logging.getLogger("scheduler")
logger.setLevel(logging.INFO)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(message)s"))
logger.addHandler(handler)


async def scheduled_update():
    """Periodic data refresh, no email."""
    try:
        await update_promotions(send_email=False)
    except Exception:
        logger.exception("Scheduled data update failed")


async def scheduled_email():
    """Daily refresh followed by the digest email."""
    try:
        await update_promotions(send_email=True)
    except Exception:
        logger.exception("Scheduled email run failed")


def build_scheduler(
    data_schedule=DATA_UPDATE_SCHEDULE,
    email_schedule=EMAIL_SCHEDULE,
    timezone=SCHEDULER_TIMEZONE,
    enable_data_update=ENABLE_DATA_UPDATE,
    enable_email=ENABLE_EMAIL_CRON,
):
    """
    Create the AsyncIOScheduler with the refresh and email jobs.

    Args:
        data_schedule (str): Crontab expression for data refreshes
        email_schedule (str): Crontab expression for the digest email
        timezone (str): Timezone both expressions are evaluated in
        enable_data_update (bool): Register the refresh job
        enable_email (bool): Register the email job

    Returns:
        AsyncIOScheduler: Not started yet

    Configuration:
        - Job "data_update": every 5 minutes by default
        - Job "daily_email": 07:00 every day by default
        - max_instances=1 and coalesce=True, so a slow run is never overlapped
          and missed runs collapse into one
    """
    scheduler = AsyncIOScheduler(timezone=timezone)
    if enable_data_update:
        scheduler.add_job(
            scheduled_update,
            CronTrigger.from_crontab(data_schedule, timezone=timezone),
            id="data_update",
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Data update scheduled: '{data_schedule}' ({timezone})")
    else:
        logger.info("Data update disabled (ENABLE_DATA_UPDATE=false)")

    if enable_email:
        scheduler.add_job(
            scheduled_email,
            CronTrigger.from_crontab(email_schedule, timezone=timezone),
            id="daily_email",
            max_instances=1,
            coalesce=True,
        )
        logger.info(f"Email scheduled: '{email_schedule}' ({timezone})")
    else:
        logger.info("Scheduled email disabled (ENABLE_EMAIL_CRON=false)")
    return scheduler


async def async_main():
    """
    Start the scheduler and keep the event loop alive.

    Returns:
        None (runs until the process is terminated)
    """
    scheduler = build_scheduler()
    scheduler.start()
    logger.info("Scheduler started")
    try:
        await asyncio.Event().wait()
    finally:
        scheduler.shutdown(wait=False)


if __name__ == "__main__":
    asyncio.run(async_main())
