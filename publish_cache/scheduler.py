# publish_cache/scheduler.py
from apscheduler.executors.pool import ThreadPoolExecutor
from apscheduler.schedulers.background import BackgroundScheduler
from .config import REBUILD_INTERVAL_HOURS, SCHEDULER_ENABLED
from .services import scheduled_rebuild_all
from .utils import logger

REBUILD_ALL_JOB_ID = "rebuild-all-publish-tables"


def build_scheduler(max_workers: int = 10) -> BackgroundScheduler:
    # a queued rebuild waits for a free worker however long that takes
    return BackgroundScheduler(
        executors={"default": ThreadPoolExecutor(max_workers)},
        job_defaults={"misfire_grace_time": None, "coalesce": False},
    )


scheduler = build_scheduler()


def start_scheduler(sched: BackgroundScheduler = None, schedule_rebuilds: bool = None):
    """Start the worker scheduler; ``schedule_rebuilds`` only controls the interval job.

    Trigger endpoints submit their jobs here, so it runs even when the
    periodic rebuild is switched off.
    """
    sched = sched or scheduler
    if schedule_rebuilds is None:
        schedule_rebuilds = SCHEDULER_ENABLED
    if sched.running:
        return sched
    if schedule_rebuilds:
        sched.add_job(
            scheduled_rebuild_all, 'interval', hours=REBUILD_INTERVAL_HOURS,
            id=REBUILD_ALL_JOB_ID, replace_existing=True, coalesce=True,
        )
    else:
        logger.info("Scheduled rebuild disabled")
    sched.start()
    logger.info("Scheduler started")
    return sched


def shutdown_scheduler(sched: BackgroundScheduler = None, wait: bool = False):
    sched = sched or scheduler
    if sched.running:
        sched.shutdown(wait=wait)
        logger.info("Scheduler stopped")


def get_scheduler():
    return scheduler
