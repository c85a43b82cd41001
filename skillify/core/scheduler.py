from apscheduler.jobstores.base import ConflictingIdError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from skillify.db.session import AsyncSessionLocal
from skillify.services.shares.payment_sweeper import PaymentSweeper

scheduler = AsyncIOScheduler()


# ================================
# JOB: created payments never verified → failed
# ================================
async def stale_payment_job():
    async with AsyncSessionLocal() as session:
        try:
            swept = await PaymentSweeper(session).sweep_stale_payments_async()
            logger.info(f"Stale payment sweep done ({swept} updated)")
        except Exception as e:
            logger.error(f"Stale payment sweep failed: {e}")


def start_scheduler():
    try:
        scheduler.add_job(
            stale_payment_job,
            trigger=IntervalTrigger(minutes=30),
            id="stale_payment_job",
            replace_existing=True,
            max_instances=1,
        )
    except ConflictingIdError:
        logger.warning("stale_payment_job already registered")

    scheduler.start()
    logger.info("Scheduler started (stale payment sweep)")


def stop_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
