"""Background job scheduler for audit trail retention."""
import logging
from datetime import UTC, datetime, timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlmodel import Session

from checkin.core.config import settings
from checkin.core.database import engine
from checkin.validation.store import SqlAuditLog

logger = logging.getLogger(__name__)

scheduler = AsyncIOScheduler()


def purge_expired_attempts(session: Session, now: datetime | None = None) -> int:
    """Delete validation attempts older than the retention window."""
    now = now or datetime.now(UTC)
    cutoff = now - timedelta(days=settings.audit_retention_days)
    return SqlAuditLog(session).purge_before(cutoff)


def purge_job():
    """Background retention job."""
    try:
        with Session(engine) as session:
            purged = purge_expired_attempts(session)
            logger.info(f"Audit retention completed: {purged} attempts removed")
    except Exception as e:
        logger.error(f"Audit retention failed: {e}")


def start_scheduler():
    """Start the background scheduler."""
    scheduler.add_job(
        purge_job,
        trigger=IntervalTrigger(hours=settings.audit_purge_interval_hours),
        id="audit_retention",
        replace_existing=True,
    )
    scheduler.start()
    logger.info(
        f"Scheduler started, purging attempts older than {settings.audit_retention_days} days "
        f"every {settings.audit_purge_interval_hours} hours"
    )


def shutdown_scheduler():
    """Graceful shutdown."""
    scheduler.shutdown(wait=False)
    logger.info("Scheduler shut down")
