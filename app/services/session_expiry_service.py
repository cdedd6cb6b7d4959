from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _job_id(user_id: str) -> str:
    return f'session-expiry:{user_id}'


class SessionExpiryScheduler:
    """One-shot reminder per user, fired ``lead`` before the session expires.

    Each user owns a single date job, so scheduling again replaces the
    pending reminder. An unknown expiry, or one whose reminder time has
    already passed, leaves no reminder behind.
    """

    def __init__(
        self,
        *,
        lead: timedelta,
        on_warn: Callable[[str, datetime], None],
        scheduler: BackgroundScheduler | None = None,
        clock: Callable[[], datetime] = _now,
    ) -> None:
        self.lead = lead
        self.on_warn = on_warn
        self.clock = clock
        self.scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc, daemon=True)
        if not self.scheduler.running:
            self.scheduler.start()
            logger.info('Session expiry scheduler started.')

    def schedule(self, user_id: str, expires_at: datetime | None) -> bool:
        if expires_at is None:
            self.cancel(user_id)
            return False
        run_date = expires_at - self.lead
        if run_date <= self.clock():
            self.cancel(user_id)
            return False

        self.scheduler.add_job(
            self._fire,
            'date',
            run_date=run_date,
            args=(user_id, expires_at),
            id=_job_id(user_id),
            name='Session expiry reminder',
            replace_existing=True,
        )
        return True

    def cancel(self, user_id: str) -> None:
        try:
            self.scheduler.remove_job(_job_id(user_id))
        except JobLookupError:
            pass

    def pending_run_date(self, user_id: str) -> datetime | None:
        job = self.scheduler.get_job(_job_id(user_id))
        return job.trigger.run_date if job else None

    def pending(self, user_id: str) -> bool:
        return self.scheduler.get_job(_job_id(user_id)) is not None

    def shutdown(self) -> None:
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            logger.info('Session expiry scheduler stopped.')

    def _fire(self, user_id: str, expires_at: datetime) -> None:
        try:
            self.on_warn(user_id, expires_at)
        except Exception:
            logger.exception('Session expiry reminder failed for %s', user_id)
