from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone

from app.services.session_expiry_service import SessionExpiryScheduler

from marketplace_fixtures import paused_scheduler

NOW = datetime(2026, 5, 1, 12, 0, tzinfo=timezone.utc)


class SessionExpirySchedulerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.warnings: list[tuple[str, datetime]] = []
        self.backend = paused_scheduler()
        self.scheduler = SessionExpiryScheduler(
            lead=timedelta(minutes=10),
            on_warn=lambda user_id, expires_at: self.warnings.append((user_id, expires_at)),
            scheduler=self.backend,
            clock=lambda: NOW,
        )
        self.addCleanup(self.scheduler.shutdown)

    def test_reminder_fires_lead_before_expiry(self) -> None:
        expires_at = NOW + timedelta(hours=1)
        self.assertTrue(self.scheduler.schedule('u1', expires_at))
        self.assertEqual(self.scheduler.pending_run_date('u1'), NOW + timedelta(minutes=50))

        job = self.backend.get_job('session-expiry:u1')
        job.func(*job.args)
        self.assertEqual(self.warnings, [('u1', expires_at)])

    def test_unknown_or_imminent_expiry_schedules_nothing(self) -> None:
        self.assertFalse(self.scheduler.schedule('u1', None))
        self.assertFalse(self.scheduler.schedule('u1', NOW + timedelta(minutes=5)))
        self.assertEqual(self.backend.get_jobs(), [])
        self.assertFalse(self.scheduler.pending('u1'))

    def test_imminent_expiry_drops_earlier_reminder(self) -> None:
        self.scheduler.schedule('u1', NOW + timedelta(hours=1))
        self.assertFalse(self.scheduler.schedule('u1', NOW + timedelta(minutes=5)))
        self.assertFalse(self.scheduler.pending('u1'))

    def test_relogin_replaces_pending_reminder(self) -> None:
        self.scheduler.schedule('u1', NOW + timedelta(hours=1))
        self.scheduler.schedule('u1', NOW + timedelta(hours=2))

        self.assertEqual(len(self.backend.get_jobs()), 1)
        self.assertEqual(self.scheduler.pending_run_date('u1'), NOW + timedelta(minutes=110))

    def test_cancel_removes_only_that_user(self) -> None:
        self.scheduler.schedule('u1', NOW + timedelta(hours=1))
        self.scheduler.schedule('u2', NOW + timedelta(hours=1))
        self.scheduler.cancel('u1')
        self.scheduler.cancel('u1')

        self.assertFalse(self.scheduler.pending('u1'))
        self.assertTrue(self.scheduler.pending('u2'))

    def test_shutdown_stops_the_scheduler(self) -> None:
        self.scheduler.schedule('u1', NOW + timedelta(hours=1))
        self.scheduler.shutdown()
        self.assertFalse(self.backend.running)

    def test_callback_errors_are_logged(self) -> None:
        def explode(user_id, expires_at):
            raise RuntimeError('notification store down')

        scheduler = SessionExpiryScheduler(
            lead=timedelta(minutes=10), on_warn=explode, scheduler=paused_scheduler(), clock=lambda: NOW
        )
        self.addCleanup(scheduler.shutdown)
        scheduler.schedule('u1', NOW + timedelta(hours=1))
        job = scheduler.scheduler.get_job('session-expiry:u1')
        with self.assertLogs('app.services.session_expiry_service', level='ERROR'):
            job.func(*job.args)


if __name__ == '__main__':
    unittest.main()
