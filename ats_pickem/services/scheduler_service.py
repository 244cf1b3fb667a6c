"""
ATS Pick'em Background Scheduler Service

Runs the recompute worker and the feed poller with APScheduler:

* the recompute queue is drained on a short interval;
* the game feed is polled when GAME_FEED_URL is configured;
* a nightly consistency check compares stored leaderboards with a fresh
  computation and queues rebuilds for weeks that drifted.
"""

import atexit
import logging
from datetime import datetime, timezone

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger

from ats_pickem import db
from ats_pickem.models import Season
from ats_pickem.services import recompute
from ats_pickem.services.game_feed import GameFeedClient, GameFeedError
from ats_pickem.utils.performance import PerformanceMonitor, get_timing_summary

logger = logging.getLogger(__name__)


class SchedulerService:
    """Manages the background worker jobs"""

    def __init__(self, app=None):
        self.scheduler = None
        self.app = app
        self.feed_client = None
        self.is_running = False
        self.run_stats = {
            "last_run": None,
            "total_runs": 0,
            "successful_runs": 0,
            "failed_runs": 0,
            "last_error": None,
            "jobs_processed": 0,
            "jobs_failed": 0,
            "last_check_seconds": None,
        }

        if app:
            self.init_app(app)

    def init_app(self, app):
        """Initialize scheduler with Flask app"""
        self.app = app
        self.scheduler = BackgroundScheduler(daemon=True, timezone="UTC")

        if app.config.get("GAME_FEED_URL"):
            with app.app_context():
                self.feed_client = GameFeedClient()

        # Register shutdown
        atexit.register(self.shutdown)

        # Start scheduler if enabled
        if app.config.get("SCHEDULER_ENABLED", True):
            self.start()

    def start(self):
        """Start the background scheduler"""
        if self.is_running:
            return

        try:
            # Clear any existing jobs
            self.scheduler.remove_all_jobs()

            # Add scheduled jobs
            self._add_core_jobs()

            # Start scheduler
            self.scheduler.start()
            self.is_running = True

            logger.info("Scheduler started successfully")

        except Exception as e:
            logger.error(f"Failed to start scheduler: {e}")
            raise

    def stop(self):
        """Stop the background scheduler"""
        if not self.is_running:
            return

        try:
            self.scheduler.shutdown(wait=False)
            self.is_running = False
            logger.info("Scheduler stopped")

        except Exception as e:
            logger.error(f"Error stopping scheduler: {e}")

    def shutdown(self):
        """Graceful shutdown"""
        self.stop()

    def _add_core_jobs(self):
        """Add core scheduled jobs"""
        config = self.app.config

        self.scheduler.add_job(
            func=self._drain_queue,
            trigger=IntervalTrigger(seconds=config.get("RECOMPUTE_INTERVAL_SECONDS", 30)),
            id="drain_recompute_queue",
            name="Drain Recompute Queue",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=30,
        )

        if self.feed_client:
            self.scheduler.add_job(
                func=self._poll_game_feed,
                trigger=IntervalTrigger(seconds=config.get("GAME_FEED_INTERVAL_SECONDS", 120)),
                id="poll_game_feed",
                name="Poll Game Feed",
                max_instances=1,
                coalesce=True,
                misfire_grace_time=60,
            )

        # Nightly consistency check
        self.scheduler.add_job(
            func=self._consistency_check,
            trigger=CronTrigger(hour=3, minute=0),
            id="consistency_check",
            name="Nightly Leaderboard Consistency Check",
            max_instances=1,
            coalesce=True,
            misfire_grace_time=3600,
        )

    def _drain_queue(self):
        """Process pending recompute jobs"""
        with self.app.app_context():
            try:
                result = recompute.drain()
                self.run_stats["jobs_processed"] += result["processed"]
                self.run_stats["jobs_failed"] += result["failed"]
                self._update_stats(True)

            except Exception as e:
                db.session.rollback()
                self._update_stats(False, e)
                logger.error(f"Error draining recompute queue: {e}", exc_info=True)

    def _poll_game_feed(self):
        """Apply the latest feed data for the active season"""
        with self.app.app_context():
            try:
                current_season = Season.get_current_season()
                if not current_season:
                    return

                stats = self.feed_client.sync(season=current_season.year)
                self._update_stats(True)

                # Grade newly completed games without waiting for the next drain
                if stats["graded"]:
                    recompute.drain()

            except GameFeedError as e:
                self._update_stats(False, e)
                logger.warning(f"Game feed unavailable: {e}")
            except Exception as e:
                db.session.rollback()
                self._update_stats(False, e)
                logger.error(f"Error polling game feed: {e}", exc_info=True)

    def _consistency_check(self):
        """Verify the active season and queue rebuilds where it drifted"""
        with self.app.app_context():
            try:
                current_season = Season.get_current_season()
                if not current_season:
                    return

                with PerformanceMonitor(f"consistency check {current_season.year}") as monitor:
                    drifted = recompute.check_season_consistency(current_season.year)
                self.run_stats["last_check_seconds"] = round(monitor.duration, 3)

                if drifted:
                    logger.warning(
                        f"Queued rebuilds for {current_season.year} weeks {drifted}"
                    )
                else:
                    logger.info(f"Leaderboards for {current_season.year} are consistent")
                self._update_stats(True)

            except Exception as e:
                db.session.rollback()
                self._update_stats(False, e)
                logger.error(f"Error in consistency check: {e}", exc_info=True)

    def _update_stats(self, success, error=None):
        """Update run statistics"""
        self.run_stats["last_run"] = datetime.now(timezone.utc)
        self.run_stats["total_runs"] += 1

        if success:
            self.run_stats["successful_runs"] += 1
            self.run_stats["last_error"] = None
        else:
            self.run_stats["failed_runs"] += 1
            self.run_stats["last_error"] = str(error) if error else None

    def get_status(self):
        """Get scheduler status information"""
        jobs = []
        if self.scheduler:
            for job in self.scheduler.get_jobs():
                next_run = job.next_run_time
                jobs.append(
                    {
                        "id": job.id,
                        "name": job.name,
                        "next_run": next_run.isoformat() if next_run else None,
                        "trigger": str(job.trigger),
                    }
                )

        status = {
            "is_running": self.is_running,
            "jobs": jobs,
            "stats": self.run_stats,
            "timings": get_timing_summary(),
        }
        if self.feed_client:
            status["feed"] = self.feed_client.get_rate_limit_status()
        return status

    def force_run(self, job_type="drain"):
        """Manually trigger a job"""
        runners = {
            "drain": self._drain_queue,
            "feed": self._poll_game_feed,
            "consistency": self._consistency_check,
        }
        if job_type not in runners:
            return False, f"Unknown job type: {job_type}"
        if job_type == "feed" and not self.feed_client:
            return False, "GAME_FEED_URL is not configured"

        runners[job_type]()
        if self.run_stats["last_error"]:
            return False, f"Manual {job_type} run failed: {self.run_stats['last_error']}"
        return True, f"Manual {job_type} run completed"

    def pause_job(self, job_id):
        """Pause a specific job"""
        try:
            self.scheduler.pause_job(job_id)
            return True, f"Job {job_id} paused"
        except Exception as e:
            return False, f"Failed to pause job: {e}"

    def resume_job(self, job_id):
        """Resume a specific job"""
        try:
            self.scheduler.resume_job(job_id)
            return True, f"Job {job_id} resumed"
        except Exception as e:
            return False, f"Failed to resume job: {e}"


# Global scheduler instance
scheduler_service = SchedulerService()
