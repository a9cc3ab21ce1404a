import logging
import os
from datetime import timedelta

from apscheduler.schedulers.background import BackgroundScheduler

from smartmark.extensions import db
from smartmark.models import AuthSessionToken, ChangeEvent, utcnow

logger = logging.getLogger(__name__)

scheduler = BackgroundScheduler()


def prune_change_events(app) -> int:
    with app.app_context():
        cutoff = utcnow() - timedelta(days=app.config["CHANGE_EVENT_RETENTION_DAYS"])
        removed = ChangeEvent.query.filter(ChangeEvent.created_at < cutoff).delete(
            synchronize_session=False
        )
        db.session.commit()
        return removed


def prune_auth_sessions(app) -> int:
    with app.app_context():
        now = utcnow()
        removed = AuthSessionToken.query.filter(
            (AuthSessionToken.revoked_at.is_not(None))
            | (AuthSessionToken.refresh_expires_at < now)
        ).delete(synchronize_session=False)
        db.session.commit()
        return removed


def run_maintenance(app) -> None:
    events = prune_change_events(app)
    sessions = prune_auth_sessions(app)
    if events or sessions:
        logger.info(
            "Maintenance removed %s change events and %s auth sessions",
            events,
            sessions,
        )


def start_scheduler(app):
    if not app.config.get("SCHEDULER_ENABLED", True):
        return
    if os.environ.get("WERKZEUG_RUN_MAIN") == "false":
        return

    interval_minutes = app.config["MAINTENANCE_INTERVAL_MINUTES"]
    if not scheduler.get_jobs():
        scheduler.add_job(
            run_maintenance,
            "interval",
            minutes=interval_minutes,
            kwargs={"app": app},
            id="maintenance",
            replace_existing=True,
        )
        scheduler.start()
