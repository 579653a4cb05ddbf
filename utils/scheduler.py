"""
Scheduled Tasks Module
Background maintenance: offline detection sweep and player log retention
"""
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from datetime import timedelta
import logging

logger = logging.getLogger(__name__)
scheduler = None


def mark_offline_players(app):
    """
    Flip players whose last heartbeat is too old to offline

    Returns:
        list: Players that changed status
    """
    from models import db, Player, utcnow

    cutoff = utcnow() - timedelta(minutes=app.config['PLAYER_OFFLINE_MINUTES'])
    stale = Player.query.filter(
        Player.status == 'online',
        (Player.last_heartbeat == None) | (Player.last_heartbeat < cutoff)  # noqa: E711
    ).all()

    for player in stale:
        player.status = 'offline'
    if stale:
        db.session.commit()
        logger.info(f"Marked {len(stale)} player(s) offline")
    return stale


def cleanup_player_logs(app):
    """
    Delete audit entries older than the retention window

    Returns:
        int: Number of deleted entries
    """
    from models import db, PlayerLog, utcnow

    cutoff = utcnow() - timedelta(days=app.config['PLAYER_LOG_RETENTION_DAYS'])
    deleted = PlayerLog.query.filter(PlayerLog.created_at < cutoff).delete(synchronize_session=False)
    db.session.commit()
    return deleted


def scheduled_offline_sweep_task(app):
    """
    Scheduled task to detect players that stopped polling
    Runs every OFFLINE_SWEEP_SECONDS
    """
    with app.app_context():
        from models import db
        from socketio_events import broadcast_player_status

        try:
            for player in mark_offline_players(app):
                broadcast_player_status(player)
        except Exception as e:
            logger.error(f"Error in offline sweep task: {e}")
            db.session.rollback()


def scheduled_log_cleanup_task(app):
    """
    Scheduled task to enforce player log retention
    Runs daily at configured hour (default 3 AM)
    """
    with app.app_context():
        from models import db

        try:
            deleted = cleanup_player_logs(app)
            logger.info(f"Cleaned up {deleted} old player log entries")
        except Exception as e:
            logger.error(f"Unexpected error in log cleanup: {e}")
            db.session.rollback()


def init_scheduler(app):
    """
    Initialize and start the background scheduler

    Args:
        app: Flask application instance
    """
    global scheduler

    if scheduler is not None:
        logger.warning("Scheduler already initialized")
        return

    try:
        scheduler = BackgroundScheduler()

        sweep_seconds = app.config.get('OFFLINE_SWEEP_SECONDS', 60)
        scheduler.add_job(
            func=scheduled_offline_sweep_task,
            trigger=IntervalTrigger(seconds=sweep_seconds),
            args=[app],
            id='offline_sweep',
            name='Player offline detection',
            replace_existing=True
        )
        logger.info(f"Offline sweep started - Every {sweep_seconds}s")

        cleanup_hour = app.config.get('LOG_CLEANUP_HOUR', 3)
        scheduler.add_job(
            func=scheduled_log_cleanup_task,
            trigger=CronTrigger(hour=cleanup_hour, minute=0),
            args=[app],
            id='player_log_cleanup',
            name='Player log retention',
            replace_existing=True
        )
        logger.info(f"Log cleanup scheduled - Daily at {cleanup_hour}:00")

        scheduler.start()
        logger.info("Scheduler started successfully")

    except Exception as e:
        logger.error(f"Failed to initialize scheduler: {e}")


def shutdown_scheduler():
    """Shutdown the scheduler gracefully"""
    global scheduler

    if scheduler is not None:
        try:
            scheduler.shutdown(wait=False)
            logger.info("Scheduler shut down")
        except Exception as e:
            logger.error(f"Error shutting down scheduler: {e}")
        scheduler = None
