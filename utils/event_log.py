"""
Player Event Logging
Best-effort audit trail for sync, heartbeat and command events
"""
import json
import logging

from models import db, PlayerLog

logger = logging.getLogger(__name__)


def record_player_event(player_id, event, details=None):
    """
    Append an entry to the player audit log

    Runs after the primary work has been committed and owns its own commit,
    so a failure here can only lose the log entry, never the response.

    Args:
        player_id (int): Player the event belongs to
        event (str): Event name (e.g. 'sync_attempt', 'heartbeat', 'command_reboot_success')
        details (dict): Additional details (JSON encoded)

    Returns:
        bool: True if the entry was written
    """
    try:
        entry = PlayerLog(
            player_id=player_id,
            event=event,
            details=json.dumps(details, default=str) if details else None
        )
        db.session.add(entry)
        db.session.commit()
        return True
    except Exception as e:
        # Don't fail the main operation if logging fails
        logger.error(f'Error logging player event {event} for player {player_id}: {e}')
        db.session.rollback()
        return False


def get_recent_events(player_id, limit=50, event=None):
    """Most recent audit entries for a player, newest first"""
    query = PlayerLog.query.filter_by(player_id=player_id)
    if event:
        query = query.filter_by(event=event)
    return query.order_by(PlayerLog.created_at.desc(), PlayerLog.id.desc()).limit(limit).all()
