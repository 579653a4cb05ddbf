"""
Session Arbitration
Keeps one active connection per device key using an opaque session token
"""
import logging
import secrets
from typing import Optional, Tuple

from models import db, Player

logger = logging.getLogger(__name__)

# Bounded retries when another request for the same device key wins the write
MAX_ISSUE_ATTEMPTS = 3


def generate_session_token():
    return secrets.token_urlsafe(24)


def _issue_token(player: Player) -> str:
    """
    Store a fresh token using the generation counter as a compare-and-swap guard

    Two requests racing on the same device key cannot both believe they hold
    the session: the loser's UPDATE matches zero rows.
    """
    token = generate_session_token()
    generation = player.session_generation or 0

    updated = Player.query.filter(
        Player.id == player.id,
        Player.session_generation == generation
    ).update({
        Player.session_token: token,
        Player.session_generation: generation + 1
    }, synchronize_session=False)

    if updated != 1:
        return None

    db.session.commit()
    db.session.refresh(player)
    return token


def arbitrate(player: Player, presented_token: Optional[str]) -> Tuple[str, bool]:
    """
    Sync-path session check

    Args:
        player: Authenticated player
        presented_token: Token the caller sent (may be None)

    Returns:
        (active_token, took_over) - took_over is True whenever a new token was issued
    """
    for attempt in range(MAX_ISSUE_ATTEMPTS):
        if presented_token and player.session_token and presented_token == player.session_token:
            return player.session_token, False

        token = _issue_token(player)
        if token is not None:
            if player.session_token is not None and presented_token:
                logger.info(f'Session takeover for player {player.id}')
            return token, True

        # Lost the race: reload and decide again against the winner's token
        logger.warning(f'Concurrent session issue for player {player.id} (attempt {attempt + 1})')
        db.session.rollback()
        db.session.refresh(player)

    # Still losing after every retry: the latest winner holds the session, hand its token back
    logger.warning(f'Giving player {player.id} the session token of the concurrent winner')
    return player.session_token, True


def check_duplicate(player: Player, presented_token: Optional[str]) -> bool:
    """
    Heartbeat-path check, read-only

    True when the player already holds a session and the caller presents a
    different, non-empty token.
    """
    return bool(player.session_token and presented_token and presented_token != player.session_token)
