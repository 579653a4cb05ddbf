"""
Player Sync Protocol
Combines session arbitration, schedule resolution and version comparison to
answer player polls, plus the heartbeat path
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

from models import db, MediaAsset, MediaType, Player, utcnow
from utils.command_utils import deliver_pending
from utils.event_log import record_player_event
from utils.schedule_utils import resolve_schedule
from utils.session_utils import arbitrate, check_duplicate
from utils.storage import safe_signed_url
from widgets import parse_widget_config

logger = logging.getLogger(__name__)

NO_PLAYLIST_MESSAGE = 'No playlist assigned'


@dataclass
class SyncResult:
    """Answer to one sync poll"""
    up_to_date: bool
    version: int
    session_token: str
    took_over: bool = False
    message: Optional[str] = None
    playlist: Optional[Dict[str, Any]] = None
    items: Optional[List[Dict[str, Any]]] = None
    commands: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self):
        data = {
            'up_to_date': self.up_to_date,
            'version': self.version,
            'session_token': self.session_token,
            'commands': self.commands
        }
        if self.message:
            data['message'] = self.message
        if not self.up_to_date:
            data['playlist'] = self.playlist
            data['items'] = self.items
        return data


def resolve_widget_config(media: MediaAsset) -> Optional[Dict[str, Any]]:
    """
    Parsed widget config with background media resolved to signed preview URLs

    Resolution is one level deep: a background that is itself a widget, or
    that no longer exists, keeps no preview_url. Malformed configs become None.
    """
    config = parse_widget_config(media.widget_config)
    if config is None:
        return None

    for background in config.backgrounds:
        bg_media = MediaAsset.query.filter_by(id=background.media_id, company_id=media.company_id).first()
        if bg_media is None or bg_media.media_type == MediaType.WIDGET:
            background.preview_url = None
        elif bg_media.media_type == MediaType.URL:
            background.preview_url = bg_media.external_url
        else:
            background.preview_url = safe_signed_url(bg_media.storage_path)

    return config.to_dict()


def build_media_payload(media: MediaAsset) -> Dict[str, Any]:
    """Wire shape of one media asset with a freshly resolved URL"""
    url = None
    config = None

    if media.media_type == MediaType.URL:
        url = media.external_url
    elif media.media_type == MediaType.WIDGET:
        config = resolve_widget_config(media)
    else:
        url = safe_signed_url(media.storage_path)

    return {
        'id': media.id,
        'name': media.name,
        'type': media.media_type.value,
        'url': url,
        'duration_seconds': media.duration_seconds,
        'size_bytes': media.size_bytes,
        'config': config
    }


def build_item_payload(item) -> Dict[str, Any]:
    return {
        'id': item.id,
        'position': item.position,
        'duration_seconds': item.effective_duration,
        'transition_type': item.transition_type.value,
        'media': build_media_payload(item.media)
    }


def sync_player(player: Player, presented_token: Optional[str], client_version: int,
                now: Optional[datetime] = None) -> SyncResult:
    """
    Answer a sync poll for an authenticated player

    Args:
        player: Player owning the presented device key
        presented_token: Session token the caller holds, if any
        client_version: Version of the playlist the player has cached (0 if none)
        now: Resolution instant, defaults to current UTC time

    Returns:
        SyncResult: up to date (version + token) or a full playlist payload
    """
    now = now or utcnow()

    token, took_over = arbitrate(player, presented_token)

    player.mark_seen(now)
    db.session.commit()

    resolved = resolve_schedule(player.company_id, player.id, player.group_id, now)

    if resolved is None:
        result = SyncResult(up_to_date=True, version=0, session_token=token,
                            took_over=took_over, message=NO_PLAYLIST_MESSAGE)
    elif not took_over and client_version >= resolved.version:
        result = SyncResult(up_to_date=True, version=resolved.version,
                            session_token=token, took_over=took_over)
    else:
        items = []
        for item in resolved.items:
            try:
                items.append(build_item_payload(item))
            except Exception as e:
                # One broken item must not cost the player the whole playlist
                logger.error(f'Skipping playlist item {item.id} for player {player.id}: {e}')
        result = SyncResult(
            up_to_date=False,
            version=resolved.version,
            session_token=token,
            took_over=took_over,
            playlist={
                'id': resolved.playlist.id,
                'name': resolved.playlist.name,
                'version': resolved.version,
                'schedule_id': resolved.schedule.id
            },
            items=items
        )

    result.commands = deliver_pending(player)

    record_player_event(player.id, 'sync_attempt', {
        'playlist_id': resolved.playlist_id if resolved else None,
        'version': result.version,
        'client_version': client_version,
        'took_over': took_over,
        'up_to_date': result.up_to_date
    })
    return result


def heartbeat(player: Player, presented_token: Optional[str], status: Optional[str] = None,
              client_version: Optional[int] = None) -> Dict[str, Any]:
    """
    Liveness report from a player

    A caller holding a stale token is told it has been displaced and nothing
    else happens: no timestamp update, no command delivery.
    """
    server_time = utcnow()

    if check_duplicate(player, presented_token):
        logger.warning(f'Duplicate session detected for player {player.id}')
        return {
            'acknowledged': True,
            'duplicate': True,
            'server_time': server_time.isoformat(),
            'commands': []
        }

    player.mark_seen(server_time)
    db.session.commit()

    commands = deliver_pending(player)

    record_player_event(player.id, 'heartbeat', {
        'status': status,
        'client_version': client_version
    })
    return {
        'acknowledged': True,
        'duplicate': False,
        'server_time': server_time.isoformat(),
        'commands': commands
    }
