"""
Playlist and Schedule Lifecycle
Item replacement with version bumps, and schedule assignment for players/groups
"""
import logging
from typing import List, Optional

from models import (db, Playlist, PlaylistItem, MediaAsset, MediaType, TransitionType,
                    Schedule, Player, PlayerGroup)

logger = logging.getLogger(__name__)


class PlaylistValidationError(Exception):
    """Rejected playlist item set"""
    pass


class ScheduleValidationError(Exception):
    """Rejected schedule assignment"""
    pass


def replace_playlist_items(playlist: Playlist, entries: List[dict]) -> Playlist:
    """
    Replace a playlist's items and bump its version by exactly one

    Args:
        playlist: Target playlist (already company-checked by the caller)
        entries: Dicts with media_id, optional position, duration_seconds, transition_type

    Raises:
        PlaylistValidationError: unknown media, bad transition, or a video
            item longer than the video itself
    """
    new_items = []
    for index, entry in enumerate(entries):
        media = MediaAsset.query.filter_by(id=entry.get('media_id'), company_id=playlist.company_id).first()
        if media is None:
            raise PlaylistValidationError(f'Media {entry.get("media_id")} not found')

        duration = entry.get('duration_seconds')
        if duration is not None:
            if duration <= 0:
                raise PlaylistValidationError(f'Item {index}: duration must be positive')
            if media.media_type == MediaType.VIDEO and duration > media.duration_seconds:
                raise PlaylistValidationError(
                    f'Item {index}: duration {duration}s exceeds video length {media.duration_seconds}s'
                )

        try:
            transition = TransitionType(entry.get('transition_type') or TransitionType.NONE.value)
        except ValueError:
            raise PlaylistValidationError(f'Item {index}: unknown transition {entry.get("transition_type")}')

        position = entry.get('position')
        new_items.append(PlaylistItem(
            media_id=media.id,
            position=index if position is None else position,
            duration_seconds=duration,
            transition_type=transition
        ))

    playlist.items = new_items
    version = playlist.bump_version()
    db.session.commit()

    logger.info(f'Playlist {playlist.id} now has {len(new_items)} item(s), version {version}')
    return playlist


def _build_schedule(company_id: int, entry: dict, player_id: Optional[int], group_id: Optional[int]) -> Schedule:
    start_time = entry.get('start_time')
    end_time = entry.get('end_time')
    if start_time and end_time and end_time < start_time:
        raise ScheduleValidationError('end_time must not be earlier than start_time')

    start_date = entry.get('start_date')
    end_date = entry.get('end_date')
    if start_date and end_date and end_date < start_date:
        raise ScheduleValidationError('end_date must not be earlier than start_date')

    days = entry.get('days_of_week')
    if days is not None:
        if not days:
            raise ScheduleValidationError('days_of_week needs at least one day')
        if any(d < 0 or d > 6 for d in days):
            raise ScheduleValidationError('days_of_week values must be between 0 (Sunday) and 6 (Saturday)')
        days = ','.join(str(d) for d in sorted(set(days)))

    playlist = Playlist.query.filter_by(id=entry.get('playlist_id'), company_id=company_id).first()
    if playlist is None:
        raise ScheduleValidationError(f'Playlist {entry.get("playlist_id")} not found')

    return Schedule(
        company_id=company_id,
        playlist_id=playlist.id,
        player_id=player_id,
        group_id=group_id,
        start_time=start_time,
        end_time=end_time,
        days_of_week=days,
        start_date=start_date,
        end_date=end_date,
        priority=entry.get('priority') or 0,
        is_fallback=bool(entry.get('is_fallback'))
    )


def assign_schedules(company_id: int, entries: List[dict], player_id: Optional[int] = None,
                     group_id: Optional[int] = None) -> List[Schedule]:
    """
    Replace every schedule of one player or one group

    Entries carry playlist_id, start_time/end_time (datetime.time), days_of_week
    (list of ints, 0 = Sunday), start_date/end_date (datetime.date), priority
    and is_fallback.

    Raises:
        ScheduleValidationError: bad target, bad window or more than one fallback
    """
    if (player_id is None) == (group_id is None):
        raise ScheduleValidationError('Exactly one of player_id or group_id is required')

    if player_id is not None:
        if Player.query.filter_by(id=player_id, company_id=company_id).first() is None:
            raise ScheduleValidationError(f'Player {player_id} not found')
    elif PlayerGroup.query.filter_by(id=group_id, company_id=company_id).first() is None:
        raise ScheduleValidationError(f'Group {group_id} not found')

    if sum(1 for entry in entries if entry.get('is_fallback')) > 1:
        raise ScheduleValidationError('At most one fallback schedule per target')

    schedules = [_build_schedule(company_id, entry, player_id, group_id) for entry in entries]

    # Bulk delete is emitted immediately, so the fallback unique index never
    # sees the old and new rows together
    target = {'player_id': player_id} if player_id is not None else {'group_id': group_id}
    Schedule.query.filter_by(company_id=company_id, **target).delete()
    db.session.add_all(schedules)
    db.session.commit()

    logger.info(f'Assigned {len(schedules)} schedule(s) to {"player" if player_id else "group"} '
                f'{player_id or group_id}')
    return schedules
