"""
Schedule Resolution
Selects the single schedule (and playlist) that applies to a player at a given instant
"""
from dataclasses import dataclass
from datetime import datetime, time
from typing import Iterable, List, Optional

from sqlalchemy import or_

from models import Schedule, Playlist, PlaylistItem


@dataclass
class ResolvedSchedule:
    """Winning schedule paired with its playlist's current version and ordered items"""
    schedule: Schedule
    playlist: Playlist
    items: List[PlaylistItem]

    @property
    def playlist_id(self):
        return self.playlist.id

    @property
    def version(self):
        return self.playlist.version


def weekday_index(check_datetime: datetime) -> int:
    """Day of week with 0 = Sunday .. 6 = Saturday"""
    return check_datetime.isoweekday() % 7


def _time_of_day(check_datetime: datetime) -> time:
    # Windows are compared at HH:MM:SS precision
    return check_datetime.time().replace(microsecond=0)


def schedule_matches(schedule: Schedule, check_datetime: datetime) -> bool:
    """
    Check whether a non-fallback schedule's window contains an instant

    Comparisons are inclusive. A window whose end is earlier than its start
    (crossing midnight) never matches.
    """
    days = schedule.days_list
    if days is not None and weekday_index(check_datetime) not in days:
        return False

    check_date = check_datetime.date()
    if schedule.start_date and check_date < schedule.start_date:
        return False
    if schedule.end_date and check_date > schedule.end_date:
        return False

    current_time = _time_of_day(check_datetime)
    if schedule.start_time and current_time < schedule.start_time:
        return False
    if schedule.end_time and current_time > schedule.end_time:
        return False

    return True


def order_candidates(candidates: Iterable[Schedule]) -> List[Schedule]:
    """Priority descending; equal priorities fall back to creation order (id)"""
    return sorted(candidates, key=lambda s: (-(s.priority or 0), s.id or 0))


def select_schedule(candidates: Iterable[Schedule], check_datetime: datetime) -> Optional[Schedule]:
    """
    Pick the applicable schedule from a candidate set

    The first matching non-fallback schedule in priority order wins. When none
    match, the first fallback in the same order is returned regardless of its
    own day/time restrictions.

    Args:
        candidates: Schedules targeting the player or its group
        check_datetime: Instant to resolve for

    Returns:
        Winning Schedule or None
    """
    ordered = order_candidates(candidates)

    for schedule in ordered:
        if not schedule.is_fallback and schedule_matches(schedule, check_datetime):
            return schedule

    for schedule in ordered:
        if schedule.is_fallback:
            return schedule

    return None


def get_candidate_schedules(company_id: int, player_id: int, group_id: Optional[int] = None) -> List[Schedule]:
    """Active schedules of a company targeting the player or (if any) its group"""
    target_filter = Schedule.player_id == player_id
    if group_id is not None:
        target_filter = or_(target_filter, Schedule.group_id == group_id)

    return Schedule.query.filter(
        Schedule.company_id == company_id,
        Schedule.is_active == True,  # noqa: E712
        target_filter
    ).all()


def resolve_schedule(company_id: int, player_id: int, group_id: Optional[int],
                     check_datetime: datetime) -> Optional[ResolvedSchedule]:
    """
    Resolve the playlist a player should be showing at an instant

    Args:
        company_id: Tenant the player belongs to
        player_id: Player being resolved
        group_id: Player's group, if any
        check_datetime: Instant to resolve for (server UTC)

    Returns:
        ResolvedSchedule, or None when nothing is assigned or the winning
        schedule's playlist no longer exists
    """
    winner = select_schedule(get_candidate_schedules(company_id, player_id, group_id), check_datetime)
    if winner is None:
        return None

    playlist = Playlist.query.filter_by(id=winner.playlist_id, company_id=company_id).first()
    if playlist is None:
        return None

    return ResolvedSchedule(schedule=winner, playlist=playlist, items=playlist.ordered_items)
