"""
Command Channel
Queue of out-of-band player actions: enqueue, deliver on poll, acknowledge
"""
import json
import logging
from typing import List, Optional

from models import db, Player, PlayerCommand, CommandStatus, CommandName, utcnow
from utils.event_log import record_player_event

logger = logging.getLogger(__name__)

SUCCESS_OUTCOME = 'success'


class CommandNotFound(Exception):
    """Command id unknown or owned by another player"""
    pass


class CommandStateError(Exception):
    """Command has already reached a terminal state"""
    pass


def enqueue_command(player: Player, command_name: str, payload: Optional[dict] = None) -> PlayerCommand:
    """
    Queue a command for a player; always starts pending

    Unknown command names are accepted so new player builds can add actions
    without a server change.
    """
    known = {c.value for c in CommandName}
    if command_name not in known:
        logger.info(f'Queueing non-standard command {command_name} for player {player.id}')

    command = PlayerCommand(
        player_id=player.id,
        command=command_name,
        payload=json.dumps(payload) if payload else None,
        status=CommandStatus.PENDING
    )
    db.session.add(command)
    db.session.commit()

    logger.info(f'Command {command.id} ({command_name}) queued for player {player.id}')
    return command


def get_pending_commands(player_id: int) -> List[PlayerCommand]:
    return PlayerCommand.query.filter_by(
        player_id=player_id,
        status=CommandStatus.PENDING
    ).order_by(PlayerCommand.created_at.asc(), PlayerCommand.id.asc()).all()


def deliver_pending(player: Player) -> List[dict]:
    """
    Attach pending commands to a poll response, flipping them to sent

    A command the player never acknowledges stays sent; there is no redelivery.

    Returns:
        list: Delivery dicts ({id, command, payload})
    """
    commands = get_pending_commands(player.id)
    if not commands:
        return []

    now = utcnow()
    for command in commands:
        command.status = CommandStatus.SENT
        command.sent_at = now
    db.session.commit()

    logger.info(f'Delivered {len(commands)} command(s) to player {player.id}')
    return [command.to_delivery_dict() for command in commands]


def acknowledge_command(player: Player, command_id: int, outcome: str, result: Optional[dict] = None) -> PlayerCommand:
    """
    Record the player's report for a delivered command

    Args:
        player: Calling (authenticated) player
        command_id: Command being acknowledged
        outcome: 'success' marks the command executed, anything else failed
        result: Opaque result payload from the player

    Raises:
        CommandNotFound: id unknown or belongs to another player
        CommandStateError: command already executed or failed
    """
    command = PlayerCommand.query.filter_by(id=command_id, player_id=player.id).first()
    if command is None:
        raise CommandNotFound(f'Command {command_id} not found')

    if command.is_terminal:
        raise CommandStateError(f'Command {command_id} already {command.status.value}')

    succeeded = outcome == SUCCESS_OUTCOME
    command.status = CommandStatus.EXECUTED if succeeded else CommandStatus.FAILED
    command.executed_at = utcnow()
    command.result = json.dumps(result) if result is not None else None

    if succeeded and command.command == CommandName.SCREENSHOT.value and result:
        screenshot_url = result.get('screenshot_url')
        if screenshot_url:
            player.last_screenshot_url = screenshot_url

    db.session.commit()

    record_player_event(player.id, f'command_{command.command}_{"success" if succeeded else "failed"}', {
        'command_id': command.id,
        'outcome': outcome
    })
    return command
