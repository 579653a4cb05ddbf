"""
Admin API Routes Blueprint
JSON endpoints for dashboards: sign-in, players, remote commands, schedules and playlist items
"""
from flask import Blueprint, request, jsonify, current_app
from flask_login import login_user, logout_user, current_user
from flask_wtf.csrf import generate_csrf

from models import db, User, Player, PlayerGroup, Playlist, PlayerCommand, Schedule, utcnow
from forms import (LoginForm, PlayerCreateForm, CommandForm, ScheduleAssignForm, ScheduleEntryForm,
                   PlaylistItemForm)
from utils.command_utils import enqueue_command
from utils.event_log import get_recent_events
from utils.permissions import admin_required, content_manager_required, command_sender_required, login_required_json
from utils.playlist_utils import (replace_playlist_items, assign_schedules, PlaylistValidationError,
                                  ScheduleValidationError)

admin_bp = Blueprint('admin_api', __name__)


def _json_body():
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else None


def _company_player(company_id, player_id):
    return Player.query.filter_by(id=player_id, company_id=company_id).first()


# ============================================================================
# AUTHENTICATION ROUTES
# ============================================================================

@admin_bp.route('/csrf-token', methods=['GET'])
def csrf_token():
    """Token for the X-CSRFToken header of subsequent state-changing calls"""
    return jsonify({'csrf_token': generate_csrf()}), 200


@admin_bp.route('/login', methods=['POST'])
def login():
    """Sign in with username and password"""
    form = LoginForm.from_json(_json_body())
    if not form.validate():
        return jsonify({'error': form.first_error}), 400

    user = User.query.filter_by(username=form.username.data).first()
    if not user or not user.check_password(form.password.data):
        return jsonify({'error': 'Invalid username or password'}), 401
    if not user.is_active:
        return jsonify({'error': 'Account disabled'}), 403

    user.last_login = utcnow()
    db.session.commit()

    login_user(user, remember=form.remember.data)
    current_app.logger.info(f'User {user.username} signed in')

    return jsonify({
        'id': user.id,
        'username': user.username,
        'role': user.role.value,
        'company_id': user.company_id
    }), 200


@admin_bp.route('/logout', methods=['POST'])
@login_required_json
def logout():
    """Logout current user"""
    logout_user()
    return jsonify({'message': 'Logged out'}), 200


# ============================================================================
# PLAYER ROUTES
# ============================================================================

@admin_bp.route('/players', methods=['GET'])
@login_required_json
def list_players():
    """Heartbeat status of every player in the caller's company"""
    company_id = current_user.company_id
    players = Player.query.filter_by(company_id=company_id).order_by(Player.name).all()
    return jsonify({'players': [p.to_status_dict() for p in players]}), 200


@admin_bp.route('/players', methods=['POST'])
@admin_required
def create_player():
    """
    Create a player and mint its device key

    The plaintext key is only ever returned here.
    """
    company_id = current_user.company_id
    form = PlayerCreateForm.from_json(_json_body())
    if not form.validate():
        return jsonify({'error': form.first_error}), 400

    group_id = form.group_id.data
    if group_id is not None and PlayerGroup.query.filter_by(id=group_id, company_id=company_id).first() is None:
        return jsonify({'error': 'Group not found'}), 404

    try:
        device_key = Player.generate_device_key()
        player = Player(
            company_id=company_id,
            group_id=group_id,
            name=form.name.data.strip(),
            device_key_hash=Player.hash_device_key(device_key)
        )
        db.session.add(player)
        db.session.commit()
    except Exception as e:
        current_app.logger.error(f'Error creating player: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    current_app.logger.info(f'Player {player.id} ({player.name}) created by {current_user.username}')
    data = player.to_status_dict()
    data['device_key'] = device_key
    return jsonify(data), 201


@admin_bp.route('/players/<int:player_id>/events', methods=['GET'])
@login_required_json
def player_events(player_id):
    """Recent protocol events (sync attempts, heartbeats, command outcomes)"""
    player = _company_player(current_user.company_id, player_id)
    if player is None:
        return jsonify({'error': 'Player not found'}), 404

    limit = min(request.args.get('limit', 50, type=int), 500)
    events = get_recent_events(player.id, limit=limit, event=request.args.get('event'))
    return jsonify({'events': [{
        'id': e.id,
        'event': e.event,
        'details': e.details_dict,
        'created_at': e.created_at.isoformat()
    } for e in events]}), 200


# ============================================================================
# COMMAND ROUTES
# ============================================================================

@admin_bp.route('/commands', methods=['POST'])
@command_sender_required
def issue_command():
    """
    Queue a remote command

    Request JSON:
    {
        "player_id": 3,
        "command": "screenshot",
        "payload": {}
    }
    """
    data = _json_body()
    form = CommandForm.from_json({k: v for k, v in (data or {}).items() if k != 'payload'})
    if not form.validate():
        return jsonify({'error': form.first_error}), 400

    payload = (data or {}).get('payload')
    if payload is not None and not isinstance(payload, dict):
        return jsonify({'error': 'payload must be an object'}), 400

    player = _company_player(current_user.company_id, form.player_id.data)
    if player is None:
        return jsonify({'error': 'Player not found'}), 404

    try:
        command = enqueue_command(player, form.command.data, payload)
    except Exception as e:
        current_app.logger.error(f'Error queueing command: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    from socketio_events import broadcast_command_update
    broadcast_command_update(player, command)

    return jsonify(command.to_dict()), 201


@admin_bp.route('/players/<int:player_id>/commands', methods=['GET'])
@login_required_json
def list_commands(player_id):
    """Command history for one player, newest first"""
    player = _company_player(current_user.company_id, player_id)
    if player is None:
        return jsonify({'error': 'Player not found'}), 404

    commands = player.commands.order_by(PlayerCommand.created_at.desc(), PlayerCommand.id.desc()).limit(100).all()
    return jsonify({'commands': [c.to_dict() for c in commands]}), 200


# ============================================================================
# SCHEDULE ROUTES
# ============================================================================

@admin_bp.route('/schedules', methods=['GET'])
@login_required_json
def list_schedules():
    """Schedules of one player (?player_id=) or group (?group_id=)"""
    query = Schedule.query.filter_by(company_id=current_user.company_id)
    player_id = request.args.get('player_id', type=int)
    group_id = request.args.get('group_id', type=int)
    if player_id is not None:
        query = query.filter_by(player_id=player_id)
    elif group_id is not None:
        query = query.filter_by(group_id=group_id)
    else:
        return jsonify({'error': 'player_id or group_id is required'}), 400

    schedules = query.order_by(Schedule.priority.desc(), Schedule.id.asc()).all()
    return jsonify({'schedules': [s.to_dict() for s in schedules]}), 200


@admin_bp.route('/schedules', methods=['PUT'])
@content_manager_required
def replace_schedules():
    """
    Replace all schedules of a player or group

    Request JSON:
    {
        "player_id": 3,               # or "group_id"
        "schedules": [
            {"playlist_id": 1, "start_time": "09:00", "end_time": "17:00",
             "days_of_week": [1, 2, 3, 4, 5], "priority": 10},
            {"playlist_id": 2, "is_fallback": true}
        ]
    }
    """
    data = _json_body() or {}
    target = ScheduleAssignForm.from_json({k: data.get(k) for k in ('player_id', 'group_id')})
    if not target.validate():
        return jsonify({'error': target.first_error}), 400

    raw_entries = data.get('schedules')
    if not isinstance(raw_entries, list):
        return jsonify({'error': 'schedules must be a list'}), 400

    entries = []
    for index, raw in enumerate(raw_entries):
        if not isinstance(raw, dict):
            return jsonify({'error': f'schedules[{index}] must be an object'}), 400
        form = ScheduleEntryForm.from_json(raw)
        if not form.validate():
            return jsonify({'error': f'schedules[{index}] {form.first_error}'}), 400
        entries.append(form.to_entry())

    try:
        schedules = assign_schedules(current_user.company_id, entries,
                                     player_id=target.player_id.data, group_id=target.group_id.data)
    except ScheduleValidationError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        current_app.logger.error(f'Error assigning schedules: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    return jsonify({'schedules': [s.to_dict() for s in schedules]}), 200


# ============================================================================
# PLAYLIST ROUTES
# ============================================================================

@admin_bp.route('/playlists/<int:playlist_id>/items', methods=['PUT'])
@content_manager_required
def replace_items(playlist_id):
    """
    Replace a playlist's items; the version goes up by exactly one

    Request JSON:
    {
        "items": [
            {"media_id": 4, "duration_seconds": 8, "transition_type": "fade"},
            {"media_id": 7}
        ]
    }
    """
    playlist = Playlist.query.filter_by(id=playlist_id, company_id=current_user.company_id).first()
    if playlist is None:
        return jsonify({'error': 'Playlist not found'}), 404

    raw_items = (_json_body() or {}).get('items')
    if not isinstance(raw_items, list):
        return jsonify({'error': 'items must be a list'}), 400

    entries = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            return jsonify({'error': f'items[{index}] must be an object'}), 400
        form = PlaylistItemForm.from_json(raw)
        if not form.validate():
            return jsonify({'error': f'items[{index}] {form.first_error}'}), 400
        entries.append(form.to_entry())

    try:
        replace_playlist_items(playlist, entries)
    except PlaylistValidationError as e:
        db.session.rollback()
        return jsonify({'error': str(e)}), 400
    except Exception as e:
        current_app.logger.error(f'Error updating playlist {playlist_id}: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    return jsonify({
        'id': playlist.id,
        'name': playlist.name,
        'version': playlist.version,
        'item_count': len(playlist.items)
    }), 200


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@admin_bp.errorhandler(404)
def admin_not_found(error):
    return jsonify({'error': 'Endpoint not found'}), 404


@admin_bp.errorhandler(500)
def admin_internal_error(error):
    db.session.rollback()
    return jsonify({'error': 'Internal server error'}), 500
