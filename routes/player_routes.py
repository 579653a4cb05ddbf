"""
Player API Routes Blueprint
Endpoints signage players use to sync playlists, report liveness and answer commands
"""
import time
import logging
from datetime import datetime, timezone
from functools import wraps
from flask import Blueprint, request, jsonify, current_app, send_file

from models import db, Player, MediaAsset, PlaybackLog, utcnow
from utils.command_utils import acknowledge_command, CommandNotFound, CommandStateError
from utils.storage import verify_signed_token, resolve_media_file, save_screenshot, safe_signed_url, SigningError
from utils.sync_utils import sync_player, heartbeat

player_bp = Blueprint('player_api', __name__)

# Signed downloads: the signature authorizes them and they are not rate limited
media_bp = Blueprint('player_media', __name__)

# Setup API logger
api_logger = logging.getLogger('api')

DEVICE_KEY_HEADER = 'X-Device-Key'
SESSION_TOKEN_HEADER = 'X-Session-Token'


# ============================================================================
# AUTHENTICATION DECORATOR
# ============================================================================

def require_device_key(f):
    """Decorator to require device key authentication"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        device_key = request.headers.get(DEVICE_KEY_HEADER)

        if not device_key:
            log_api_request(None, 401)
            return jsonify({'error': 'Unauthorized'}), 401

        player = Player.find_by_device_key(device_key)
        if not player:
            # Unknown and revoked keys look the same to the caller
            current_app.logger.warning(f'Invalid device key attempt from {request.remote_addr}')
            log_api_request(None, 401)
            return jsonify({'error': 'Unauthorized'}), 401

        # Store player in request context
        request.player = player  # type: ignore

        return f(*args, **kwargs)

    return decorated_function


def device_rate_key():
    """Rate limit players per device key rather than per NAT address"""
    return request.headers.get(DEVICE_KEY_HEADER) or request.remote_addr or 'anonymous'


def log_api_request(player_id, status_code, start_time=None):
    """Log a player API request to the api log file"""
    response_time = f' {(time.time() - start_time) * 1000:.1f}ms' if start_time else ''
    api_logger.info(f'{request.method} {request.path} - Player:{player_id} '
                    f'IP:{request.remote_addr} Status:{status_code}{response_time}')


def presented_session_token(data):
    return request.headers.get(SESSION_TOKEN_HEADER) or data.get('session_token') or None


def _parse_int(value, default=0):
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def _parse_timestamp(value):
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


# ============================================================================
# SYNC
# ============================================================================

@player_bp.route('/sync', methods=['POST'])
@require_device_key
def sync():
    """
    Resolve the playlist currently scheduled for the calling player

    Request JSON:
    {
        "session_token": "optional, also accepted as X-Session-Token",
        "client_version": 3
    }

    Response JSON (up to date):
    {
        "up_to_date": true,
        "version": 3,
        "session_token": "...",
        "commands": []
    }

    Response JSON (full payload): adds "playlist" and "items"
    """
    start_time = time.time()

    try:
        player = request.player  # type: ignore
        data = request.get_json(silent=True) or {}

        result = sync_player(
            player,
            presented_session_token(data),
            _parse_int(data.get('client_version'), 0)
        )

        from socketio_events import broadcast_player_status
        broadcast_player_status(player)

        log_api_request(player.id, 200, start_time)
        return jsonify(result.to_dict()), 200

    except Exception as e:
        current_app.logger.error(f'Error processing sync: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# HEARTBEAT
# ============================================================================

@player_bp.route('/heartbeat', methods=['POST'])
@require_device_key
def device_heartbeat():
    """
    Receive heartbeat from player

    Request JSON:
    {
        "session_token": "...",
        "status": "playing",
        "client_version": 3
    }

    Response JSON:
    {
        "acknowledged": true,
        "duplicate": false,
        "server_time": "2025-10-31T10:00:05",
        "commands": [{"id": 1, "command": "reboot", "payload": {}}]
    }
    """
    start_time = time.time()

    try:
        player = request.player  # type: ignore
        data = request.get_json(silent=True) or {}

        response = heartbeat(
            player,
            presented_session_token(data),
            status=data.get('status'),
            client_version=_parse_int(data.get('client_version'), None)
        )

        if not response['duplicate']:
            from socketio_events import broadcast_player_status
            broadcast_player_status(player)

        log_api_request(player.id, 200, start_time)
        return jsonify(response), 200

    except Exception as e:
        current_app.logger.error(f'Error processing heartbeat: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500


# ============================================================================
# COMMANDS
# ============================================================================

@player_bp.route('/commands/acknowledge', methods=['POST'])
@require_device_key
def acknowledge():
    """
    Report the outcome of a delivered command

    Request JSON:
    {
        "command_id": 12,
        "outcome": "success",   # anything else marks the command failed
        "result": {"screenshot_url": "..."}
    }
    """
    start_time = time.time()
    player = request.player  # type: ignore
    data = request.get_json(silent=True) or {}

    command_id = _parse_int(data.get('command_id'), None)
    outcome = data.get('outcome')
    result = data.get('result')

    if command_id is None or not outcome:
        return jsonify({'error': 'command_id and outcome are required'}), 400
    if result is not None and not isinstance(result, dict):
        return jsonify({'error': 'result must be an object'}), 400

    try:
        command = acknowledge_command(player, command_id, outcome, result)
    except CommandNotFound:
        log_api_request(player.id, 404, start_time)
        return jsonify({'error': 'Command not found'}), 404
    except CommandStateError as e:
        log_api_request(player.id, 409, start_time)
        return jsonify({'error': str(e)}), 409
    except Exception as e:
        current_app.logger.error(f'Error acknowledging command: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    from socketio_events import broadcast_command_update
    broadcast_command_update(player, command)

    log_api_request(player.id, 200, start_time)
    return jsonify({'message': 'Command acknowledged', 'status': command.status.value}), 200


@player_bp.route('/screenshot', methods=['POST'])
@require_device_key
def upload_screenshot():
    """
    Upload a screenshot (multipart field "file"); the returned URL goes into
    the screenshot command's acknowledgement result
    """
    start_time = time.time()
    player = request.player  # type: ignore

    upload = request.files.get('file')
    if upload is None or not upload.filename:
        return jsonify({'error': 'No file provided'}), 400

    try:
        storage_path = save_screenshot(player.id, upload)
    except Exception as e:
        current_app.logger.error(f'Error saving screenshot for player {player.id}: {e}')
        return jsonify({'error': 'Could not store screenshot'}), 500

    log_api_request(player.id, 201, start_time)
    return jsonify({
        'storage_path': storage_path,
        'screenshot_url': safe_signed_url(storage_path)
    }), 201


# ============================================================================
# PLAYBACK LOGS
# ============================================================================

@player_bp.route('/playback/log', methods=['POST'])
@require_device_key
def playback_log():
    """
    Fire-and-forget proof-of-play record

    Request JSON:
    {
        "media_id": 4,
        "playlist_id": 2,
        "started_at": "2025-10-31T10:00:00",
        "ended_at": "2025-10-31T10:00:10",
        "duration_seconds": 10
    }
    """
    start_time = time.time()
    player = request.player  # type: ignore
    data = request.get_json(silent=True) or {}

    media_id = _parse_int(data.get('media_id'), None)
    started_at = _parse_timestamp(data.get('started_at'))
    if media_id is None or started_at is None:
        return jsonify({'error': 'media_id and started_at are required'}), 400

    media = MediaAsset.query.filter_by(id=media_id, company_id=player.company_id).first()
    if media is None:
        return jsonify({'error': 'Media not found'}), 404

    try:
        entry = PlaybackLog(
            company_id=player.company_id,
            player_id=player.id,
            media_id=media.id,
            playlist_id=_parse_int(data.get('playlist_id'), None),
            started_at=started_at,
            ended_at=_parse_timestamp(data.get('ended_at')),
            duration_seconds=_parse_int(data.get('duration_seconds'), None),
            status=data.get('status') or 'completed'
        )
        db.session.add(entry)
        db.session.commit()
    except Exception as e:
        current_app.logger.error(f'Error recording playback for player {player.id}: {e}')
        db.session.rollback()
        return jsonify({'error': 'Internal server error'}), 500

    log_api_request(player.id, 201, start_time)
    return jsonify({'message': 'Playback logged'}), 201


# ============================================================================
# MEDIA DOWNLOAD
# ============================================================================

@media_bp.route('/media/<token>', methods=['GET'])
def download_media(token):
    """Serve a stored file to whoever holds a valid, unexpired signed token"""
    try:
        storage_path = verify_signed_token(token)
        full_path = resolve_media_file(storage_path)
    except SigningError as e:
        current_app.logger.info(f'Rejected media token: {e}')
        return jsonify({'error': 'Invalid or expired link'}), 403

    try:
        return send_file(full_path, conditional=True)
    except FileNotFoundError:
        return jsonify({'error': 'File not found'}), 404


# ============================================================================
# HEALTH CHECK
# ============================================================================

@player_bp.route('/health', methods=['GET'])
def health_check():
    """
    Simple health check endpoint (no authentication required)

    Response JSON:
    {
        "status": "healthy",
        "timestamp": "2025-10-31T10:00:00"
    }
    """
    return jsonify({
        'status': 'healthy',
        'timestamp': utcnow().isoformat()
    }), 200


# ============================================================================
# ERROR HANDLERS
# ============================================================================

@player_bp.errorhandler(404)
def api_not_found(error):
    return jsonify({'error': 'Endpoint not found'}), 404


@player_bp.errorhandler(429)
def api_rate_limited(error):
    return jsonify({'error': 'Too many requests'}), 429


@player_bp.errorhandler(500)
def api_internal_error(error):
    db.session.rollback()
    return jsonify({'error': 'Internal server error'}), 500


# Setup API logger file handler
def setup_api_logger(app):
    """Setup API-specific file logger"""
    handler = logging.FileHandler(app.config['API_LOG_FILE'])
    handler.setLevel(logging.INFO)
    handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s'
    ))
    api_logger.addHandler(handler)
    api_logger.setLevel(logging.INFO)
