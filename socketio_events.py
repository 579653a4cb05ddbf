"""
WebSocket Event Handlers
Live player status and command updates pushed to admin dashboards
"""
from flask import request
from flask_socketio import SocketIO, emit, join_room, disconnect
from flask_login import current_user
import logging

logger = logging.getLogger(__name__)

socketio = SocketIO()

# Track connected clients
connected_clients = {}


def company_room(company_id):
    return f'company_{company_id}'


@socketio.on('connect')
def handle_connect():
    """Dashboards join their company's room; anonymous sockets are dropped"""
    if current_user.is_authenticated:
        client_id = request.sid
        room = company_room(current_user.company_id)
        join_room(room)

        connected_clients[client_id] = {
            'user_id': current_user.id,
            'username': current_user.username,
            'room': room
        }
        logger.info(f'Client connected: {current_user.username} (SID: {client_id})')
        emit('connection_response', {
            'status': 'connected',
            'room': room,
            'client_id': client_id
        })
    else:
        logger.warning(f'Unauthenticated connection attempt from {request.sid}')
        disconnect()


@socketio.on('disconnect')
def handle_disconnect():
    """Handle client disconnection"""
    client_id = request.sid
    if client_id in connected_clients:
        user_info = connected_clients.pop(client_id)
        logger.info(f'Client disconnected: {user_info["username"]} (SID: {client_id})')


# ============================================================================
# BROADCAST HELPERS
# ============================================================================

def broadcast_player_status(player):
    """
    Push a player's heartbeat status to its company's dashboards

    Args:
        player: Player model instance
    """
    try:
        socketio.emit('player_status_changed', player.to_status_dict(),
                      to=company_room(player.company_id), namespace='/')
    except Exception as e:
        logger.error(f'Error broadcasting status for player {player.id}: {e}')


def broadcast_command_update(player, command):
    """Push a command's new state (queued, sent, executed, failed)"""
    try:
        socketio.emit('command_updated', {
            'player_id': player.id,
            'player_name': player.name,
            'command': command.to_dict()
        }, to=company_room(player.company_id), namespace='/')
    except Exception as e:
        logger.error(f'Error broadcasting command {command.id}: {e}')
