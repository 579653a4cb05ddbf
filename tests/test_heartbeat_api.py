"""
Heartbeat endpoint: liveness, command delivery and duplicate detection
"""
from models import db, PlayerCommand, CommandStatus, PlayerLog
from utils.command_utils import enqueue_command
from conftest import device_headers

HEARTBEAT_URL = '/api/v1/player/heartbeat'


def test_heartbeat_marks_player_online(client, make_player):
    player, key = make_player()
    assert player.last_heartbeat is None

    response = client.post(HEARTBEAT_URL, json={'status': 'playing', 'client_version': 2},
                           headers=device_headers(key))

    assert response.status_code == 200
    data = response.get_json()
    assert data['acknowledged'] is True
    assert data['duplicate'] is False
    assert data['server_time']
    assert player.status == 'online'
    assert player.last_heartbeat is not None

    event = PlayerLog.query.filter_by(player_id=player.id, event='heartbeat').one()
    assert event.details_dict == {'status': 'playing', 'client_version': 2}


def test_heartbeat_delivers_pending_commands(client, make_player):
    player, key = make_player()
    command = enqueue_command(player, 'screenshot')

    data = client.post(HEARTBEAT_URL, json={}, headers=device_headers(key)).get_json()

    assert [c['id'] for c in data['commands']] == [command.id]
    assert db.session.get(PlayerCommand, command.id).status == CommandStatus.SENT


def test_duplicate_heartbeat_changes_nothing(client, make_player):
    player, key = make_player()
    player.session_token = 'current-session'
    db.session.commit()
    command = enqueue_command(player, 'reboot')

    data = client.post(HEARTBEAT_URL, json={}, headers=device_headers(key, 'old-session')).get_json()

    assert data['duplicate'] is True
    assert data['commands'] == []
    assert player.last_heartbeat is None
    assert player.status == 'offline'
    assert db.session.get(PlayerCommand, command.id).status == CommandStatus.PENDING


def test_heartbeat_rejects_unknown_key(client):
    response = client.post(HEARTBEAT_URL, json={}, headers=device_headers('nope'))
    assert response.status_code == 401
