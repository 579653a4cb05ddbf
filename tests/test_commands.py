"""
Command channel: queueing, delivery and acknowledgement
"""
import io

import pytest

from models import db, CommandStatus, PlayerLog
from utils.command_utils import (enqueue_command, deliver_pending, acknowledge_command,
                                 CommandNotFound, CommandStateError)
from conftest import device_headers

ACK_URL = '/api/v1/player/commands/acknowledge'


def test_new_commands_start_pending(make_player):
    player, _ = make_player()
    command = enqueue_command(player, 'refresh', {'reason': 'menu update'})

    assert command.status == CommandStatus.PENDING
    assert command.to_delivery_dict() == {'id': command.id, 'command': 'refresh',
                                          'payload': {'reason': 'menu update'}}


def test_delivery_is_in_creation_order_and_happens_once(make_player):
    player, _ = make_player()
    first = enqueue_command(player, 'refresh')
    second = enqueue_command(player, 'clear_cache')

    delivered = deliver_pending(player)

    assert [c['id'] for c in delivered] == [first.id, second.id]
    assert first.status == CommandStatus.SENT
    assert first.sent_at is not None
    assert deliver_pending(player) == []


def test_acknowledge_success_and_failure(make_player):
    player, _ = make_player()
    ok = enqueue_command(player, 'refresh')
    bad = enqueue_command(player, 'reboot')
    deliver_pending(player)

    acknowledge_command(player, ok.id, 'success')
    acknowledge_command(player, bad.id, 'failed', {'error': 'not permitted'})

    assert ok.status == CommandStatus.EXECUTED
    assert ok.executed_at is not None
    assert bad.status == CommandStatus.FAILED
    assert bad.to_dict()['result'] == {'error': 'not permitted'}

    events = {e.event for e in PlayerLog.query.filter_by(player_id=player.id).all()}
    assert {'command_refresh_success', 'command_reboot_failed'} <= events


def test_acknowledge_is_only_accepted_once(make_player):
    player, _ = make_player()
    command = enqueue_command(player, 'refresh')
    acknowledge_command(player, command.id, 'success')

    with pytest.raises(CommandStateError):
        acknowledge_command(player, command.id, 'failed')
    assert command.status == CommandStatus.EXECUTED


def test_acknowledge_of_another_players_command(make_player):
    owner, _ = make_player('Owner')
    intruder, _ = make_player('Intruder')
    command = enqueue_command(owner, 'refresh')

    with pytest.raises(CommandNotFound):
        acknowledge_command(intruder, command.id, 'success')
    with pytest.raises(CommandNotFound):
        acknowledge_command(owner, 9999, 'success')


def test_screenshot_result_updates_player(make_player):
    player, _ = make_player()
    command = enqueue_command(player, 'screenshot')

    acknowledge_command(player, command.id, 'success', {'screenshot_url': 'http://signbox.test/shot.jpg'})

    assert player.last_screenshot_url == 'http://signbox.test/shot.jpg'


# ============================================================================
# HTTP
# ============================================================================

def test_acknowledge_endpoint_status_codes(client, make_player):
    owner, owner_key = make_player('Owner')
    _, other_key = make_player('Other')
    command = enqueue_command(owner, 'refresh')

    response = client.post(ACK_URL, json={'command_id': command.id, 'outcome': 'success'},
                           headers=device_headers(other_key))
    assert response.status_code == 404

    response = client.post(ACK_URL, json={'command_id': command.id, 'outcome': 'success'},
                           headers=device_headers(owner_key))
    assert response.status_code == 200
    assert response.get_json()['status'] == 'executed'

    response = client.post(ACK_URL, json={'command_id': command.id, 'outcome': 'success'},
                           headers=device_headers(owner_key))
    assert response.status_code == 409

    response = client.post(ACK_URL, json={'outcome': 'success'}, headers=device_headers(owner_key))
    assert response.status_code == 400


def test_screenshot_upload_then_acknowledge(client, make_player):
    player, key = make_player()
    command = enqueue_command(player, 'screenshot')

    upload = client.post('/api/v1/player/screenshot', headers=device_headers(key),
                         data={'file': (io.BytesIO(b'\xff\xd8jpeg'), 'screen.jpg')},
                         content_type='multipart/form-data')
    assert upload.status_code == 201
    uploaded = upload.get_json()
    assert uploaded['storage_path'].startswith(f'screenshots/player_{player.id}_')

    client.post(ACK_URL, json={
        'command_id': command.id,
        'outcome': 'success',
        'result': {'screenshot_url': uploaded['screenshot_url']}
    }, headers=device_headers(key))

    db.session.refresh(player)
    assert player.last_screenshot_url == uploaded['screenshot_url']


def test_playback_log_is_recorded(client, make_player, make_playlist):
    from models import PlaybackLog

    player, key = make_player()
    playlist = make_playlist()
    media_id = playlist.items[0].media_id

    response = client.post('/api/v1/player/playback/log', headers=device_headers(key), json={
        'media_id': media_id,
        'playlist_id': playlist.id,
        'started_at': '2025-11-03T10:00:00Z',
        'ended_at': '2025-11-03T10:00:10Z',
        'duration_seconds': 10
    })

    assert response.status_code == 201
    entry = PlaybackLog.query.filter_by(player_id=player.id).one()
    assert entry.media_id == media_id
    assert entry.started_at.hour == 10
    assert entry.started_at.tzinfo is None
