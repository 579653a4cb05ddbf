"""
Player sync endpoint: authentication, version handshake, payload shape
"""
import json
import os

from models import db, MediaType, PlayerCommand, CommandStatus, PlayerLog
from utils.command_utils import enqueue_command
from conftest import device_headers

SYNC_URL = '/api/v1/player/sync'
HEARTBEAT_URL = '/api/v1/player/heartbeat'


def sync(client, device_key, session_token=None, client_version=0):
    return client.post(SYNC_URL, json={'client_version': client_version},
                       headers=device_headers(device_key, session_token))


def test_sync_requires_a_device_key(client, make_player):
    make_player()

    response = client.post(SYNC_URL, json={'client_version': 0})
    assert response.status_code == 401
    assert response.get_json() == {'error': 'Unauthorized'}

    response = sync(client, 'unknown-key')
    assert response.status_code == 401


def test_sync_without_schedules_reports_no_playlist(client, make_player):
    player, key = make_player()

    response = sync(client, key)

    assert response.status_code == 200
    data = response.get_json()
    assert data['up_to_date'] is True
    assert data['version'] == 0
    assert data['message'] == 'No playlist assigned'
    assert data['session_token']
    assert data['commands'] == []
    assert 'items' not in data
    assert player.status == 'online'


def test_first_sync_returns_the_full_playlist(client, make_player, make_playlist, make_schedule):
    player, key = make_player()
    playlist = make_playlist(durations=(5, 3, 7), transitions=['none', 'fade', 'slide'])
    make_schedule(playlist, player=player)

    data = sync(client, key).get_json()

    assert data['up_to_date'] is False
    assert data['version'] == 1
    assert data['playlist']['id'] == playlist.id
    assert [item['duration_seconds'] for item in data['items']] == [5, 3, 7]
    assert [item['transition_type'] for item in data['items']] == ['none', 'fade', 'slide']
    media = data['items'][0]['media']
    assert media['type'] == 'image'
    assert media['url'].startswith('http://signbox.test/api/v1/player/media/')


def test_repeat_sync_with_current_version_is_up_to_date(client, make_player, make_playlist, make_schedule):
    player, key = make_player()
    make_schedule(make_playlist(), player=player)

    first = sync(client, key).get_json()
    token = first['session_token']

    for _ in range(2):
        data = sync(client, key, token, first['version']).get_json()
        assert data['up_to_date'] is True
        assert data['version'] == first['version']
        assert data['session_token'] == token
        assert 'items' not in data


def test_edited_playlist_is_resent_with_a_higher_version(admin_client, make_player, make_playlist,
                                                        make_schedule, make_media):
    player, key = make_player()
    playlist = make_playlist()
    make_schedule(playlist, player=player)

    first = sync(admin_client, key).get_json()
    extra = make_media('Menu board')
    response = admin_client.put(f'/api/v1/admin/playlists/{playlist.id}/items', json={
        'items': [{'media_id': extra.id, 'duration_seconds': 4}]
    })
    assert response.status_code == 200

    data = sync(admin_client, key, first['session_token'], first['version']).get_json()
    assert data['up_to_date'] is False
    assert data['version'] == first['version'] + 1
    assert [item['media']['id'] for item in data['items']] == [extra.id]


def test_takeover_forces_full_payload_and_flags_the_old_session(client, make_player, make_playlist, make_schedule):
    player, key = make_player()
    make_schedule(make_playlist(), player=player)

    device_a = sync(client, key).get_json()
    device_b = sync(client, key, client_version=device_a['version']).get_json()

    # A new token always comes with the full playlist
    assert device_b['session_token'] != device_a['session_token']
    assert device_b['up_to_date'] is False

    stale = client.post(HEARTBEAT_URL, json={}, headers=device_headers(key, device_a['session_token']))
    assert stale.get_json()['duplicate'] is True

    current = client.post(HEARTBEAT_URL, json={}, headers=device_headers(key, device_b['session_token']))
    assert current.get_json()['duplicate'] is False


def test_session_token_is_accepted_in_the_body(client, make_player):
    player, key = make_player()
    token = sync(client, key).get_json()['session_token']

    response = client.post(SYNC_URL, json={'session_token': token, 'client_version': 0},
                           headers=device_headers(key))
    assert response.get_json()['session_token'] == token


def test_url_and_widget_media_payloads(client, make_player, make_media, make_schedule, company):
    from models import Playlist, PlaylistItem, TransitionType

    player, key = make_player()
    background = make_media('Backdrop')
    website = make_media('Status page', media_type=MediaType.URL, external_url='https://status.example.com')
    widget = make_media('Clock', media_type=MediaType.WIDGET, widget_config=json.dumps({
        'backgrounds': [{'media_id': background.id, 'duration': 20}],
        'layers': [{'id': 'clock-1', 'type': 'clock', 'name': 'Time', 'x': 80, 'y': 10}]
    }))
    broken = make_media('Broken widget', media_type=MediaType.WIDGET, widget_config='{not json')

    playlist = Playlist(company_id=company.id, name='Mixed', version=1)
    db.session.add(playlist)
    db.session.flush()
    for position, media in enumerate([website, widget, broken]):
        db.session.add(PlaylistItem(playlist_id=playlist.id, media_id=media.id, position=position,
                                    duration_seconds=10, transition_type=TransitionType.NONE))
    db.session.commit()
    make_schedule(playlist, player=player)

    items = sync(client, key).get_json()['items']

    assert items[0]['media']['url'] == 'https://status.example.com'
    assert items[0]['media']['config'] is None

    config = items[1]['media']['config']
    assert items[1]['media']['url'] is None
    assert config['backgrounds'][0]['preview_url'].startswith('http://signbox.test/api/v1/player/media/')
    assert config['layers'][0]['type'] == 'clock'

    assert items[2]['media']['config'] is None


def test_signed_media_url_serves_the_file(app, client, make_player, make_media, make_playlist, make_schedule):
    player, key = make_player()
    playlist = make_playlist()
    make_schedule(playlist, player=player)

    storage_path = playlist.items[0].media.storage_path
    full_path = os.path.join(app.config['MEDIA_FOLDER'], storage_path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    with open(full_path, 'wb') as f:
        f.write(b'poster-bytes')

    url = sync(client, key).get_json()['items'][0]['media']['url']

    response = client.get(url)
    assert response.status_code == 200
    assert response.data == b'poster-bytes'
    response.close()

    assert client.get(url + 'tampered').status_code == 403


def test_sync_delivers_pending_commands_once(client, make_player):
    player, key = make_player()
    command = enqueue_command(player, 'refresh')

    data = sync(client, key).get_json()
    assert data['commands'] == [{'id': command.id, 'command': 'refresh', 'payload': {}}]
    assert db.session.get(PlayerCommand, command.id).status == CommandStatus.SENT

    again = sync(client, key, data['session_token']).get_json()
    assert again['commands'] == []


def test_sync_attempts_are_logged(client, make_player):
    player, key = make_player()
    sync(client, key)

    events = PlayerLog.query.filter_by(player_id=player.id, event='sync_attempt').all()
    assert len(events) == 1
    assert events[0].details_dict['took_over'] is True


def test_health_check_needs_no_key(client):
    response = client.get('/api/v1/player/health')
    assert response.status_code == 200
    assert response.get_json()['status'] == 'healthy'
