"""
Admin API: sign-in, players, commands, schedules and playlist edits
"""
from models import db, UserRole, MediaType, Schedule, CommandStatus, PlayerCommand
from conftest import device_headers

ADMIN = '/api/v1/admin'


def test_login_with_bad_password(client, make_user):
    make_user('admin')

    response = client.post(f'{ADMIN}/login', json={'username': 'admin', 'password': 'wrong-pass'})
    assert response.status_code == 401

    response = client.post(f'{ADMIN}/login', json={'username': 'admin'})
    assert response.status_code == 400


def test_disabled_account_cannot_sign_in(client, make_user):
    user = make_user('retired')
    user.is_active = False
    db.session.commit()

    response = client.post(f'{ADMIN}/login', json={'username': 'retired', 'password': 'secret-pass'})
    assert response.status_code == 403


def test_admin_routes_require_a_session(client):
    assert client.get(f'{ADMIN}/players').status_code == 401
    assert client.post(f'{ADMIN}/commands', json={'player_id': 1, 'command': 'reboot'}).status_code == 401


def test_csrf_token_endpoint(client):
    response = client.get(f'{ADMIN}/csrf-token')
    assert response.status_code == 200
    assert response.get_json()['csrf_token']


def test_create_player_returns_a_working_device_key(admin_client):
    response = admin_client.post(f'{ADMIN}/players', json={'name': 'Front Window'})

    assert response.status_code == 201
    data = response.get_json()
    assert data['name'] == 'Front Window'
    assert data['status'] == 'offline'

    sync = admin_client.post('/api/v1/player/sync', json={}, headers=device_headers(data['device_key']))
    assert sync.status_code == 200

    listed = admin_client.get(f'{ADMIN}/players').get_json()['players']
    assert [p['name'] for p in listed] == ['Front Window']
    assert 'device_key' not in listed[0]


def test_create_player_validates_name(admin_client):
    response = admin_client.post(f'{ADMIN}/players', json={'name': '<script>'})
    assert response.status_code == 400


def test_operator_cannot_create_players(client, make_user, login):
    login(make_user('operator', UserRole.OPERATOR))
    response = client.post(f'{ADMIN}/players', json={'name': 'Front Window'})
    assert response.status_code == 403


def test_issue_command(admin_client, make_player):
    player, _ = make_player()

    response = admin_client.post(f'{ADMIN}/commands', json={
        'player_id': player.id,
        'command': 'screenshot',
        'payload': {'quality': 80}
    })

    assert response.status_code == 201
    data = response.get_json()
    assert data['status'] == 'pending'
    assert data['payload'] == {'quality': 80}

    history = admin_client.get(f'{ADMIN}/players/{player.id}/commands').get_json()['commands']
    assert [c['id'] for c in history] == [data['id']]


def test_issue_command_rejects_bad_input(admin_client, make_player, other_company):
    player, _ = make_player()
    foreign, _ = make_player('Elsewhere', company_id=other_company.id)

    response = admin_client.post(f'{ADMIN}/commands', json={'player_id': foreign.id, 'command': 'reboot'})
    assert response.status_code == 404

    response = admin_client.post(f'{ADMIN}/commands', json={'player_id': player.id, 'command': 'Reboot Now'})
    assert response.status_code == 400

    response = admin_client.post(f'{ADMIN}/commands', json={'player_id': player.id, 'command': 'reboot',
                                                            'payload': [1, 2]})
    assert response.status_code == 400
    assert PlayerCommand.query.count() == 0


def test_viewer_cannot_send_commands(client, make_user, login, make_player):
    player, _ = make_player()
    login(make_user('viewer', UserRole.VIEWER))

    response = client.post(f'{ADMIN}/commands', json={'player_id': player.id, 'command': 'reboot'})
    assert response.status_code == 403

    # Read access is still fine
    assert client.get(f'{ADMIN}/players').status_code == 200


def test_player_events_are_listed(admin_client, make_player):
    player, key = make_player()
    admin_client.post('/api/v1/player/sync', json={}, headers=device_headers(key))

    events = admin_client.get(f'{ADMIN}/players/{player.id}/events').get_json()['events']
    assert [e['event'] for e in events] == ['sync_attempt']


# ============================================================================
# SCHEDULES
# ============================================================================

def test_replace_schedules(admin_client, make_player, make_playlist, make_schedule):
    player, _ = make_player()
    old = make_playlist('Old')
    office = make_playlist('Office')
    default = make_playlist('Default')
    make_schedule(old, player=player, is_fallback=True)

    response = admin_client.put(f'{ADMIN}/schedules', json={
        'player_id': player.id,
        'schedules': [
            {'playlist_id': office.id, 'start_time': '09:00', 'end_time': '17:00',
             'days_of_week': [1, 2, 3, 4, 5], 'priority': 10},
            {'playlist_id': default.id, 'is_fallback': True}
        ]
    })

    assert response.status_code == 200, response.get_json()
    listed = admin_client.get(f'{ADMIN}/schedules?player_id={player.id}').get_json()['schedules']
    assert [s['playlist_id'] for s in listed] == [office.id, default.id]
    assert listed[0]['start_time'] == '09:00:00'
    assert listed[0]['days_of_week'] == [1, 2, 3, 4, 5]
    assert listed[1]['is_fallback'] is True
    assert Schedule.query.filter_by(playlist_id=old.id).count() == 0


def test_second_fallback_is_rejected(admin_client, make_group, make_playlist):
    group = make_group()
    a = make_playlist('A')
    b = make_playlist('B')

    response = admin_client.put(f'{ADMIN}/schedules', json={
        'group_id': group.id,
        'schedules': [
            {'playlist_id': a.id, 'is_fallback': True},
            {'playlist_id': b.id, 'is_fallback': True}
        ]
    })

    assert response.status_code == 400
    assert Schedule.query.count() == 0


def test_schedule_validation(admin_client, make_player, make_group, make_playlist):
    player, _ = make_player()
    group = make_group()
    playlist = make_playlist()

    def put(body):
        return admin_client.put(f'{ADMIN}/schedules', json=body)

    # Both targets
    assert put({'player_id': player.id, 'group_id': group.id, 'schedules': []}).status_code == 400
    # Window ending before it starts
    assert put({'player_id': player.id, 'schedules': [
        {'playlist_id': playlist.id, 'start_time': '22:00', 'end_time': '06:00'}
    ]}).status_code == 400
    # Day out of range
    assert put({'player_id': player.id, 'schedules': [
        {'playlist_id': playlist.id, 'days_of_week': [7]}
    ]}).status_code == 400
    # No days at all never runs, so it is refused rather than read as every day
    response = put({'player_id': player.id, 'schedules': [{'playlist_id': playlist.id, 'days_of_week': []}]})
    assert response.status_code == 400
    assert 'days_of_week' in response.get_json()['error']
    # Unknown playlist
    assert put({'player_id': player.id, 'schedules': [{'playlist_id': 9999}]}).status_code == 400


# ============================================================================
# PLAYLISTS
# ============================================================================

def test_replace_items_bumps_version_by_one(admin_client, make_playlist, make_media):
    playlist = make_playlist(durations=(5, 5))
    image = make_media('Welcome')
    clip = make_media('Promo', media_type=MediaType.VIDEO, duration=30)

    response = admin_client.put(f'{ADMIN}/playlists/{playlist.id}/items', json={'items': [
        {'media_id': image.id, 'duration_seconds': 8, 'transition_type': 'fade'},
        {'media_id': clip.id}
    ]})

    assert response.status_code == 200, response.get_json()
    assert response.get_json() == {'id': playlist.id, 'name': 'Main', 'version': 2, 'item_count': 2}
    assert [item.effective_duration for item in playlist.ordered_items] == [8, 30]


def test_video_item_cannot_outlast_the_video(admin_client, make_playlist, make_media):
    playlist = make_playlist()
    clip = make_media('Promo', media_type=MediaType.VIDEO, duration=30)

    response = admin_client.put(f'{ADMIN}/playlists/{playlist.id}/items', json={'items': [
        {'media_id': clip.id, 'duration_seconds': 45}
    ]})

    assert response.status_code == 400
    db.session.refresh(playlist)
    assert playlist.version == 1


def test_items_with_foreign_media_are_rejected(admin_client, make_playlist, make_media, other_company):
    playlist = make_playlist()
    foreign = make_media('Theirs', company_id=other_company.id)

    response = admin_client.put(f'{ADMIN}/playlists/{playlist.id}/items', json={'items': [
        {'media_id': foreign.id}
    ]})
    assert response.status_code == 400

    response = admin_client.put(f'{ADMIN}/playlists/{playlist.id}/items', json={'items': [
        {'media_id': foreign.id, 'transition_type': 'spin'}
    ]})
    assert response.status_code == 400


def test_command_status_round_trip_through_player(admin_client, make_player):
    player, key = make_player()
    issued = admin_client.post(f'{ADMIN}/commands', json={'player_id': player.id, 'command': 'refresh'}).get_json()

    delivered = admin_client.post('/api/v1/player/heartbeat', json={}, headers=device_headers(key)).get_json()
    assert [c['id'] for c in delivered['commands']] == [issued['id']]

    admin_client.post('/api/v1/player/commands/acknowledge', headers=device_headers(key),
                      json={'command_id': issued['id'], 'outcome': 'success'})
    assert db.session.get(PlayerCommand, issued['id']).status == CommandStatus.EXECUTED
