"""
Shared fixtures: application on TestingConfig with an in-memory database,
plus small factories for the objects most tests need
"""
import os
from concurrent.futures import Future

import pytest

from app import create_app
from player_client.display import Display
from models import (db, Company, User, UserRole, Player, PlayerGroup, MediaAsset, MediaType,
                    Playlist, PlaylistItem, TransitionType, Schedule)

ADMIN_PASSWORD = 'secret-pass'


@pytest.fixture
def app(tmp_path):
    app = create_app('testing')
    app.config['MEDIA_FOLDER'] = str(tmp_path / 'media')
    os.makedirs(app.config['MEDIA_FOLDER'], exist_ok=True)

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def company(app):
    company = Company(name='Acme Retail')
    db.session.add(company)
    db.session.commit()
    return company


@pytest.fixture
def other_company(app):
    company = Company(name='Other Corp')
    db.session.add(company)
    db.session.commit()
    return company


@pytest.fixture
def make_user(app, company):
    def _make(username='admin', role=UserRole.ADMIN, company_id=None):
        user = User(company_id=company_id or company.id, username=username, role=role)
        user.set_password(ADMIN_PASSWORD)
        db.session.add(user)
        db.session.commit()
        return user
    return _make


@pytest.fixture
def login(client):
    def _login(user):
        response = client.post('/api/v1/admin/login', json={
            'username': user.username,
            'password': ADMIN_PASSWORD
        })
        assert response.status_code == 200, response.get_json()
        return client
    return _login


@pytest.fixture
def admin_client(make_user, login):
    return login(make_user('admin', UserRole.ADMIN))


@pytest.fixture
def make_group(app, company):
    def _make(name='Lobby screens', company_id=None):
        group = PlayerGroup(company_id=company_id or company.id, name=name)
        db.session.add(group)
        db.session.commit()
        return group
    return _make


@pytest.fixture
def make_player(app, company):
    """Returns (player, plaintext device key)"""
    def _make(name='Lobby 1', group=None, company_id=None):
        device_key = Player.generate_device_key()
        player = Player(
            company_id=company_id or company.id,
            group_id=group.id if group else None,
            name=name,
            device_key_hash=Player.hash_device_key(device_key)
        )
        db.session.add(player)
        db.session.commit()
        return player, device_key
    return _make


@pytest.fixture
def make_media(app, company):
    def _make(name='Poster', media_type=MediaType.IMAGE, duration=10, storage_path=None,
              external_url=None, widget_config=None, company_id=None):
        if storage_path is None and media_type in (MediaType.IMAGE, MediaType.VIDEO):
            storage_path = f'uploads/{name.lower().replace(" ", "_")}.bin'
        media = MediaAsset(
            company_id=company_id or company.id,
            name=name,
            media_type=media_type,
            storage_path=storage_path,
            external_url=external_url,
            duration_seconds=duration,
            size_bytes=1024,
            widget_config=widget_config
        )
        db.session.add(media)
        db.session.commit()
        return media
    return _make


@pytest.fixture
def make_playlist(app, company, make_media):
    def _make(name='Main', durations=(10,), transitions=None, company_id=None):
        playlist = Playlist(company_id=company_id or company.id, name=name, version=1)
        db.session.add(playlist)
        db.session.flush()
        transitions = transitions or ['none'] * len(durations)
        for position, (duration, transition) in enumerate(zip(durations, transitions)):
            media = make_media(f'{name} item {position}', company_id=company_id)
            db.session.add(PlaylistItem(
                playlist_id=playlist.id,
                media_id=media.id,
                position=position,
                duration_seconds=duration,
                transition_type=TransitionType(transition)
            ))
        db.session.commit()
        return playlist
    return _make


@pytest.fixture
def make_schedule(app, company):
    def _make(playlist, player=None, group=None, **kwargs):
        schedule = Schedule(
            company_id=playlist.company_id,
            playlist_id=playlist.id,
            player_id=player.id if player else None,
            group_id=group.id if group else None,
            **kwargs
        )
        db.session.add(schedule)
        db.session.commit()
        return schedule
    return _make


def device_headers(device_key, session_token=None):
    headers = {'X-Device-Key': device_key}
    if session_token:
        headers['X-Session-Token'] = session_token
    return headers


# ============================================================================
# PLAYER RUNTIME DOUBLES
# ============================================================================

class InlineExecutor:
    """Runs submitted work immediately on the caller's thread"""

    def submit(self, fn, *args, **kwargs):
        future = Future()
        try:
            future.set_result(fn(*args, **kwargs))
        except Exception as e:
            future.set_exception(e)
        return future

    def shutdown(self, wait=True):
        pass


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def inline_executor():
    return InlineExecutor()


@pytest.fixture
def fake_clock():
    return FakeClock()


class RecordingDisplay(Display):
    """Display that remembers what it was asked to show"""

    def __init__(self, capture_ok=True):
        self.shown = []
        self.messages = []
        self.cleared = 0
        self.capture_ok = capture_ok

    def show(self, item, transition='none'):
        self.shown.append((item['media']['id'], transition))

    def show_message(self, state):
        self.messages.append(state)

    def capture_screenshot(self, path):
        if not self.capture_ok:
            return False
        with open(path, 'wb') as f:
            f.write(b'jpeg-bytes')
        return True

    def clear_cache(self):
        self.cleared += 1

    def close(self):
        pass
