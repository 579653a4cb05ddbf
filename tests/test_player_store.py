"""
Persisted player state
"""
import json
import os

from player_client.store import PlayerStore


def test_state_survives_a_restart(tmp_path):
    path = str(tmp_path / 'state.json')
    store = PlayerStore(path)
    store.device_key = 'key-1'
    store.session_token = 'tok-1'
    store.cache_playlist({'id': 3, 'name': 'Main', 'version': 7}, [{'id': 1, 'duration_seconds': 5}])

    restored = PlayerStore(path).load()

    assert restored.device_key == 'key-1'
    assert restored.session_token == 'tok-1'
    assert restored.version == 7
    assert restored.items == [{'id': 1, 'duration_seconds': 5}]
    assert restored.has_content


def test_save_leaves_no_temporary_files(tmp_path):
    store = PlayerStore(str(tmp_path / 'state.json'))
    store.device_key = 'key-1'
    store.save()
    store.save()

    assert os.listdir(tmp_path) == ['state.json']


def test_missing_or_corrupt_state_means_a_fresh_player(tmp_path):
    missing = PlayerStore(str(tmp_path / 'nope.json')).load()
    assert missing.device_key is None
    assert missing.version == 0

    corrupt_path = tmp_path / 'state.json'
    corrupt_path.write_text('{"device_key": "key-1", ')
    corrupt = PlayerStore(str(corrupt_path)).load()
    assert corrupt.device_key is None
    assert not corrupt.has_content


def test_reset_forgets_session_and_content(tmp_path):
    path = tmp_path / 'state.json'
    store = PlayerStore(str(path))
    store.device_key = 'old-key'
    store.session_token = 'tok-1'
    store.cache_playlist({'id': 1, 'name': 'Main', 'version': 2}, [{'id': 1}])

    store.reset('new-key')

    data = json.loads(path.read_text())
    assert data['device_key'] == 'new-key'
    assert data['session_token'] is None
    assert data['items'] == []
    assert data['playlist'] is None
