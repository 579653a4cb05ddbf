"""
Session arbitration: one active session per device key
"""
from sqlalchemy.orm.attributes import set_committed_value

from models import db, Player
from utils.session_utils import arbitrate, check_duplicate


def test_first_sync_issues_a_token(make_player):
    player, _ = make_player()

    token, took_over = arbitrate(player, None)

    assert token
    assert took_over is True
    assert player.session_token == token
    assert player.session_generation == 1


def test_matching_token_keeps_the_session(make_player):
    player, _ = make_player()
    token, _ = arbitrate(player, None)

    again, took_over = arbitrate(player, token)

    assert again == token
    assert took_over is False
    assert player.session_generation == 1


def test_second_device_takes_over(make_player):
    player, _ = make_player()
    first, _ = arbitrate(player, None)

    second, took_over = arbitrate(player, None)

    assert took_over is True
    assert second != first
    assert player.session_token == second
    assert check_duplicate(player, first) is True
    assert check_duplicate(player, second) is False


def test_stale_token_gets_a_fresh_one(make_player):
    player, _ = make_player()
    arbitrate(player, None)

    token, took_over = arbitrate(player, 'not-the-current-token')

    assert took_over is True
    assert token != 'not-the-current-token'


def test_check_duplicate_without_a_session_or_token():
    player = Player(session_token=None)
    assert check_duplicate(player, 'anything') is False

    player.session_token = 'current'
    assert check_duplicate(player, None) is False
    assert check_duplicate(player, '') is False


def test_lost_race_is_retried_against_the_winner(make_player):
    player, _ = make_player()
    original, _ = arbitrate(player, None)

    # Another request wins the write behind this session's back
    Player.query.filter_by(id=player.id).update({
        'session_token': 'winner-token',
        'session_generation': 5
    }, synchronize_session=False)
    db.session.commit()
    set_committed_value(player, 'session_generation', 1)
    set_committed_value(player, 'session_token', original)

    token, took_over = arbitrate(player, None)

    assert took_over is True
    assert token not in (original, 'winner-token')
    assert player.session_generation == 6


def test_losing_every_retry_returns_the_winners_token(make_player, monkeypatch):
    from utils import session_utils

    player, _ = make_player()
    player.session_token = 'winner-token'
    db.session.commit()
    monkeypatch.setattr(session_utils, '_issue_token', lambda player: None)

    token, took_over = arbitrate(player, 'stale-token')

    assert token == 'winner-token'
    assert took_over is True
