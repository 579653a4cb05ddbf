"""
First-run database bootstrap
"""
from init_db import init_database
from models import Company, Player, User, UserRole


def test_bootstrap_creates_company_and_admin_once(app, monkeypatch):
    monkeypatch.delenv('FLASK_ENV', raising=False)

    init_database(app)
    init_database(app)

    admin = User.query.one()
    assert admin.username == app.config['ADMIN_USERNAME']
    assert admin.role == UserRole.ADMIN
    assert admin.check_password(app.config['ADMIN_PASSWORD'])
    assert Company.query.count() == 1
    assert Player.query.count() == 0
