"""
SignBox - Digital Signage CMS
Application factory: extensions, blueprints and background jobs
"""
import os
import atexit
import logging
from logging.handlers import RotatingFileHandler
from flask import Flask, jsonify, current_app
from flask_login import LoginManager
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect

from config import config
from models import db, User
from socketio_events import socketio

limiter = Limiter(key_func=get_remote_address)
csrf = CSRFProtect()
login_manager = LoginManager()

DEVICE_HEADERS = ["Content-Type", "X-Device-Key", "X-Session-Token", "X-CSRFToken"]


@login_manager.user_loader
def load_user(user_id):
    return db.session.get(User, int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({'error': 'Authentication required'}), 401


def create_app(config_name=None):
    """
    Build a configured application

    Args:
        config_name: Key into config.config; defaults to $FLASK_ENV or 'development'
    """
    config_name = config_name or os.getenv('FLASK_ENV', 'development')

    app = Flask(__name__)
    app.config.from_object(config[config_name])
    config[config_name].init_app(app)

    register_extensions(app)
    setup_logging(app)
    register_blueprints(app)
    register_error_handlers(app)

    if app.config.get('SCHEDULER_ENABLED'):
        from utils.scheduler import init_scheduler, shutdown_scheduler
        init_scheduler(app)
        atexit.register(shutdown_scheduler)

    return app


def register_extensions(app):
    db.init_app(app)
    csrf.init_app(app)
    login_manager.init_app(app)

    # Players and dashboards may live on other origins
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config['CORS_ORIGINS'],
            "methods": ["GET", "POST", "PUT", "DELETE"],
            "allow_headers": DEVICE_HEADERS
        }
    })

    limiter.init_app(app)

    origins = app.config['CORS_ORIGINS']
    socketio.init_app(app,
                      cors_allowed_origins='*' if origins == ['*'] else origins,
                      async_mode='threading',
                      logger=app.config['DEBUG'],
                      engineio_logger=app.config['DEBUG'])


def register_blueprints(app):
    from routes.admin_routes import admin_bp
    from routes.player_routes import player_bp, media_bp, setup_api_logger, device_rate_key

    # Players behind one NAT share an address, so limit per device key
    limiter.limit(lambda: current_app.config['PLAYER_RATE_LIMIT'], key_func=device_rate_key)(player_bp)
    # mpv and browsers fetch media without device headers
    limiter.exempt(media_bp)

    app.register_blueprint(admin_bp, url_prefix='/api/v1/admin')
    app.register_blueprint(player_bp, url_prefix='/api/v1/player')
    app.register_blueprint(media_bp, url_prefix='/api/v1/player')

    # Device key authentication replaces CSRF for players
    csrf.exempt(player_bp)

    if not app.testing:
        setup_api_logger(app)


def register_error_handlers(app):

    @app.errorhandler(413)
    def too_large(error):
        return jsonify({'error': 'Upload too large'}), 413

    @app.errorhandler(429)
    def rate_limited(error):
        return jsonify({'error': 'Too many requests'}), 429


def setup_logging(app):
    """Rotating application log outside debug and test runs"""
    if app.debug or app.testing:
        return

    os.makedirs(app.config['LOG_FOLDER'], exist_ok=True)

    file_handler = RotatingFileHandler(
        app.config['APP_LOG_FILE'],
        maxBytes=10240000,  # 10MB
        backupCount=10
    )
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s %(levelname)s: %(message)s [in %(pathname)s:%(lineno)d]'
    ))
    file_handler.setLevel(logging.INFO)
    app.logger.addHandler(file_handler)
    app.logger.setLevel(logging.INFO)
    app.logger.info('SignBox startup')


if __name__ == '__main__':
    app = create_app()

    from init_db import init_database
    init_database(app)

    socketio.run(
        app,
        host=app.config['FLASK_HOST'],
        port=app.config['FLASK_PORT'],
        debug=app.config['DEBUG'],
        allow_unsafe_werkzeug=True
    )
