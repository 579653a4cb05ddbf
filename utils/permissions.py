"""
Permission Decorators
Role checks for the admin API; failures are JSON rather than redirects
"""
from functools import wraps
from flask import jsonify
from flask_login import current_user


def _deny_unless(check, message):
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not current_user.is_authenticated:
                return jsonify({'error': 'Authentication required'}), 401

            if not check(current_user):
                return jsonify({'error': message}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def login_required_json(f):
    """
    Decorator for admin API routes open to any signed-in user
    Usage: @login_required_json
    """
    return _deny_unless(lambda user: True, 'Access denied')(f)


def admin_required(f):
    """
    Decorator to restrict route access to Admin users only
    Usage: @admin_required
    """
    return _deny_unless(lambda user: user.is_admin, 'Administrator access required')(f)


def content_manager_required(f):
    """
    Decorator for routes that manage playlists and schedules
    Allows Admin and Operator roles
    Usage: @content_manager_required
    """
    return _deny_unless(lambda user: user.can_manage_content, 'Content management access required')(f)


def command_sender_required(f):
    """
    Decorator for routes that queue remote player commands
    Usage: @command_sender_required
    """
    return _deny_unless(lambda user: user.can_send_commands, 'Command access required')(f)
