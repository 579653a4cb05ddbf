"""
Media Storage Utilities
Short-lived signed URLs for stored media files and screenshot storage
"""
import os
import logging
import secrets
from typing import Optional

from flask import current_app, url_for
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

SIGNING_SALT = 'signbox-media-url'


class SigningError(Exception):
    """Raised when a signed media URL cannot be produced or verified"""
    pass


def _serializer():
    return URLSafeTimedSerializer(current_app.config['SECRET_KEY'], salt=SIGNING_SALT)


def create_signed_url(storage_path: str) -> str:
    """
    Create a time-limited URL for a stored media file

    The URL is generated per request and never persisted; players must
    treat it as disposable.

    Args:
        storage_path: Path relative to MEDIA_FOLDER

    Returns:
        Absolute URL valid for SIGNED_URL_EXPIRES_SECONDS
    """
    if not storage_path:
        raise SigningError('No storage path to sign')

    try:
        token = _serializer().dumps({'path': storage_path})
        return url_for('player_media.download_media', token=token, _external=True)
    except Exception as e:
        raise SigningError(f'Could not sign {storage_path}: {e}') from e


def safe_signed_url(storage_path: Optional[str]) -> Optional[str]:
    """Signed URL or None; signing failures never propagate to the caller"""
    if not storage_path:
        return None
    try:
        return create_signed_url(storage_path)
    except SigningError as e:
        logger.error(f'Media URL signing failed: {e}')
        return None


def verify_signed_token(token: str) -> str:
    """
    Verify a signed media token

    Returns:
        The storage path it grants access to

    Raises:
        SigningError: token is tampered with or expired
    """
    try:
        data = _serializer().loads(token, max_age=current_app.config['SIGNED_URL_EXPIRES_SECONDS'])
    except SignatureExpired:
        raise SigningError('Signed URL expired')
    except BadSignature:
        raise SigningError('Invalid signed URL')

    if not isinstance(data, dict) or not data.get('path'):
        raise SigningError('Invalid signed URL')
    return data['path']


def resolve_media_file(storage_path: str) -> str:
    """Absolute path for a storage path, refusing anything outside MEDIA_FOLDER"""
    media_root = os.path.abspath(current_app.config['MEDIA_FOLDER'])
    full_path = os.path.abspath(os.path.join(media_root, storage_path))
    if os.path.commonpath([media_root, full_path]) != media_root:
        raise SigningError(f'Storage path escapes media folder: {storage_path}')
    return full_path


def save_screenshot(player_id: int, file_storage) -> str:
    """
    Store an uploaded screenshot under MEDIA_FOLDER/screenshots

    Returns:
        Storage path of the saved file
    """
    original = secure_filename(file_storage.filename or '') or 'screenshot.jpg'
    extension = os.path.splitext(original)[1].lower() or '.jpg'
    storage_path = f'screenshots/player_{player_id}_{secrets.token_hex(8)}{extension}'

    full_path = resolve_media_file(storage_path)
    os.makedirs(os.path.dirname(full_path), exist_ok=True)
    file_storage.save(full_path)

    logger.info(f'Screenshot stored for player {player_id}: {storage_path}')
    return storage_path
