"""
Durable player state: device key, session token and the last known playlist
"""
import json
import logging
import os
import tempfile
import time

logger = logging.getLogger(__name__)


class PlayerStore:
    """JSON file backed state that survives restarts and power loss"""

    def __init__(self, path):
        self.path = path
        self.device_key = None
        self.session_token = None
        self.playlist = None  # {'id', 'name', 'version'}
        self.items = []
        self.cached_at = None

    @property
    def version(self):
        return (self.playlist or {}).get('version', 0)

    @property
    def has_content(self):
        return bool(self.items)

    def load(self):
        """Read state from disk; a missing or corrupt file means a fresh player"""
        try:
            with open(self.path, 'r') as f:
                data = json.load(f)
        except FileNotFoundError:
            logger.info(f'No player state at {self.path}')
            return self
        except (OSError, ValueError) as e:
            logger.error(f'Unreadable player state {self.path}: {e}')
            return self

        self.device_key = data.get('device_key')
        self.session_token = data.get('session_token')
        self.playlist = data.get('playlist')
        self.items = data.get('items') or []
        self.cached_at = data.get('cached_at')
        return self

    def save(self):
        """Write atomically so a power cut never leaves a half-written file"""
        directory = os.path.dirname(os.path.abspath(self.path))
        os.makedirs(directory, exist_ok=True)

        data = {
            'device_key': self.device_key,
            'session_token': self.session_token,
            'playlist': self.playlist,
            'items': self.items,
            'cached_at': self.cached_at
        }
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix='.state-', suffix='.tmp')
        try:
            with os.fdopen(fd, 'w') as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, self.path)
        except Exception:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
            raise

    def cache_playlist(self, playlist, items, cached_at=None):
        """cached_at is epoch seconds; it dates the signed links inside items"""
        self.playlist = playlist
        self.items = list(items)
        self.cached_at = cached_at if cached_at is not None else time.time()
        self.save()

    def clear_playlist(self):
        self.playlist = None
        self.items = []
        self.cached_at = None
        self.save()

    def reset(self, device_key=None):
        """Forget everything; used when the device is re-paired"""
        self.device_key = device_key
        self.session_token = None
        self.clear_playlist()
