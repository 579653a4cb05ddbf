"""
HTTP client for the player API
"""
import os
import logging

import requests

from player_client.settings import REQUEST_TIMEOUT, UPLOAD_TIMEOUT, DOWNLOAD_TIMEOUT

logger = logging.getLogger(__name__)

API_PREFIX = '/api/v1/player'


class ApiError(Exception):
    """Network failure or unexpected server response"""
    pass


class Unauthorized(ApiError):
    """Device key unknown or revoked; only re-pairing recovers"""
    pass


class PlayerApiClient:
    """Thin requests wrapper; every call raises instead of returning error codes"""

    def __init__(self, server_url, device_key=None, session=None, timeout=REQUEST_TIMEOUT):
        self.server_url = server_url.rstrip('/')
        self.device_key = device_key
        self.session = session or requests.Session()
        self.timeout = timeout

    def get_headers(self, session_token=None):
        """Get API request headers"""
        headers = {'X-Device-Key': self.device_key or ''}
        if session_token:
            headers['X-Session-Token'] = session_token
        return headers

    def _request(self, method, path, session_token=None, timeout=None, **kwargs):
        url = f'{self.server_url}{API_PREFIX}{path}'
        try:
            response = self.session.request(
                method,
                url,
                headers=self.get_headers(session_token),
                timeout=timeout or self.timeout,
                **kwargs
            )
        except requests.RequestException as e:
            raise ApiError(f'{method} {path} failed: {e}') from e

        if response.status_code == 401:
            raise Unauthorized('Device key rejected')
        if not response.ok:
            raise ApiError(f'{method} {path} returned {response.status_code}')

        try:
            return response.json()
        except ValueError as e:
            raise ApiError(f'{method} {path} returned invalid JSON') from e

    def sync(self, session_token, client_version):
        return self._request('POST', '/sync', session_token,
                             json={'client_version': client_version})

    def heartbeat(self, session_token, status, client_version):
        return self._request('POST', '/heartbeat', session_token,
                             json={'status': status, 'client_version': client_version})

    def acknowledge(self, command_id, outcome, result=None):
        return self._request('POST', '/commands/acknowledge',
                             json={'command_id': command_id, 'outcome': outcome, 'result': result})

    def log_playback(self, entry):
        return self._request('POST', '/playback/log', json=entry)

    def download_media(self, url, dest_path):
        """
        Stream a signed media URL to dest_path

        The signature authorizes the request, so no device headers are sent.
        A partial download never takes the final name.

        Returns:
            Number of bytes written
        """
        tmp_path = f'{dest_path}.part'
        downloaded = 0
        try:
            response = self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT)
            if response.status_code != 200:
                raise ApiError(f'Download returned {response.status_code}')
            with open(tmp_path, 'wb') as f:
                for chunk in response.iter_content(chunk_size=8192):
                    if chunk:
                        f.write(chunk)
                        downloaded += len(chunk)
            os.replace(tmp_path, dest_path)
        except requests.RequestException as e:
            raise ApiError(f'Download failed: {e}') from e
        finally:
            if os.path.exists(tmp_path):
                os.remove(tmp_path)
        return downloaded

    def upload_screenshot(self, path):
        """Upload an image file; returns the server's {storage_path, screenshot_url}"""
        with open(path, 'rb') as f:
            return self._request('POST', '/screenshot', timeout=UPLOAD_TIMEOUT,
                                 files={'file': (path.rsplit('/', 1)[-1], f, 'image/jpeg')})
