"""
Local copies of file-backed media

Signed links expire and the network comes and goes, so images, videos and
widget backgrounds are downloaded once and played from disk.
"""
import os
import shutil
import logging

from player_client.api_client import API_PREFIX, ApiError

logger = logging.getLogger(__name__)

DOWNLOADABLE_TYPES = ('image', 'video')
SIGNED_MEDIA_PATH = f'{API_PREFIX}/media/'


class MediaCache:
    """Files are named after their media id; an existing file is never fetched again"""

    def __init__(self, directory):
        self.directory = directory

    def path_for(self, media_id):
        return os.path.join(self.directory, f'media_{media_id}')

    def _download(self, api, media_id, url):
        """Returns the local path, or None when the download failed"""
        path = self.path_for(media_id)
        if os.path.exists(path):
            return path

        logger.info(f'Downloading media {media_id}')
        try:
            size = api.download_media(url, path)
        except (ApiError, OSError) as e:
            logger.error(f'Download error for media {media_id}: {e}')
            return None
        logger.info(f'Downloaded media {media_id} ({size} bytes)')
        return path

    def fetch(self, api, items):
        """
        Download whatever the items need and point them at the local files

        Runs on the I/O executor. Items whose download fails keep their
        signed URL and are streamed instead.

        Returns:
            Number of files that could not be downloaded
        """
        os.makedirs(self.directory, exist_ok=True)
        failed = 0

        for item in items:
            media = item.get('media') or {}
            if media.get('type') in DOWNLOADABLE_TYPES and media.get('url'):
                path = self._download(api, media.get('id'), media['url'])
                if path:
                    media['local_path'] = path
                else:
                    failed += 1

            config = media.get('config')
            if media.get('type') == 'widget' and isinstance(config, dict):
                for background in config.get('backgrounds') or []:
                    url = background.get('preview_url')
                    if not url or SIGNED_MEDIA_PATH not in url:
                        continue
                    path = self._download(api, background.get('media_id'), url)
                    if path:
                        background['preview_url'] = f'file://{path}'
                    else:
                        failed += 1

        return failed

    def referenced_files(self, items):
        names = set()
        for item in items:
            media = item.get('media') or {}
            if media.get('local_path'):
                names.add(os.path.basename(media['local_path']))
            config = media.get('config')
            if isinstance(config, dict):
                for background in config.get('backgrounds') or []:
                    url = background.get('preview_url') or ''
                    if url.startswith('file://'):
                        names.add(os.path.basename(url))
        return names

    def cleanup(self, items):
        """Remove files that are no longer assigned"""
        if not os.path.isdir(self.directory):
            return
        keep = self.referenced_files(items)
        for name in os.listdir(self.directory):
            path = os.path.join(self.directory, name)
            if os.path.isfile(path) and name not in keep:
                logger.info(f'Removing unassigned media: {name}')
                try:
                    os.remove(path)
                except OSError as e:
                    logger.error(f'Failed to remove {name}: {e}')

    def clear(self):
        shutil.rmtree(self.directory, ignore_errors=True)
