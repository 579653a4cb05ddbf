"""
Display backends for the player
"""
import os
import shlex
import shutil
import logging
import subprocess

from jinja2 import Environment

from player_client.settings import BROWSER_COMMAND, CACHE_DIR, TRANSITION_SECONDS
from widgets import parse_widget_config, render_widget_html

logger = logging.getLogger(__name__)

STATE_MESSAGES = {
    'uninitialized': 'This screen is not paired yet. Run the player with --pair <device key>.',
    'syncing': 'Loading content...',
    'no-content': 'Nothing is scheduled for this screen right now.',
    'offline': 'Cannot reach the server and no content is cached. Retrying...',
    'duplicate': 'Another device is using this screen\'s key. Re-pair this device to take it back.',
}

_MESSAGE_TEMPLATE = Environment(autoescape=True).from_string(
    '<!DOCTYPE html><html><head><meta charset="utf-8"></head>'
    '<body style="margin:0; height:100vh; background:#000; color:#fff; font-family:sans-serif; '
    'display:flex; align-items:center; justify-content:center;">'
    '<p style="font-size:3vw; text-align:center; max-width:80vw;">{{ message }}</p></body></html>'
)


class Display:
    """Interface the runtime drives; show() must return quickly"""

    def show(self, item, transition='none'):
        raise NotImplementedError

    def show_message(self, state):
        raise NotImplementedError

    def capture_screenshot(self, path):
        """Write a screenshot to path; returns True on success"""
        return False

    def clear_cache(self):
        pass

    def close(self):
        pass


class LogDisplay(Display):
    """Headless display that only logs; useful on servers and in development"""

    def show(self, item, transition='none'):
        media = item.get('media') or {}
        logger.info(f"Showing {media.get('type')} '{media.get('name')}' "
                    f"for {item.get('duration_seconds')}s (transition: {transition})")

    def show_message(self, state):
        logger.info(f'[{state}] {STATE_MESSAGES.get(state, state)}')


class MpvDisplay(Display):
    """
    Full-screen output: mpv for images and videos, a kiosk browser for web
    pages and rendered widgets
    """

    def __init__(self, cache_dir=CACHE_DIR, browser_command=BROWSER_COMMAND):
        self.cache_dir = cache_dir
        self.browser_command = shlex.split(browser_command)
        self.process = None
        self._exiting = []
        os.makedirs(self.cache_dir, exist_ok=True)

    def _reap(self):
        """Collect exited processes; anything that outlived a whole item is killed"""
        still_running = []
        for process in self._exiting:
            if process.poll() is None:
                process.kill()
                still_running.append(process)
        self._exiting = [process for process in still_running if process.poll() is None]

    def _stop(self):
        """Ask the current output process to exit; never waits, show() runs on the loop thread"""
        self._reap()
        if self.process:
            self.process.terminate()
            self._exiting.append(self.process)
            self.process = None

    def _launch(self, cmd):
        self._stop()
        try:
            mpv_log_path = os.path.join(self.cache_dir, 'output.log')
            with open(mpv_log_path, 'a') as log_file:
                self.process = subprocess.Popen(cmd, stdout=log_file, stderr=subprocess.STDOUT)
        except FileNotFoundError:
            logger.error(f'{cmd[0]} not found. Please install it (e.g. sudo apt-get install {cmd[0]})')
        except Exception as e:
            logger.error(f'Failed to start {cmd[0]}: {e}')

    def _mpv_command(self, url, transition):
        cmd = [
            'mpv',
            '--fullscreen',
            '--no-osc',
            '--no-osd-bar',
            '--hwdec=auto',
            '--image-display-duration=inf',
            '--loop-file=inf',
        ]
        if transition in ('fade', 'slide'):
            # mpv has no slide filter; both entrances use a fade-in
            cmd.append(f'--vf=lavfi=[fade=t=in:st=0:d={TRANSITION_SECONDS}]')
        return cmd + [url]

    def _widget_page(self, item):
        media = item.get('media') or {}
        config = parse_widget_config(media.get('config'))
        if config is None:
            return None
        path = os.path.join(self.cache_dir, f"widget_{media.get('id')}.html")
        with open(path, 'w', encoding='utf-8') as f:
            f.write(render_widget_html(config))
        return f'file://{path}'

    @staticmethod
    def _source(media):
        """Downloaded copy when present, the signed link otherwise"""
        local_path = media.get('local_path')
        if local_path and os.path.exists(local_path):
            return local_path
        return media.get('url')

    def show(self, item, transition='none'):
        media = item.get('media') or {}
        media_type = media.get('type')

        if media_type == 'widget':
            page = self._widget_page(item)
            if page is None:
                logger.warning(f"Widget {media.get('id')} has no usable config")
                return
            self._launch(self.browser_command + [page])
        elif media_type == 'url':
            if media.get('url'):
                self._launch(self.browser_command + [media['url']])
        elif self._source(media):
            self._launch(self._mpv_command(self._source(media), transition))
        else:
            logger.warning(f"Media {media.get('id')} has no URL")

    def show_message(self, state):
        message = STATE_MESSAGES.get(state, state)
        logger.info(f'[{state}] {message}')
        path = os.path.join(self.cache_dir, 'message.html')
        with open(path, 'w', encoding='utf-8') as f:
            f.write(_MESSAGE_TEMPLATE.render(message=message))
        self._launch(self.browser_command + [f'file://{path}'])

    def capture_screenshot(self, path):
        """Capture with scrot (X11)"""
        try:
            result = subprocess.run(['scrot', '--overwrite', path, '-q', '80'], capture_output=True, timeout=10)
            return result.returncode == 0 and os.path.exists(path)
        except (OSError, subprocess.TimeoutExpired) as e:
            logger.error(f'Screenshot error: {e}')
            return False

    def clear_cache(self):
        shutil.rmtree(self.cache_dir, ignore_errors=True)
        os.makedirs(self.cache_dir, exist_ok=True)

    def close(self):
        self._stop()
        for process in self._exiting:
            try:
                process.wait(timeout=5)
            except subprocess.TimeoutExpired:
                process.kill()
        self._exiting = []
