"""
Player Client Settings
Environment-driven configuration for the signage player
"""
import os
import sys
import logging

# Installation directory (state, cache and logs live here)
INSTALL_DIR = os.getenv('SIGNBOX_HOME', os.path.join(os.path.expanduser('~'), '.signbox'))
STATE_FILE = os.path.join(INSTALL_DIR, 'state.json')
CACHE_DIR = os.path.join(INSTALL_DIR, 'cache')
MEDIA_DIR = os.path.join(INSTALL_DIR, 'media')
LOG_FILE = os.path.join(INSTALL_DIR, 'logs', 'player.log')

SERVER_URL = os.getenv('SIGNBOX_SERVER_URL', 'http://127.0.0.1:5000')

SYNC_INTERVAL = int(os.getenv('SIGNBOX_SYNC_INTERVAL', '30'))  # seconds
HEARTBEAT_INTERVAL = int(os.getenv('SIGNBOX_HEARTBEAT_INTERVAL', '60'))  # seconds
# Must stay below the server's SIGNED_URL_EXPIRES_SECONDS (3600)
URL_REFRESH_SECONDS = int(os.getenv('SIGNBOX_URL_REFRESH_SECONDS', '3000'))
DEFAULT_ITEM_SECONDS = 10
TRANSITION_SECONDS = 0.8
TICK_SECONDS = 0.25

# A hung request would stall its I/O worker, never the render loop
REQUEST_TIMEOUT = 10
UPLOAD_TIMEOUT = 30
DOWNLOAD_TIMEOUT = 30

IO_WORKERS = 2

# Display backends
BROWSER_COMMAND = os.getenv('SIGNBOX_BROWSER', 'chromium-browser --kiosk --noerrdialogs --incognito')
REBOOT_COMMAND = os.getenv('SIGNBOX_REBOOT_COMMAND', 'sudo reboot')


def setup_logging(log_file=LOG_FILE, level=logging.INFO):
    """Log to a file next to the player state and to stdout"""
    os.makedirs(os.path.dirname(log_file), exist_ok=True)
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=[
            logging.FileHandler(log_file),
            logging.StreamHandler(sys.stdout)
        ]
    )
