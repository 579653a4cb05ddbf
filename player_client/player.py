#!/usr/bin/env python3
"""
SignBox Player
Entry point: pairs the device or runs the full-screen playback loop
"""
import argparse
import logging
import os

from player_client.api_client import PlayerApiClient
from player_client.display import LogDisplay, MpvDisplay
from player_client.runtime import PlayerRuntime
from player_client.settings import SERVER_URL, STATE_FILE, CACHE_DIR, MEDIA_DIR, setup_logging
from player_client.store import PlayerStore

logger = logging.getLogger(__name__)


def build_runtime(server_url=SERVER_URL, state_file=STATE_FILE, headless=False):
    """Cache and media directories live next to the state file"""
    base_dir = os.path.dirname(os.path.abspath(state_file))
    cache_dir = os.path.join(base_dir, os.path.basename(CACHE_DIR))
    store = PlayerStore(state_file).load()
    api = PlayerApiClient(server_url, device_key=store.device_key)
    display = LogDisplay() if headless else MpvDisplay(cache_dir=cache_dir)
    return PlayerRuntime(store, api, display, screenshot_dir=cache_dir,
                         media_dir=os.path.join(base_dir, os.path.basename(MEDIA_DIR)))


def main(argv=None):
    """Main entry point"""
    parser = argparse.ArgumentParser(description='SignBox signage player')
    parser.add_argument('--server', default=SERVER_URL, help='CMS base URL')
    parser.add_argument('--state-file', default=STATE_FILE, help='Where the player keeps its state')
    parser.add_argument('--pair', metavar='DEVICE_KEY',
                        help='Pair with a device key (clears cached content), then start playing')
    parser.add_argument('--unpair', action='store_true', help='Forget the device key and cached content')
    parser.add_argument('--headless', action='store_true', help='Log instead of driving a screen')
    args = parser.parse_args(argv)

    setup_logging(os.path.join(os.path.dirname(os.path.abspath(args.state_file)), 'logs', 'player.log'))

    if args.pair or args.unpair:
        # Pairing only rewrites state; nothing is put on screen for it
        pairing = build_runtime(args.server, args.state_file, headless=True)
        pairing.pair(args.pair)
        pairing.shutdown()
        logger.info('Paired' if args.pair else 'Unpaired')
        if args.unpair:
            return 0

    runtime = build_runtime(args.server, args.state_file, args.headless)
    runtime.run()
    return 0


if __name__ == '__main__':
    raise SystemExit(main())
