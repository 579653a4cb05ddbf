"""
Player Runtime
Cooperative, timer-driven state machine: content advance, sync polling,
heartbeats and remote commands
"""
import os
import enum
import time
import shlex
import logging
import subprocess
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from functools import partial

from player_client.api_client import ApiError, Unauthorized
from player_client.media_cache import MediaCache
from player_client.settings import (SYNC_INTERVAL, HEARTBEAT_INTERVAL, DEFAULT_ITEM_SECONDS, TICK_SECONDS,
                                    IO_WORKERS, CACHE_DIR, MEDIA_DIR, URL_REFRESH_SECONDS, REBOOT_COMMAND)

logger = logging.getLogger(__name__)

SUCCESS = 'success'
FAILED = 'failed'


class PlayerState(enum.Enum):
    UNINITIALIZED = 'uninitialized'  # no device key stored
    SYNCING = 'syncing'              # first poll in flight
    PLAYING = 'playing'
    NO_CONTENT = 'no-content'
    OFFLINE = 'offline'              # poll failed and nothing cached
    DUPLICATE = 'duplicate'          # displaced by another device; terminal until re-pair


def system_reboot():
    subprocess.run(shlex.split(REBOOT_COMMAND), check=False)


class PlayerRuntime:
    """
    Drives the player from a single loop thread

    tick() is the only entry point that changes state. Network and other
    blocking work runs on an I/O executor and its results are applied on the
    next tick, so content advance never waits on the network.

    Args:
        store: PlayerStore holding key, token and cached playlist
        api: PlayerApiClient (or anything with the same methods)
        display: Display backend
        executor: concurrent.futures style executor for I/O
        clock: Monotonic seconds, drives all timers
        wall_clock: Returns aware UTC datetimes for playback logs
        reboot: Callable run after a reboot command is acknowledged
        media_dir: Where downloaded media is kept
        url_refresh_seconds: Age after which cached signed links are renewed by a full sync
    """

    def __init__(self, store, api, display, executor=None, clock=time.monotonic, wall_clock=None,
                 sync_interval=SYNC_INTERVAL, heartbeat_interval=HEARTBEAT_INTERVAL,
                 reboot=system_reboot, screenshot_dir=CACHE_DIR, media_dir=MEDIA_DIR,
                 url_refresh_seconds=URL_REFRESH_SECONDS):
        self.store = store
        self.api = api
        self.display = display
        self.executor = executor or ThreadPoolExecutor(max_workers=IO_WORKERS, thread_name_prefix='signbox-io')
        self.clock = clock
        self.wall_clock = wall_clock or (lambda: datetime.now(timezone.utc))
        self.sync_interval = sync_interval
        self.heartbeat_interval = heartbeat_interval
        self.reboot = reboot
        self.screenshot_dir = screenshot_dir
        self.media_cache = MediaCache(media_dir)
        self.url_refresh_seconds = url_refresh_seconds

        self.state = PlayerState.UNINITIALIZED
        self.current_index = 0
        self.polling_suspended = False

        self._epoch = 0
        self._pending = []
        self._next_sync_at = None
        self._next_heartbeat_at = None
        self._advance_at = None
        self._sync_in_flight = False
        self._fetch_in_flight = False
        self._heartbeat_in_flight = False
        self._force_full_sync = False
        self._current_item = None
        self._item_started_at = None
        self._running = False

        self._command_handlers = {
            'reboot': self._cmd_reboot,
            'screenshot': self._cmd_screenshot,
            'clear_cache': self._cmd_clear_cache,
            'refresh': self._cmd_refresh,
        }

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self):
        """Resume from persisted state; cached content plays before any network call"""
        self.api.device_key = self.store.device_key
        if not self.store.device_key:
            self._set_state(PlayerState.UNINITIALIZED, force=True)
            return

        self._begin_polling()
        if self.store.has_content:
            logger.info(f'Resuming cached playlist v{self.store.version} ({len(self.store.items)} items)')
            self._start_playback()
        else:
            self._set_state(PlayerState.SYNCING)

    def pair(self, device_key):
        """
        Switch to a new device key

        Timers, in-flight results, cache, key and session token are all
        dropped before the new key is used.
        """
        logger.info('Re-pairing device' if device_key else 'Unpairing device')
        self._epoch += 1
        self._pending = []
        self._advance_at = None
        self._next_sync_at = None
        self._next_heartbeat_at = None
        self._sync_in_flight = False
        self._fetch_in_flight = False
        self._heartbeat_in_flight = False
        self._force_full_sync = False
        self._current_item = None
        self._item_started_at = None
        self.current_index = 0

        self.store.reset(device_key)
        self.api.device_key = device_key
        self.display.clear_cache()
        self.media_cache.clear()

        if device_key:
            self._begin_polling()
            self._set_state(PlayerState.SYNCING, force=True)
        else:
            self._set_state(PlayerState.UNINITIALIZED, force=True)

    def unpair(self):
        self.pair(None)

    def run(self, tick_seconds=TICK_SECONDS):
        """Main run loop"""
        logger.info('Starting SignBox player...')
        self.start()
        self._running = True

        while self._running:
            try:
                self.tick()
                time.sleep(tick_seconds)
            except KeyboardInterrupt:
                logger.info('Received shutdown signal')
                break
            except Exception as e:
                logger.error(f'Error in main loop: {e}')
                time.sleep(1)

        self.shutdown()

    def stop(self):
        self._running = False

    def shutdown(self):
        self.display.close()
        self.executor.shutdown(wait=False)
        logger.info('SignBox player stopped')

    # ------------------------------------------------------------------
    # Loop
    # ------------------------------------------------------------------

    def tick(self):
        """One loop iteration: apply finished I/O, then fire due timers"""
        self._drain_completed()
        now = self.clock()

        if self.state == PlayerState.PLAYING and self._advance_at is not None and now >= self._advance_at:
            self.advance()

        # Session calls never overlap. Holding a token, heartbeat first: a device
        # displaced since its last sync must learn it before a sync reclaims the session
        if self.store.session_token and self._heartbeat_due(now):
            self._fire_heartbeat(now)
            self._drain_completed()

        if self._sync_due(now):
            self._next_sync_at = now + self.sync_interval
            self._request_sync()
            self._drain_completed()

        if self._heartbeat_due(now):
            self._fire_heartbeat(now)

        self._drain_completed()

    def _sync_due(self, now):
        return self._next_sync_at is not None and now >= self._next_sync_at and not self._heartbeat_in_flight

    def _heartbeat_due(self, now):
        # A sync in flight may replace the session token; wait for it to land
        return (self._next_heartbeat_at is not None and now >= self._next_heartbeat_at
                and not self._sync_in_flight)

    def _fire_heartbeat(self, now):
        self._next_heartbeat_at = now + self.heartbeat_interval
        self._request_heartbeat()

    def _begin_polling(self):
        now = self.clock()
        self.polling_suspended = False
        self._next_sync_at = now
        self._next_heartbeat_at = now

    def _submit(self, fn, handler, *args):
        future = self.executor.submit(fn, *args)
        self._pending.append((self._epoch, future, handler))
        return future

    def _drain_completed(self):
        # Handlers may submit more work; keep going while results are ready
        progressed = True
        while progressed:
            progressed = False
            pending, self._pending = self._pending, []
            for epoch, future, handler in pending:
                if not future.done():
                    self._pending.append((epoch, future, handler))
                    continue
                if epoch != self._epoch:
                    continue  # result belongs to a previous pairing
                progressed = True
                try:
                    handler(future)
                except Exception as e:
                    logger.error(f'Error applying I/O result: {e}')

    def _set_state(self, state, force=False):
        if state == self.state and not force:
            return
        logger.info(f'State: {self.state.value} -> {state.value}')
        self.state = state
        if state != PlayerState.PLAYING:
            self._advance_at = None
            self.display.show_message(state.value)

    # ------------------------------------------------------------------
    # Content advance
    # ------------------------------------------------------------------

    @staticmethod
    def item_duration(item):
        duration = item.get('duration_seconds')
        return duration if duration and duration > 0 else DEFAULT_ITEM_SECONDS

    def _start_playback(self):
        self.current_index = 0
        self._set_state(PlayerState.PLAYING)
        self._show_current('none')

    def _show_current(self, transition):
        item = self.store.items[self.current_index]
        self.display.show(item, transition)
        self._current_item = item
        self._item_started_at = self.wall_clock()
        self._advance_at = self.clock() + self.item_duration(item)

    def advance(self):
        """
        Move to the next item, wrapping at the end

        The incoming item's transition is applied on entry. A single-item
        playlist re-shows the same item each time its duration expires.
        """
        items = self.store.items
        if not items:
            return
        self._finish_current_item()
        self.current_index = (self.current_index + 1) % len(items)
        incoming = items[self.current_index]
        self._show_current(incoming.get('transition_type') or 'none')

    def _finish_current_item(self):
        """Report the item leaving the screen (fire-and-forget)"""
        item, started_at = self._current_item, self._item_started_at
        self._current_item = None
        self._item_started_at = None
        if item is None or started_at is None or self.polling_suspended:
            return

        ended_at = self.wall_clock()
        media = item.get('media') or {}
        entry = {
            'media_id': media.get('id'),
            'playlist_id': (self.store.playlist or {}).get('id'),
            'started_at': started_at.isoformat(),
            'ended_at': ended_at.isoformat(),
            'duration_seconds': int(round((ended_at - started_at).total_seconds()))
        }
        self._submit(self.api.log_playback, partial(self._on_background_done, 'playback log'), entry)

    def _on_background_done(self, what, future):
        try:
            future.result()
        except Unauthorized:
            self._on_unauthorized()
        except Exception as e:
            logger.debug(f'{what} failed: {e}')

    # ------------------------------------------------------------------
    # Sync
    # ------------------------------------------------------------------

    def request_sync_now(self):
        if self._next_sync_at is not None:
            self._next_sync_at = self.clock()

    def _request_sync(self):
        if (self._sync_in_flight or self._fetch_in_flight or self.polling_suspended
                or self.state == PlayerState.DUPLICATE):
            return
        self._sync_in_flight = True
        version = 0 if self._force_full_sync or self._links_expiring() else self.store.version
        self._force_full_sync = False
        self._submit(self.api.sync, self._on_sync, self.store.session_token, version)

    def _links_expiring(self):
        """Cached signed links are old enough that a full payload should replace them"""
        if not self.store.has_content or self.store.cached_at is None:
            return False
        age = self.wall_clock().timestamp() - self.store.cached_at
        # A clock that jumped backwards cannot date the links either
        return age < 0 or age >= self.url_refresh_seconds

    def _download_media(self, data):
        """Runs on the I/O executor"""
        items = data.get('items') or []
        failed = self.media_cache.fetch(self.api, items)
        if failed:
            logger.warning(f'{failed} media file(s) could not be downloaded and will be streamed')
        self.media_cache.cleanup(items)
        return data

    def _on_media_ready(self, future):
        self._fetch_in_flight = False
        try:
            data = future.result()
        except Exception as e:
            logger.error(f'Media download failed: {e}')
            return
        if self.state == PlayerState.DUPLICATE:
            return
        self._apply_playlist(data)

    def _on_sync(self, future):
        self._sync_in_flight = False
        try:
            data = future.result()
        except Unauthorized:
            self._on_unauthorized()
            return
        except Exception as e:
            logger.warning(f'Sync failed: {e}')
            self._recover_from_failure()
            return

        if self.state == PlayerState.DUPLICATE:
            return

        token = data.get('session_token')
        if token and token != self.store.session_token:
            self.store.session_token = token
            self.store.save()

        if data.get('up_to_date'):
            if not self.store.has_content:
                self._set_state(PlayerState.NO_CONTENT)
            elif self.state != PlayerState.PLAYING:
                self._start_playback()
        else:
            # The playlist is applied once its media is on disk
            self._fetch_in_flight = True
            self._submit(self._download_media, self._on_media_ready, data)

        self._handle_commands(data.get('commands') or [])

    def _apply_playlist(self, data):
        playlist = data.get('playlist') or {}
        items = data.get('items') or []
        version = data.get('version', playlist.get('version', 0))

        # Same content resent (link refresh, takeover): keep the loop where it is
        unchanged = (self.state == PlayerState.PLAYING
                     and playlist.get('id') == (self.store.playlist or {}).get('id')
                     and version == self.store.version
                     and len(items) == len(self.store.items))

        if not unchanged:
            self._finish_current_item()
        self.store.cache_playlist({
            'id': playlist.get('id'),
            'name': playlist.get('name'),
            'version': version
        }, items, cached_at=self.wall_clock().timestamp())
        logger.info(f"Cached playlist '{playlist.get('name')}' v{self.store.version} ({len(items)} items)")

        if unchanged:
            return
        if items:
            # A new playlist always restarts from its first item
            self._start_playback()
        else:
            self._set_state(PlayerState.NO_CONTENT)

    def _recover_from_failure(self):
        if self.store.has_content:
            if self.state != PlayerState.PLAYING:
                self._start_playback()
        else:
            self._set_state(PlayerState.OFFLINE)

    def _on_unauthorized(self):
        if self.polling_suspended:
            return
        logger.error('Device key rejected by the server; polling stopped until the device is re-paired')
        self.polling_suspended = True
        self._next_sync_at = None
        self._next_heartbeat_at = None
        if not self.store.has_content:
            self._set_state(PlayerState.UNINITIALIZED)

    # ------------------------------------------------------------------
    # Heartbeat
    # ------------------------------------------------------------------

    def _request_heartbeat(self):
        if self._heartbeat_in_flight or self.polling_suspended or self.state == PlayerState.DUPLICATE:
            return
        self._heartbeat_in_flight = True
        self._submit(self.api.heartbeat, self._on_heartbeat,
                     self.store.session_token, self.state.value, self.store.version)

    def _on_heartbeat(self, future):
        self._heartbeat_in_flight = False
        try:
            data = future.result()
        except Unauthorized:
            self._on_unauthorized()
            return
        except Exception as e:
            logger.debug(f'Heartbeat error: {e}')
            return

        if data.get('duplicate'):
            self._enter_duplicate()
            return

        self._handle_commands(data.get('commands') or [])

    def _enter_duplicate(self):
        logger.warning('Another device took over this device key')
        self._finish_current_item()
        self._epoch += 1
        self._next_sync_at = None
        self._next_heartbeat_at = None
        self._sync_in_flight = False
        self._fetch_in_flight = False
        self._heartbeat_in_flight = False
        self._set_state(PlayerState.DUPLICATE)

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _handle_commands(self, commands):
        for command in commands:
            name = command.get('command')
            command_id = command.get('id')
            logger.info(f'Received command {command_id}: {name}')

            handler = self._command_handlers.get(name)
            if handler is None:
                self._acknowledge(command_id, FAILED, {'error': f'Unsupported command: {name}'})
                continue
            try:
                handler(command)
            except Exception as e:
                logger.error(f'Command {name} failed: {e}')
                self._acknowledge(command_id, FAILED, {'error': str(e)})

    def _acknowledge(self, command_id, outcome, result=None):
        self._submit(self.api.acknowledge, partial(self._on_background_done, 'acknowledge'),
                     command_id, outcome, result)

    def _cmd_refresh(self, command):
        self._force_full_sync = True
        self.request_sync_now()
        self._acknowledge(command['id'], SUCCESS, {})

    def _cmd_clear_cache(self, command):
        self._finish_current_item()
        self.display.clear_cache()
        self.media_cache.clear()
        self.store.clear_playlist()
        self._set_state(PlayerState.SYNCING)
        self._force_full_sync = True
        self.request_sync_now()
        self._acknowledge(command['id'], SUCCESS, {})

    def _cmd_screenshot(self, command):
        self._submit(self._capture_and_upload, partial(self._on_screenshot_done, command['id']), command['id'])

    def _capture_and_upload(self, command_id):
        """Runs on the I/O executor"""
        os.makedirs(self.screenshot_dir, exist_ok=True)
        path = os.path.join(self.screenshot_dir, f'screenshot_{command_id}.jpg')
        if not self.display.capture_screenshot(path):
            raise RuntimeError('Screenshot capture failed')
        try:
            uploaded = self.api.upload_screenshot(path)
        finally:
            if os.path.exists(path):
                os.remove(path)
        return uploaded.get('screenshot_url')

    def _on_screenshot_done(self, command_id, future):
        try:
            url = future.result()
        except Exception as e:
            logger.error(f'Screenshot error: {e}')
            self._acknowledge(command_id, FAILED, {'error': str(e)})
            return
        self._acknowledge(command_id, SUCCESS, {'screenshot_url': url})

    def _cmd_reboot(self, command):
        self._submit(self._acknowledge_then_reboot, partial(self._on_background_done, 'reboot'), command['id'])

    def _acknowledge_then_reboot(self, command_id):
        """Runs on the I/O executor; the acknowledgement must leave before the reboot"""
        try:
            self.api.acknowledge(command_id, SUCCESS, {})
        except ApiError as e:
            logger.warning(f'Could not acknowledge reboot: {e}')
        logger.info('Rebooting...')
        self.reboot()
