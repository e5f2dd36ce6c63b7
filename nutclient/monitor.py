# NUT Client - Power Monitor
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides the Monitor class: polls a UPS's status through a Client and turns
# it into "power lost" / "power restored" callbacks.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""nutclient.monitor

Monitor: watches a UPS for power events.

- Wraps a :class:`nutclient.Client` and forwards its connected/disconnected
  notifications to the configured callbacks.
- A poller thread reads ``ups.status`` every ``poll_interval`` while the
  client is connected and evaluates it with ``MonitorConfig.is_on_battery``.
- ``power_lost_fn`` fires when the UPS goes from mains to battery and
  ``power_restored_fn`` on the way back. The monitor starts out assuming
  mains power, so a UPS already on battery at startup reports power lost on
  the first poll. The last known state survives reconnects.

Connection notifications reach the poller through a queue rather than by
calling the client from the client's own thread.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Any, Callable, Dict, Optional

from .client import Client
from .config import MonitorConfig
from .errors import NUTError

log = logging.getLogger(__name__)


class Monitor:
    def __init__(self, config: Optional[MonitorConfig] = None, **kwargs: Any):
        if config is None:
            config = MonitorConfig(**kwargs)
        elif kwargs:
            raise TypeError("pass either a MonitorConfig or keyword arguments, not both")
        self._config = config

        self._lock = threading.Lock()
        self._on_battery = False

        # True/False on connect/disconnect, None to stop the poller
        self._conn_events: "queue.Queue[Optional[bool]]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None
        self._client = Client(config.client_config(self._connected, self._disconnected))

    @property
    def client(self) -> Client:
        return self._client

    @property
    def on_battery(self) -> bool:
        with self._lock:
            return self._on_battery

    @property
    def connected(self) -> bool:
        return self._client.connected

    def get_connection_status(self) -> Dict[str, Any]:
        return self._client.get_connection_status()

    def get_var(self, var: str) -> str:
        return self._client.get_var(var)

    def list_vars(self) -> Dict[str, str]:
        return self._client.list_vars()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        # connection events queue up until the poller runs
        self._client.start()
        self._thread = threading.Thread(target=self._poll_loop, daemon=True, name="nut-monitor")
        self._thread.start()
        log.debug("monitor started for %s@%s", self._config.name, self._config.addr)

    def close(self) -> None:
        """Stop polling and close the client; no callback fires after this returns."""
        self._client.close()
        self._conn_events.put(None)
        if self._thread and self._thread is not threading.current_thread():
            self._thread.join()
        log.debug("monitor stopped")

    def __enter__(self) -> "Monitor":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _connected(self) -> None:
        self._conn_events.put(True)
        self._notify(self._config.connected_fn, "connected")

    def _disconnected(self) -> None:
        self._conn_events.put(False)
        self._notify(self._config.disconnected_fn, "disconnected")

    def _notify(self, fn: Optional[Callable[[], None]], what: str) -> None:
        if fn is None:
            return
        try:
            fn()
        except Exception:
            log.exception("%s callback failed", what)

    def _poll_loop(self) -> None:
        connected = False
        while True:
            timeout = None
            if connected:
                self._poll_once()
                timeout = self._config.poll_interval
            try:
                event = self._conn_events.get(timeout=timeout)
            except queue.Empty:
                continue
            if event is None:
                return
            connected = event

    def _poll_once(self) -> None:
        try:
            status = self._client.get_var("ups.status")
        except NUTError as exc:
            # the client reconnects on its own; try again next poll
            log.debug("status poll failed: %s", exc)
            return
        self.process_status(status)

    def process_status(self, status: str) -> None:
        """Evaluate one ``ups.status`` value and fire edge callbacks."""
        try:
            on_battery = self._config.is_on_battery(status)
        except Exception:
            log.exception("on-battery predicate failed for status %r", status)
            return
        with self._lock:
            was_on_battery = self._on_battery
            self._on_battery = on_battery
        if not was_on_battery and on_battery:
            log.debug("power lost (status %r)", status)
            self._notify(self._config.power_lost_fn, "power lost")
        elif was_on_battery and not on_battery:
            log.debug("power restored (status %r)", status)
            self._notify(self._config.power_restored_fn, "power restored")
