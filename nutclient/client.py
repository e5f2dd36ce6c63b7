# NUT Client - Client
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides the Client class: a background thread that keeps a single
# connection to a NUT server alive, reconnects after failures, and serves
# caller requests over that connection one at a time.
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

"""nutclient.client

Client: owns the connection lifecycle for one NUT server.

High-level responsibilities
- Dial the server, optionally log in, and announce the connection through
  ``connected_fn``.
- Serve caller requests (``get``, ``list``, ``run_command``) strictly one at
  a time over the single socket, interleaved with an optional keep-alive.
- On any transport or protocol failure, drop the connection, announce it
  through ``disconnected_fn`` and dial again after ``reconnect_interval``.
- ``close()`` stops everything and returns only once the background thread
  has exited, so no callback fires after it returns.

Lifecycle
    idle -> connecting -> serving -> backoff -> connecting ... -> closed

Design notes and thread safety
- All socket I/O happens on the background thread. Callers enqueue a
  request together with a reply slot (an Event plus storage) and block on
  the slot; there are no request identifiers, correlation relies on the
  dispatcher running a single exchange at a time.
- ``self._lock`` guards the phase and the active connection. Requests are
  only enqueued while serving; whenever the phase leaves serving the queue
  is drained and every pending request is answered, so callers never wait
  on a request that will not run.
- The shutdown event doubles as the cancellation token of the active
  Connection; ``close()`` also shuts the socket down so a blocked read
  returns immediately. An exchange interrupted this way raises
  CanceledError in the caller.
- Callbacks run on the background thread. They must not block on requests
  to this client; hand work to another thread instead (see Monitor).
"""
from __future__ import annotations

import logging
import queue
import threading
import time
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

from .config import ClientConfig
from .connection import Connection, Request, dial
from .errors import CanceledError, NotConnectedError, NUTError, ServerError, TransportError

log = logging.getLogger(__name__)

_IDLE = "idle"
_CONNECTING = "connecting"
_SERVING = "serving"
_BACKOFF = "backoff"
_CLOSED = "closed"

# Wakes the dispatcher when close() is called.
_STOP = object()


class _Pending:
    """Reply slot for one queued request; resolved exactly once."""

    def __init__(self, request: Request) -> None:
        self.request = request
        self._event = threading.Event()
        self._result: Any = None
        self._error: Optional[BaseException] = None

    def resolve(self, result: Any) -> None:
        if not self._event.is_set():
            self._result = result
            self._event.set()

    def fail(self, exc: BaseException) -> None:
        if not self._event.is_set():
            self._error = exc
            self._event.set()

    def wait(self) -> Any:
        self._event.wait()
        if self._error is not None:
            raise self._error
        return self._result


class Client:
    """Persistent, self-healing connection to a NUT server.

    Either pass a :class:`ClientConfig` or its fields as keyword arguments::

        with Client(addr="nas:3493", name="ups") as client:
            client.get_var("ups.status")
    """

    def __init__(self, config: Optional[ClientConfig] = None, **kwargs: Any):
        if config is None:
            config = ClientConfig(**kwargs)
        elif kwargs:
            raise TypeError("pass either a ClientConfig or keyword arguments, not both")
        self._config = config

        # Guards _phase and _conn.
        self._lock = threading.Lock()
        self._phase = _IDLE
        self._conn: Optional[Connection] = None

        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._requests: "queue.Queue[Any]" = queue.Queue()
        self._last_error: Optional[str] = None

    @property
    def config(self) -> ClientConfig:
        return self._config

    def start(self) -> None:
        with self._lock:
            if self._phase == _CLOSED:
                raise RuntimeError("client is closed")
            if self._thread is not None:
                return
            self._phase = _CONNECTING
            self._thread = threading.Thread(target=self._run, daemon=True, name="nut-client")
        self._thread.start()
        log.debug("client thread started for %s", self._config.addr)

    def close(self) -> None:
        """Shut down and wait for the background thread.

        Safe to call more than once. Requests still queued or in flight fail
        with CanceledError.
        """
        with self._lock:
            self._stop_event.set()
            thread, conn = self._thread, self._conn
            if thread is None:
                self._phase = _CLOSED
        self._requests.put(_STOP)
        if conn is not None:
            conn.abort()
        if thread is not None and thread is not threading.current_thread():
            thread.join()

    def __enter__(self) -> "Client":
        self.start()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    # Lifecycle
    def _run(self) -> None:
        try:
            while not self._stop_event.is_set():
                conn = self._connect()
                if conn is not None:
                    self._serve(conn)
                if self._stop_event.is_set():
                    break
                self._set_phase(_BACKOFF)
                log.debug("reconnecting in %.1fs", self._config.reconnect_interval)
                if self._stop_event.wait(self._config.reconnect_interval):
                    break
                self._set_phase(_CONNECTING)
        finally:
            self._set_phase(_CLOSED)
            log.debug("client thread stopped")

    def _connect(self) -> Optional[Connection]:
        host, port = self._config.host, self._config.port
        log.debug("connecting to %s:%s", host, port)
        try:
            sock = dial(host, port, self._config.reconnect_interval, self._stop_event)
        except CanceledError:
            return None
        except TransportError as exc:
            self._last_error = str(exc)
            log.debug("connect failed: %s", exc)
            return None
        except Exception as exc:
            self._last_error = f"connect failed: {exc}"
            log.exception("unexpected error connecting to %s:%s", host, port)
            return None

        conn = Connection(sock, self._stop_event, self._config.io_timeout)
        if self._config.username is not None:
            try:
                conn.login(self._config.username, self._config.password or "")
            except CanceledError:
                conn.close()
                return None
            except NUTError as exc:
                self._last_error = f"login failed: {exc}"
                log.warning("login to %s:%s failed: %s", host, port, exc)
                conn.close()
                return None
            except Exception as exc:
                self._last_error = f"login failed: {exc}"
                log.exception("unexpected error logging in to %s:%s", host, port)
                conn.close()
                return None

        with self._lock:
            if self._stop_event.is_set():
                conn.close()
                return None
            self._conn = conn
            self._phase = _SERVING
        self._last_error = None
        log.debug("connected to %s:%s", host, port)
        self._notify(self._config.connected_fn, "connected")
        return conn

    def _serve(self, conn: Connection) -> None:
        try:
            error = self._dispatch(conn)
        finally:
            with self._lock:
                self._conn = None
            conn.close()
        if error is None or self._stop_event.is_set():
            return
        self._last_error = str(error)
        log.debug("connection lost: %s", error)
        self._set_phase(_BACKOFF)
        self._notify(self._config.disconnected_fn, "disconnected")

    def _set_phase(self, phase: str) -> None:
        with self._lock:
            self._phase = phase
            if phase == _SERVING:
                return
            drained = []
            while True:
                try:
                    drained.append(self._requests.get_nowait())
                except queue.Empty:
                    break
        for item in drained:
            if item is _STOP:
                continue
            if self._stop_event.is_set():
                item.fail(CanceledError())
            else:
                item.fail(NotConnectedError("connection lost"))

    def _notify(self, fn: Optional[Callable[[], None]], what: str) -> None:
        if fn is None:
            return
        try:
            fn()
        except Exception:
            log.exception("%s callback failed", what)

    # Dispatcher
    def _dispatch(self, conn: Connection) -> Optional[BaseException]:
        """Serve requests until shutdown (returns None) or a fatal error (returns it)."""
        keepalive = self._config.keepalive_interval
        next_keepalive = None if keepalive is None else time.monotonic() + keepalive
        while not self._stop_event.is_set():
            timeout = None if next_keepalive is None else max(0.0, next_keepalive - time.monotonic())
            try:
                item = self._requests.get(timeout=timeout)
            except queue.Empty:
                try:
                    conn.send(Request.keepalive())
                except ServerError as exc:
                    log.debug("keep-alive rejected: %s", exc)
                except NUTError as exc:
                    return exc
                except Exception as exc:
                    log.exception("unexpected error during keep-alive")
                    return exc
                next_keepalive = time.monotonic() + keepalive
                continue

            if item is _STOP:
                continue
            if self._stop_event.is_set():
                item.fail(CanceledError())
                return None

            try:
                result = conn.send(item.request)
            except ServerError as exc:
                item.fail(exc)
            except NUTError as exc:
                item.fail(exc)
                return exc
            except Exception as exc:
                log.exception("unexpected error running %s", item.request)
                item.fail(exc)
                return exc
            else:
                item.resolve(result)
            if keepalive is not None:
                next_keepalive = time.monotonic() + keepalive
        return None

    def _submit(self, request: Request) -> Any:
        # surfaces unencodable tokens in the caller's thread
        request.command_line()
        pending = _Pending(request)
        with self._lock:
            if self._phase == _CLOSED:
                raise NotConnectedError("client closed")
            if self._stop_event.is_set():
                raise CanceledError("client is closing")
            if self._phase != _SERVING:
                raise NotConnectedError(f"not connected ({self._phase})")
            self._requests.put(pending)
        return pending.wait()

    # Public requests
    def get(self, path: Union[str, Sequence[str]]) -> str:
        """``GET <path>``; e.g. ``get("VAR ups ups.status")`` -> ``"OL"``."""
        return self._submit(Request.get(path))

    def list(self, path: Union[str, Sequence[str]]) -> List[List[str]]:
        """``LIST <path>``; each row is the reply line minus the echoed path."""
        return self._submit(Request.list(path))

    def run_command(self, name: str, *args: str) -> None:
        """Send ``<name> <args...>`` and expect ``OK``."""
        self._submit(Request.run(name, *args))

    def get_var(self, var: str) -> str:
        return self.get(("VAR", self._config.name, var))

    def list_vars(self) -> Dict[str, str]:
        rows = self.list(("VAR", self._config.name))
        return {row[0]: " ".join(row[1:]) for row in rows if row}

    # Status
    @property
    def connected(self) -> bool:
        with self._lock:
            return self._phase == _SERVING

    def get_connection_status(self) -> Dict[str, Any]:
        """Return connection status with `connected` and optional `last_error`."""
        with self._lock:
            return {"connected": self._phase == _SERVING, "last_error": self._last_error}
