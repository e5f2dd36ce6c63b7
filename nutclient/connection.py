# NUT Client - Connection
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides the Connection class: a single TCP socket to a NUT server with a
# line reader bound to it, performing one command/reply exchange at a time.
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

"""nutclient.connection

Connection: owns one connected socket and turns "write a command line, read
the reply" into a single call.

Design notes
- The socket is read in short slices (``READ_SLICE`` seconds). Between slices
  the cancellation event handed in by the owner is checked, so a blocked
  read gives up promptly once the client is shutting down.
- ``abort()`` may be called from another thread to shut the socket down under
  a pending read. A transport failure observed while the cancellation event
  is set is reported as CanceledError rather than TransportError.
- A Connection is not thread-safe and is never reused after it raised
  TransportError, ProtocolError or CanceledError; the owner closes it and
  dials again.
"""
from __future__ import annotations

import errno
import logging
import os
import select
import socket
import threading
import time
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple, Union

from .errors import CanceledError, ProtocolError, TransportError
from .parser import ResponseParser, format_line, tokenize

log = logging.getLogger(__name__)

# Seconds a single recv()/select() may block before the cancellation event
# is checked again.
READ_SLICE = 0.25

# Longest reply line accepted before the connection is given up.
MAX_LINE = 64 * 1024

GET = "GET"
LIST = "LIST"
RUN = "RUN"
KEEPALIVE = "KEEPALIVE"

_CONNECT_PENDING = {
    errno.EINPROGRESS,
    errno.EWOULDBLOCK,
    errno.EAGAIN,
    getattr(errno, "WSAEWOULDBLOCK", errno.EWOULDBLOCK),
}


def path_tokens(path: Union[str, Sequence[str]]) -> Tuple[str, ...]:
    """Normalize a request path.

    A string is re-tokenized with the protocol's quoting rules, so
    ``'VAR ups ups.status'`` and ``["VAR", "ups", "ups.status"]`` are the
    same path.
    """
    tokens = tokenize(path) if isinstance(path, str) else list(path)
    if not tokens:
        raise ValueError("empty request path")
    return tuple(tokens)


@dataclass(frozen=True)
class Request:
    kind: str
    tokens: Tuple[str, ...]

    @classmethod
    def get(cls, path: Union[str, Sequence[str]]) -> "Request":
        return cls(GET, path_tokens(path))

    @classmethod
    def list(cls, path: Union[str, Sequence[str]]) -> "Request":
        return cls(LIST, path_tokens(path))

    @classmethod
    def run(cls, name: str, *args: str) -> "Request":
        if not name:
            raise ValueError("empty command name")
        return cls(RUN, (name, *args))

    @classmethod
    def keepalive(cls) -> "Request":
        return cls(KEEPALIVE, ("VER",))

    def command_line(self) -> str:
        if self.kind in (GET, LIST):
            return format_line([self.kind, *self.tokens])
        return format_line(self.tokens)

    def __str__(self) -> str:
        return self.command_line()


def _connect(sock: socket.socket, addr: Any, deadline: float, cancel_event: Optional[threading.Event]) -> None:
    sock.setblocking(False)
    err = sock.connect_ex(addr)
    if err == 0:
        return
    if err not in _CONNECT_PENDING:
        raise OSError(err, os.strerror(err))
    while True:
        if cancel_event is not None and cancel_event.is_set():
            raise CanceledError("dial canceled")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError("timed out")
        _, writable, failed = select.select([], [sock], [sock], min(remaining, READ_SLICE))
        if writable or failed:
            err = sock.getsockopt(socket.SOL_SOCKET, socket.SO_ERROR)
            if err:
                raise OSError(err, os.strerror(err))
            return


def dial(host: str, port: int, timeout: float, cancel_event: Optional[threading.Event] = None) -> socket.socket:
    """Open a TCP connection, giving up after ``timeout`` seconds.

    Unlike ``socket.create_connection`` the attempt can be abandoned through
    ``cancel_event`` (raises CanceledError). Other failures raise
    TransportError.
    """
    deadline = time.monotonic() + timeout
    try:
        infos = socket.getaddrinfo(host, port, 0, socket.SOCK_STREAM)
    except OSError as exc:
        raise TransportError(f"cannot resolve {host}: {exc}") from exc

    last_exc: Optional[OSError] = None
    for family, socktype, proto, _, addr in infos:
        sock = socket.socket(family, socktype, proto)
        try:
            _connect(sock, addr, deadline, cancel_event)
        except OSError as exc:
            sock.close()
            last_exc = exc
            continue
        except BaseException:
            sock.close()
            raise
        sock.setblocking(True)
        return sock
    raise TransportError(f"cannot connect to {host}:{port}: {last_exc}") from last_exc


class Connection:
    """One command at a time over a connected socket.

    - ``send(request)`` writes the request line and parses exactly one reply.
    - ``io_timeout`` bounds the wait for a reply (``None`` waits until the
      server answers, the peer closes or the exchange is canceled).
    """

    def __init__(self, sock: socket.socket, cancel_event: Optional[threading.Event] = None, io_timeout: Optional[float] = None):
        self._sock = sock
        self._cancel = cancel_event if cancel_event is not None else threading.Event()
        self._io_timeout = io_timeout
        self._recv_buf = b""
        self._closed = False
        sock.settimeout(READ_SLICE)

    def send(self, request: Request) -> Any:
        """Run one exchange and return its payload.

        GET returns the value string, LIST a list of rows, RUN ``None`` and
        KEEPALIVE the server's banner line.
        """
        if self._cancel.is_set():
            raise CanceledError()
        line = request.command_line()
        log.debug("-> %s", line)
        self._write_line(line)

        deadline = None if self._io_timeout is None else time.monotonic() + self._io_timeout
        parser = ResponseParser(lambda: self.read_line(deadline))
        if request.kind == GET:
            return parser.read_scalar(request.tokens)
        if request.kind == LIST:
            return parser.read_list(request.tokens)
        if request.kind == KEEPALIVE:
            return parser.read_raw()
        return parser.read_ok()

    def login(self, username: str, password: str) -> None:
        """Authenticate this connection (``USERNAME`` / ``PASSWORD``)."""
        self.send(Request.run("USERNAME", username))
        self.send(Request.run("PASSWORD", password))

    def _failure(self, message: str) -> Exception:
        if self._cancel.is_set():
            return CanceledError()
        return TransportError(message)

    def _write_line(self, line: str) -> None:
        try:
            self._sock.sendall((line + "\n").encode("utf-8"))
        except OSError as exc:
            raise self._failure(f"write failed: {exc}") from exc

    def read_line(self, deadline: Optional[float] = None) -> str:
        """Return the next line from the socket without its terminator."""
        while b"\n" not in self._recv_buf:
            if self._cancel.is_set():
                raise CanceledError()
            if deadline is not None and time.monotonic() >= deadline:
                raise TransportError(f"no reply within {self._io_timeout:.1f}s")
            if len(self._recv_buf) > MAX_LINE:
                raise ProtocolError(f"reply line longer than {MAX_LINE} bytes")
            try:
                chunk = self._sock.recv(4096)
            except socket.timeout:
                continue
            except OSError as exc:
                raise self._failure(f"read failed: {exc}") from exc
            if not chunk:
                raise self._failure("connection closed by peer")
            self._recv_buf += chunk
        line_bytes, self._recv_buf = self._recv_buf.split(b"\n", 1)
        line = line_bytes.rstrip(b"\r").decode("utf-8", errors="replace")
        log.debug("<- %s", line)
        return line

    def abort(self) -> None:
        """Shut the socket down so a read blocked in another thread returns."""
        try:
            self._sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            pass

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.abort()
        self._sock.close()
