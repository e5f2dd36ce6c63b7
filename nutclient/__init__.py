# NUT Client - Network UPS Tools Client Library
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# This module provides a client for the line-oriented NUT network protocol
# with a self-healing persistent TCP connection, serialized request handling
# and power event monitoring.
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

"""NUT (Network UPS Tools) client package

This package talks to ``upsd`` over its text protocol. It exposes:

- `Client`: a background thread that keeps one TCP connection to the server,
  reconnects after failures, and serves `get`, `list` and `run_command`
  requests one at a time, with an optional keep-alive.
- `Monitor`: polls ``ups.status`` through a `Client` and fires power lost /
  power restored callbacks.
- `tokenize`, `format_line`, `ResponseParser`: the protocol codec.
- The `NUTError` exception hierarchy.

Only the standard library is needed by the package itself; the scripts in
``scripts/`` add an MQTT bridge on top of it.
"""

from .client import Client
from .config import ClientConfig, MonitorConfig, default_on_battery, parse_addr
from .errors import (
    CanceledError,
    MissingValueError,
    NotConnectedError,
    NUTError,
    ProtocolError,
    ServerError,
    TransportError,
    UnexpectedEndError,
    UnexpectedPrefixError,
    UnterminatedQuoteError,
)
from .monitor import Monitor
from .parser import ResponseParser, format_line, format_list_reply, split_token, tokenize

__all__ = [
    "Client",
    "ClientConfig",
    "Monitor",
    "MonitorConfig",
    "default_on_battery",
    "parse_addr",
    "ResponseParser",
    "format_line",
    "format_list_reply",
    "split_token",
    "tokenize",
    "NUTError",
    "NotConnectedError",
    "CanceledError",
    "ProtocolError",
    "ServerError",
    "TransportError",
    "UnterminatedQuoteError",
    "UnexpectedPrefixError",
    "MissingValueError",
    "UnexpectedEndError",
]
__version__ = "0.1.0"
