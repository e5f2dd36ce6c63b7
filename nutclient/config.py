# NUT Client - Configuration
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Configuration objects for the client and the power monitor, with default
# resolution and validation.
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

"""Configuration for :class:`nutclient.Client` and :class:`nutclient.Monitor`.

Unset values (``None`` or empty) resolve to the defaults below, so callers
can pass command-line options straight through.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .parser import quote

DEFAULT_ADDR = "localhost:3493"
DEFAULT_PORT = 3493
DEFAULT_NAME = "ups"
DEFAULT_RECONNECT_INTERVAL = 30.0
DEFAULT_POLL_INTERVAL = 30.0

Callback = Callable[[], None]


def parse_addr(addr: Optional[str]) -> Tuple[str, int]:
    """Split ``host[:port]`` (or ``[v6addr][:port]``) into host and port."""
    addr = (addr or DEFAULT_ADDR).strip()
    if addr.startswith("["):
        host, sep, rest = addr[1:].partition("]")
        if not sep:
            raise ValueError(f"invalid address: {addr!r}")
        port_str = rest[1:] if rest.startswith(":") else rest
    elif addr.count(":") == 1:
        host, _, port_str = addr.partition(":")
    else:
        # bare hostname or unbracketed IPv6 literal
        host, port_str = addr, ""
    if not host:
        host = "localhost"
    if not port_str:
        return host, DEFAULT_PORT
    try:
        port = int(port_str)
    except ValueError:
        raise ValueError(f"invalid port in address: {addr!r}") from None
    if not 0 < port < 65536:
        raise ValueError(f"port out of range in address: {addr!r}")
    return host, port


def default_on_battery(status: str) -> bool:
    """Default power predicate: on battery unless ``OL`` is among the status flags."""
    return "OL" not in status.split(" ")


def _interval(value: Optional[float], default: Optional[float], name: str) -> Optional[float]:
    if value is None or value == 0:
        return default
    value = float(value)
    if value < 0:
        raise ValueError(f"{name} must be > 0")
    return value


@dataclass(frozen=True)
class ClientConfig:
    addr: str = DEFAULT_ADDR
    name: str = DEFAULT_NAME
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    # Idle time after which a no-op command is sent; None disables keep-alive.
    keepalive_interval: Optional[float] = None
    # Max wait for a reply; None waits indefinitely.
    io_timeout: Optional[float] = None
    username: Optional[str] = None
    password: Optional[str] = None
    connected_fn: Optional[Callback] = None
    disconnected_fn: Optional[Callback] = None

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "addr", self.addr or DEFAULT_ADDR)
        object.__setattr__(self, "name", self.name or DEFAULT_NAME)
        object.__setattr__(
            self, "reconnect_interval",
            _interval(self.reconnect_interval, DEFAULT_RECONNECT_INTERVAL, "reconnect_interval"),
        )
        object.__setattr__(self, "keepalive_interval", _interval(self.keepalive_interval, None, "keepalive_interval"))
        object.__setattr__(self, "io_timeout", _interval(self.io_timeout, None, "io_timeout"))
        if (self.username is None) != (self.password is None):
            raise ValueError("username and password must be given together")
        if self.username is not None:
            # both are sent as protocol tokens
            quote(self.username)
            quote(self.password)
        parse_addr(self.addr)

    @property
    def host(self) -> str:
        return parse_addr(self.addr)[0]

    @property
    def port(self) -> int:
        return parse_addr(self.addr)[1]


@dataclass(frozen=True)
class MonitorConfig:
    addr: str = DEFAULT_ADDR
    name: str = DEFAULT_NAME
    reconnect_interval: float = DEFAULT_RECONNECT_INTERVAL
    poll_interval: float = DEFAULT_POLL_INTERVAL
    connected_fn: Optional[Callback] = None
    disconnected_fn: Optional[Callback] = None
    power_lost_fn: Optional[Callback] = None
    power_restored_fn: Optional[Callback] = None
    # Decides from the raw ups.status value whether the UPS is on battery.
    # Status flags vary between models; observe yours on mains and on battery.
    on_battery_fn: Optional[Callable[[str], bool]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "addr", self.addr or DEFAULT_ADDR)
        object.__setattr__(self, "name", self.name or DEFAULT_NAME)
        object.__setattr__(
            self, "reconnect_interval",
            _interval(self.reconnect_interval, DEFAULT_RECONNECT_INTERVAL, "reconnect_interval"),
        )
        object.__setattr__(self, "poll_interval", _interval(self.poll_interval, DEFAULT_POLL_INTERVAL, "poll_interval"))
        parse_addr(self.addr)

    def is_on_battery(self, status: str) -> bool:
        if self.on_battery_fn is not None:
            return self.on_battery_fn(status)
        return default_on_battery(status)

    def client_config(self, connected_fn: Optional[Callback] = None, disconnected_fn: Optional[Callback] = None) -> ClientConfig:
        return ClientConfig(
            addr=self.addr,
            name=self.name,
            reconnect_interval=self.reconnect_interval,
            connected_fn=connected_fn,
            disconnected_fn=disconnected_fn,
        )
