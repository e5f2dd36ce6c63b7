# NUT Client - Error Types
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Exception hierarchy shared by the protocol parser, the connection and the
# client lifecycle.
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

"""Exceptions raised by nutclient.

Every request made through :class:`nutclient.Client` either returns a
payload or raises exactly one of the exceptions below.

- ``NotConnectedError``: the client was not serving when the request arrived
  (backing off, still dialing, not started or closed).
- ``CanceledError``: the client was shut down while the request was queued
  or in flight.
- ``ProtocolError`` and subclasses: the server sent something the parser
  could not make sense of. Fatal to the connection.
- ``ServerError``: the server answered ``ERR <reason>``. Not fatal.
- ``TransportError``: dialing, writing or reading the socket failed. Fatal to
  the connection.
"""
from __future__ import annotations

from typing import Sequence


class NUTError(Exception):
    """Base class for all nutclient errors."""


class NotConnectedError(NUTError):
    def __init__(self, message: str = "not connected") -> None:
        super().__init__(message)


class CanceledError(NUTError):
    def __init__(self, message: str = "operation canceled") -> None:
        super().__init__(message)


class TransportError(NUTError):
    """Socket-level failure; usually chained from an ``OSError``."""


class ServerError(NUTError):
    """The server answered ``ERR``.

    ``reason`` keeps the server's text verbatim (e.g. ``UNKNOWN-UPS`` or
    ``ACCESS-DENIED``) so callers can branch on it.
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"server returned {reason}" if reason else "server returned ERR")


class ProtocolError(NUTError, ValueError):
    """Malformed server response."""


class UnterminatedQuoteError(ProtocolError):
    def __init__(self, message: str = 'missing closing "') -> None:
        super().__init__(message)


class UnexpectedPrefixError(ProtocolError):
    def __init__(self, expected: Sequence[str]) -> None:
        self.expected = list(expected)
        super().__init__(f"{' '.join(self.expected)} expected")


class MissingValueError(ProtocolError):
    def __init__(self, message: str = "missing value") -> None:
        super().__init__(message)


class UnexpectedEndError(ProtocolError):
    def __init__(self, message: str = "unexpected end of list") -> None:
        super().__init__(message)
