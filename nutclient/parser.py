# NUT Client - Protocol Parser
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides deterministic helpers for splitting NUT protocol lines into tokens,
# parsing single-line and BEGIN/END LIST replies, and formatting outgoing
# command lines.
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

"""Parsing helpers for the NUT network protocol.

The protocol is line based: every command is one line, and every reply is
either one line or a ``BEGIN LIST`` ... ``END LIST`` block. Lines are split
into whitespace-separated tokens; a token may be double-quoted to carry
embedded whitespace, and inside quotes a backslash escapes the next
character.

Key functions
- split_token(data: str, at_eof: bool) -> (advance, token)
    Incremental tokenizer. Returns the number of characters consumed and the
    next token, or ``token is None`` when more input is needed (``at_eof``
    false) or the input holds no further tokens (``at_eof`` true).
- tokenize(line: str) -> list[str]
    Split a complete line. Raises UnterminatedQuoteError.
- format_line(tokens) -> str
    Join tokens into a line, quoting the ones that need it.

Replies
- ResponseParser(read_line)
    Reads reply lines from ``read_line()`` (which returns ``None`` once the
    source is exhausted) and produces scalar, ``OK``, raw or list replies.
    Every reply line echoes part of the request (the "prefix"), which is
    checked case-insensitively and stripped. ``ERR`` replies raise
    ServerError.
"""
from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence, Tuple

from .errors import (
    MissingValueError,
    ServerError,
    UnexpectedEndError,
    UnexpectedPrefixError,
    UnterminatedQuoteError,
)

_SPACE = " \t\r\n"
_NEEDS_QUOTES = frozenset(' \t"\\')


def split_token(data: str, at_eof: bool) -> Tuple[int, Optional[str]]:
    """Find the next token in ``data``.

    Leading whitespace is always consumed, even when no token follows. A
    quoted token is returned without its quotes and with escapes resolved;
    an unquoted token runs to the next whitespace. If the token may continue
    past the end of ``data`` and ``at_eof`` is false, ``(advance, None)`` is
    returned so the caller can retry with more input.
    """
    n = len(data)
    start = 0
    while start < n and data[start] in _SPACE:
        start += 1
    if start == n:
        return start, None

    if data[start] == '"':
        chars: List[str] = []
        i = start + 1
        while i < n:
            c = data[i]
            if c == "\\":
                if i + 1 == n:
                    break
                chars.append(data[i + 1])
                i += 2
                continue
            if c == '"':
                return i + 1, "".join(chars)
            chars.append(c)
            i += 1
        if at_eof:
            raise UnterminatedQuoteError()
        return start, None

    end = start
    while end < n and data[end] not in _SPACE:
        end += 1
    if end == n and not at_eof:
        return start, None
    return end, data[start:end]


def tokenize(line: str) -> List[str]:
    """Split a complete protocol line into tokens."""
    tokens: List[str] = []
    pos = 0
    while True:
        advance, token = split_token(line[pos:], True)
        if token is None:
            return tokens
        tokens.append(token)
        pos += advance


def quote(token: str) -> str:
    """Quote a single token if it is empty or holds whitespace, quotes or backslashes."""
    if "\n" in token or "\r" in token:
        raise ValueError(f"token contains a line break: {token!r}")
    if token and not any(c in _NEEDS_QUOTES for c in token):
        return token
    escaped = token.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'


def format_line(tokens: Iterable[str]) -> str:
    return " ".join(quote(t) for t in tokens)


def format_list_reply(prefix: Sequence[str], rows: Iterable[Sequence[str]]) -> List[str]:
    """Encode a list reply as the server would send it (without line terminators)."""
    lines = [format_line(["BEGIN", "LIST", *prefix])]
    lines.extend(format_line([*prefix, *row]) for row in rows)
    lines.append(format_line(["END", "LIST", *prefix]))
    return lines


def trim_prefix(tokens: Sequence[str], prefix: Sequence[str]) -> List[str]:
    """Strip ``prefix`` from ``tokens`` comparing case-insensitively."""
    if len(tokens) < len(prefix):
        raise UnexpectedPrefixError(prefix)
    for got, want in zip(tokens, prefix):
        if got.lower() != want.lower():
            raise UnexpectedPrefixError(prefix)
    return list(tokens[len(prefix):])


def raise_for_error(tokens: Sequence[str]) -> None:
    """Raise ServerError if ``tokens`` is an ``ERR`` reply."""
    if tokens and tokens[0].upper() == "ERR":
        raise ServerError(" ".join(tokens[1:]))


class ResponseParser:
    """Turn the lines following a command into one parsed reply."""

    def __init__(self, read_line: Callable[[], Optional[str]]) -> None:
        self._read_line = read_line

    def _next_tokens(self) -> Optional[List[str]]:
        line = self._read_line()
        if line is None:
            return None
        return tokenize(line)

    def _first_tokens(self) -> List[str]:
        tokens = self._next_tokens()
        if tokens is None:
            raise UnexpectedEndError("no reply")
        raise_for_error(tokens)
        return tokens

    def read_scalar(self, prefix: Sequence[str]) -> str:
        """``VAR ups ups.status "OL"`` with prefix ``VAR ups ups.status`` -> ``OL``."""
        rest = trim_prefix(self._first_tokens(), prefix)
        if not rest:
            raise MissingValueError()
        return " ".join(rest)

    def read_ok(self) -> None:
        tokens = self._first_tokens()
        if not tokens or tokens[0].upper() != "OK":
            raise UnexpectedPrefixError(["OK"])

    def read_raw(self) -> str:
        """Return the text of a single non-``ERR`` line (e.g. the ``VER`` banner)."""
        line = self._read_line()
        if line is None:
            raise UnexpectedEndError("no reply")
        raise_for_error(tokenize(line))
        return line.strip()

    def read_list(self, prefix: Sequence[str]) -> List[List[str]]:
        """Parse a ``BEGIN LIST`` ... ``END LIST`` block into rows.

        Each row must start with ``prefix``, which is removed; the rest of the
        row is kept in order. Any other row, or running out of input before
        the ``END LIST`` line, means the list was cut short.
        """
        trim_prefix(self._first_tokens(), ["BEGIN", "LIST", *prefix])
        expected = " ".join(["END", "LIST", *prefix])
        rows: List[List[str]] = []
        while True:
            tokens = self._next_tokens()
            if tokens is None:
                raise UnexpectedEndError(f"{expected} expected")
            if len(tokens) >= 2 and tokens[0].upper() == "END" and tokens[1].upper() == "LIST":
                trim_prefix(tokens, ["END", "LIST", *prefix])
                return rows
            try:
                rows.append(trim_prefix(tokens, prefix))
            except UnexpectedPrefixError as exc:
                raise UnexpectedEndError(f"{expected} expected, got {' '.join(tokens)!r}") from exc
