#!/usr/bin/env python3
# NUT Client - UPS Terminal Dashboard
# Author: IntelligentToasters
# License: GNU General Public License v3.0
#
# Provides a lightweight terminal-based dashboard displaying the variables a
# NUT server reports for one UPS, grouped by subsystem, with single-key
# commands for refreshing and starting a battery test.
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
"""
UPS CLI Dashboard

Provides a lightweight terminal-based dashboard that displays:
- Connection status of the nutclient.Client
- The UPS variables from LIST VAR, grouped as battery / input / output / ups

This script uses a non-blocking input thread to capture single-key commands:
- On Windows: Uses msvcrt.kbhit() / msvcrt.getch() for non-blocking input
- On Unix/Linux/macOS: Uses termios/tty/select for single-key input in cbreak mode

Usage:
    scripts/ups_dashboard.py --addr nas:3493 --ups ups
    scripts/ups_dashboard.py --addr nas --ups ups --username admin --password secret

Note:
- The [T] battery test needs a NUT user with the instcmds permission.
- On Unix: on exit we attempt to restore the original terminal attributes to
  avoid leaving your terminal in a broken state.
"""
from __future__ import annotations

import argparse
import logging
import platform
import queue
import signal
import sys
import threading
import time
from datetime import datetime

# Include the library path so we can import nutclient if this script is run from the project root
sys.path.append(".")

from nutclient import Client, ClientConfig, NUTError

# Platform-specific imports
if platform.system() == 'Windows':
    import msvcrt
else:
    import select
    import termios
    import tty

log = logging.getLogger(__name__)

# Variable groups shown in the dashboard, in display order
GROUPS = [
    ("UPS", "ups."),
    ("Battery", "battery."),
    ("Input", "input."),
    ("Output", "output."),
]

# Human-friendly units for common variables
UNITS = {
    "battery.charge": "%",
    "battery.runtime": "s",
    "battery.voltage": "V",
    "input.voltage": "V",
    "input.frequency": "Hz",
    "output.voltage": "V",
    "output.frequency": "Hz",
    "ups.load": "%",
    "ups.realpower": "W",
    "ups.realpower.nominal": "W",
    "ups.temperature": "°C",
}

# ups.status flags worth spelling out
STATUS_FLAGS = {
    "OL": "on line",
    "OB": "on battery",
    "LB": "low battery",
    "HB": "high battery",
    "RB": "replace battery",
    "CHRG": "charging",
    "DISCHRG": "discharging",
    "BYPASS": "bypass",
    "CAL": "calibrating",
    "OFF": "offline",
    "OVER": "overloaded",
    "TRIM": "trimming",
    "BOOST": "boosting",
    "FSD": "forced shutdown",
}

BATTERY_TEST_CMD = "test.battery.start.quick"


def clear_screen():
    sys.stdout.write('\x1b[2J\x1b[H')


def format_val(name, val):
    if val is None:
        return "-"
    if name == "ups.status":
        flags = [STATUS_FLAGS.get(f, f) for f in val.split()]
        return f"{val} ({', '.join(flags)})" if flags else val
    unit = UNITS.get(name, "")
    return f"{val} {unit}".strip()


def group_vars(variables):
    """Split variables into the dashboard groups; leftovers go to 'Other'."""
    grouped = {title: {} for title, _ in GROUPS}
    other = {}
    for name in sorted(variables):
        for title, prefix in GROUPS:
            if name.startswith(prefix):
                grouped[title][name] = variables[name]
                break
        else:
            other[name] = variables[name]
    grouped["Other"] = other
    return grouped


def _restore_tty_sane(fd=None, orig=None):
    """Attempt to restore terminal to sane state (canonical + echo) - Unix only"""
    if platform.system() == 'Windows' or fd is None:
        return
    try:
        if orig is not None:
            termios.tcsetattr(fd, termios.TCSADRAIN, orig)
            return
        attrs = termios.tcgetattr(fd)
        attrs[3] |= (termios.ICANON | termios.ECHO)
        termios.tcsetattr(fd, termios.TCSADRAIN, attrs)
    except termios.error:
        pass


class InputThread(threading.Thread):
    """Background thread that collects single-key input without blocking the UI loop.

    - On Unix/Linux/macOS: `tty.setcbreak()` makes single characters available
      immediately and `select.select()` with a short timeout allows clean shutdown.
    - On Windows: `msvcrt.kbhit()` polls for available input.

    On exit the thread restores the original terminal attributes (Unix only).
    """
    def __init__(self, q, stop_evt, orig_termios):
        super().__init__(daemon=True)
        self.q = q
        self.stop_evt = stop_evt
        self.orig_termios = orig_termios

    def run(self):
        if platform.system() == 'Windows':
            self._run_windows()
        else:
            self._run_unix()

    def _run_windows(self):
        while not self.stop_evt.is_set():
            if msvcrt.kbhit():
                ch = msvcrt.getch().decode('utf-8', errors='ignore')
                if ch:
                    self.q.put(ch)
            else:
                time.sleep(0.2)

    def _run_unix(self):
        fd = sys.stdin.fileno()
        try:
            tty.setcbreak(fd)
            while not self.stop_evt.is_set():
                r, _, _ = select.select([sys.stdin], [], [], 0.2)
                if r:
                    ch = sys.stdin.read(1)
                    if ch:
                        self.q.put(ch)
        finally:
            _restore_tty_sane(fd, self.orig_termios)


def draw(client, variables, last_cmd_status, help_text):
    clear_screen()
    status = client.get_connection_status()
    cfg = client.config
    print(f"UPS Dashboard - {cfg.name}@{cfg.addr}")
    print("=" * 40)
    if status.get("connected"):
        print("Connection: connected")
    else:
        print(f"Connection: {status.get('last_error') or 'connecting...'}")

    if variables:
        for title, values in group_vars(variables).items():
            if not values:
                continue
            print(f"\n{title}:")
            for name, val in values.items():
                print(f"  {name:28}: {format_val(name, val)}")
    else:
        print("\n(waiting for data...)")

    if last_cmd_status is not None:
        msg, ts = last_cmd_status
        print(f"\nLast cmd: {msg} ({ts.strftime('%H:%M:%S')})")
    print(help_text)


def main():
    parser = argparse.ArgumentParser(description="Terminal dashboard for a NUT UPS")
    parser.add_argument("--addr", default="localhost:3493", help="NUT server host[:port]")
    parser.add_argument("--ups", default="ups", help="UPS name on the NUT server")
    parser.add_argument("--username", default=None, help="NUT user (needed for the battery test)")
    parser.add_argument("--password", default=None, help="NUT password")
    parser.add_argument("--interval", default=2.0, type=float, help="Refresh interval in seconds")
    parser.add_argument("--reconnect", default=5.0, type=float, help="Reconnect interval in seconds")
    parser.add_argument("--verbose", action="store_true", help="Enable verbose (DEBUG) logging output")
    args = parser.parse_args()

    # configure logging early according to --verbose flag
    logging.basicConfig(level=(logging.DEBUG if args.verbose else logging.INFO))
    # Silence package logs by default (be chatty only with --verbose)
    logging.getLogger('nutclient').setLevel(logging.DEBUG if args.verbose else logging.WARNING)

    client = Client(ClientConfig(
        addr=args.addr,
        name=args.ups,
        reconnect_interval=args.reconnect,
        keepalive_interval=max(args.interval * 5, 30.0),
        username=args.username,
        password=args.password if args.username else None,
    ))
    client.start()

    input_q: "queue.Queue[str]" = queue.Queue()
    input_stop = threading.Event()

    # capture original terminal state so we can restore on exit (Unix only)
    orig_termios = None
    fd = None
    if platform.system() != 'Windows':
        fd = sys.stdin.fileno()
        try:
            orig_termios = termios.tcgetattr(fd)
        except termios.error:
            orig_termios = None

    input_thread = InputThread(input_q, input_stop, orig_termios)
    input_thread.start()

    def handle_exit(signum=None, frame=None):
        _restore_tty_sane(fd, orig_termios)
        input_stop.set()
        client.close()
        input_thread.join(timeout=0.5)
        sys.exit(0)

    signal.signal(signal.SIGINT, handle_exit)
    signal.signal(signal.SIGTERM, handle_exit)

    help_text = "Controls: [R] refresh, [T] quick battery test, [Q] quit"
    variables = {}
    last_cmd_status = None  # (msg, timestamp)
    next_refresh = 0.0

    try:
        while True:
            if time.monotonic() >= next_refresh:
                try:
                    variables = client.list_vars()
                except NUTError as exc:
                    log.debug("refresh failed: %s", exc)
                    if not client.connected:
                        variables = {}
                next_refresh = time.monotonic() + args.interval
                draw(client, variables, last_cmd_status, help_text)

            try:
                k = input_q.get(timeout=0.2).lower()
            except queue.Empty:
                continue
            if k == 'q':
                return
            if k == 'r':
                next_refresh = 0.0
            elif k == 't':
                try:
                    client.run_command("INSTCMD", args.ups, BATTERY_TEST_CMD)
                    last_cmd_status = (f"{BATTERY_TEST_CMD} started", datetime.now())
                except NUTError as exc:
                    last_cmd_status = (f"{BATTERY_TEST_CMD} failed: {exc}", datetime.now())
                next_refresh = 0.0
    finally:
        # restore terminal state, stop input thread and the client
        input_stop.set()
        _restore_tty_sane(fd, orig_termios)
        client.close()
        input_thread.join(timeout=1.0)


if __name__ == "__main__":
    main()
