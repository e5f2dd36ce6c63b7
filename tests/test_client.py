import threading
import time

import pytest

from fake_upsd import wait_for
from nutclient import Client
from nutclient.connection import KEEPALIVE, Connection
from nutclient.errors import (
    CanceledError,
    NotConnectedError,
    ProtocolError,
    ServerError,
    TransportError,
)


class Recorder:
    """Collects callback invocations with their timestamps."""

    def __init__(self):
        self.connected = []
        self.disconnected = []

    def on_connected(self):
        self.connected.append(time.monotonic())

    def on_disconnected(self):
        self.disconnected.append(time.monotonic())

    def kwargs(self):
        return {"connected_fn": self.on_connected, "disconnected_fn": self.on_disconnected}


def _connected_client(make_client, **kwargs):
    client = make_client(**kwargs)
    assert wait_for(lambda: client.connected)
    return client


def test_get_var(make_client):
    client = _connected_client(make_client)
    assert client.get_var("ups.status") == "OL"
    assert client.get("VAR ups battery.charge") == "100"


def test_server_error_keeps_connection(make_client, nut_server):
    events = Recorder()
    client = _connected_client(make_client, **events.kwargs())
    with pytest.raises(ServerError) as excinfo:
        client.get_var("ups.nope")
    assert excinfo.value.reason == "VAR-NOT-SUPPORTED"
    assert client.get_var("ups.status") == "OL"
    assert nut_server.connections == 1
    assert events.disconnected == []


def test_list(make_client):
    client = _connected_client(make_client)
    assert client.list("VAR ups") == [["battery.charge", "100"], ["ups.status", "OL"]]
    assert client.list_vars() == {"battery.charge": "100", "ups.status": "OL"}


def test_run_command(make_client, nut_server):
    client = _connected_client(make_client)
    assert client.run_command("INSTCMD", "ups", "test.battery.start.quick") is None
    assert "INSTCMD ups test.battery.start.quick" in nut_server.received


def test_unencodable_request_fails_in_caller(make_client, nut_server):
    client = _connected_client(make_client)
    with pytest.raises(ValueError):
        client.run_command("SET", "VAR", "ups", "ups.id", "two\nlines")
    assert client.connected
    assert not any(line.startswith("SET") for line in nut_server.received)


def test_requests_never_overlap(make_client, monkeypatch):
    lock = threading.Lock()
    state = {"active": 0, "max_active": 0, "calls": 0}
    original_send = Connection.send

    def tracking_send(self, request):
        with lock:
            state["active"] += 1
            state["calls"] += 1
            state["max_active"] = max(state["max_active"], state["active"])
        try:
            time.sleep(0.005)
            return original_send(self, request)
        finally:
            with lock:
                state["active"] -= 1

    monkeypatch.setattr(Connection, "send", tracking_send)
    client = _connected_client(make_client)

    results = []
    errors = []

    def worker():
        try:
            results.append(client.get_var("ups.status"))
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert errors == []
    assert results == ["OL"] * 20
    assert state["calls"] == 20
    assert state["max_active"] == 1


def test_reconnect_after_peer_drop(make_client, nut_server):
    events = Recorder()
    client = _connected_client(make_client, reconnect_interval=0.5, **events.kwargs())
    assert len(events.connected) == 1

    nut_server.overrides["GET VAR ups ups.status"] = None
    with pytest.raises(TransportError):
        client.get_var("ups.status")
    assert wait_for(lambda: len(events.disconnected) == 1)

    # backing off: requests fail fast
    with pytest.raises(NotConnectedError):
        client.get_var("battery.charge")
    assert client.get_connection_status()["last_error"]

    del nut_server.overrides["GET VAR ups ups.status"]
    assert wait_for(lambda: len(events.connected) == 2)
    assert events.connected[1] - events.disconnected[0] >= 0.45
    assert client.get_var("ups.status") == "OL"
    assert nut_server.connections == 2
    assert client.get_connection_status() == {"connected": True, "last_error": None}


def test_protocol_error_reconnects(make_client, nut_server):
    events = Recorder()
    client = _connected_client(make_client, **events.kwargs())
    nut_server.overrides["GET VAR ups ups.status"] = ["BOGUS reply"]
    with pytest.raises(ProtocolError):
        client.get_var("ups.status")
    assert wait_for(lambda: len(events.disconnected) == 1)
    assert wait_for(lambda: len(events.connected) == 2)
    assert client.get_var("battery.charge") == "100"


def test_close_cancels_request_in_flight(make_client, nut_server):
    events = Recorder()
    client = _connected_client(make_client, **events.kwargs())
    nut_server.hold.set()

    outcome = {}

    def worker():
        try:
            outcome["result"] = client.list("VAR ups")
        except Exception as exc:
            outcome["error"] = exc

    t = threading.Thread(target=worker)
    t.start()
    assert wait_for(lambda: "LIST VAR ups" in nut_server.received)

    start = time.monotonic()
    client.close()
    assert time.monotonic() - start < 2.0
    t.join(timeout=2.0)
    assert not t.is_alive()
    assert isinstance(outcome.get("error"), CanceledError)
    assert events.disconnected == []


def test_close_is_idempotent(make_client):
    events = Recorder()
    client = _connected_client(make_client, **events.kwargs())
    client.close()
    client.close()
    assert len(events.connected) == 1
    assert events.disconnected == []
    assert not client.connected
    with pytest.raises(NotConnectedError):
        client.get_var("ups.status")
    with pytest.raises(RuntimeError):
        client.start()


def test_close_without_start():
    client = Client(addr="127.0.0.1:1")
    client.close()
    with pytest.raises(NotConnectedError):
        client.get_var("ups.status")


def test_not_connected_when_server_down(nut_server):
    addr = nut_server.addr
    nut_server.stop()
    events = Recorder()
    with Client(addr=addr, reconnect_interval=0.1, **events.kwargs()) as client:
        with pytest.raises(NotConnectedError):
            client.get_var("ups.status")
        assert wait_for(lambda: client.get_connection_status()["last_error"] is not None)
        assert not client.connected
    assert events.connected == []
    assert events.disconnected == []


def test_keepalive(make_client, nut_server):
    _connected_client(make_client, keepalive_interval=0.1)
    assert wait_for(lambda: nut_server.count("VER") >= 2)


def test_rejected_keepalive_is_not_fatal(make_client, nut_server):
    events = Recorder()
    nut_server.overrides["VER"] = ["ERR UNKNOWN-COMMAND"]
    client = _connected_client(make_client, keepalive_interval=0.1, **events.kwargs())
    assert wait_for(lambda: nut_server.count("VER") >= 2)
    assert client.get_var("ups.status") == "OL"
    assert events.disconnected == []


def test_login(make_client, nut_server):
    client = _connected_client(make_client, username="admin", password="s3cret pw")
    client.get_var("ups.status")
    assert nut_server.received[:3] == ["USERNAME admin", 'PASSWORD "s3cret pw"', "GET VAR ups ups.status"]


def test_login_rejected(make_client, nut_server):
    events = Recorder()
    nut_server.overrides["PASSWORD wrong"] = ["ERR ACCESS-DENIED"]
    client = make_client(username="admin", password="wrong", **events.kwargs())
    assert wait_for(lambda: "ACCESS-DENIED" in (client.get_connection_status()["last_error"] or ""))
    assert not client.connected
    assert events.connected == []


def test_io_timeout_drops_connection(make_client, nut_server):
    events = Recorder()
    client = _connected_client(make_client, io_timeout=0.3, **events.kwargs())
    nut_server.hold.set()
    with pytest.raises(TransportError):
        client.get_var("ups.status")
    assert wait_for(lambda: len(events.disconnected) == 1)
    nut_server.hold.clear()
    assert wait_for(lambda: len(events.connected) == 2)


def test_failing_callback_does_not_stop_client(make_client):
    def boom():
        raise RuntimeError("callback failure")

    client = _connected_client(make_client, connected_fn=boom)
    assert client.get_var("ups.status") == "OL"


def test_failed_keepalive_drops_connection(make_client, nut_server):
    events = Recorder()
    nut_server.overrides["VER"] = None
    client = _connected_client(make_client, keepalive_interval=0.1, **events.kwargs())
    assert wait_for(lambda: len(events.disconnected) >= 1)
    del nut_server.overrides["VER"]
    assert wait_for(lambda: client.connected and len(events.connected) >= 2)
    assert client.get_var("ups.status") == "OL"


def test_unexpected_login_error_keeps_client_alive(make_client, monkeypatch):
    attempts = []
    original_login = Connection.login

    def flaky_login(self, username, password):
        attempts.append(username)
        if len(attempts) == 1:
            raise RuntimeError("login failure")
        return original_login(self, username, password)

    monkeypatch.setattr(Connection, "login", flaky_login)
    events = Recorder()
    client = make_client(username="admin", password="pw", **events.kwargs())
    assert wait_for(lambda: client.connected)
    assert len(attempts) == 2
    assert len(events.connected) == 1
    assert client.get_var("ups.status") == "OL"


def test_unexpected_keepalive_error_drops_connection(make_client, monkeypatch):
    failures = []
    original_send = Connection.send

    def flaky_send(self, request):
        if request.kind == KEEPALIVE and not failures:
            failures.append(request)
            raise RuntimeError("keep-alive failure")
        return original_send(self, request)

    monkeypatch.setattr(Connection, "send", flaky_send)
    events = Recorder()
    client = _connected_client(make_client, keepalive_interval=0.1, **events.kwargs())
    assert wait_for(lambda: len(events.disconnected) == 1)
    assert wait_for(lambda: len(events.connected) == 2)
    assert client.get_var("ups.status") == "OL"
