from __future__ import annotations

import pytest

from fake_upsd import FakeNutServer
from nutclient import Client


@pytest.fixture
def nut_server():
    server = FakeNutServer()
    server.start()
    yield server
    server.stop()


@pytest.fixture
def make_client(nut_server):
    clients = []

    def _make(**kwargs) -> Client:
        kwargs.setdefault("addr", nut_server.addr)
        kwargs.setdefault("reconnect_interval", 0.2)
        client = Client(**kwargs)
        client.start()
        clients.append(client)
        return client

    yield _make
    for client in clients:
        client.close()
