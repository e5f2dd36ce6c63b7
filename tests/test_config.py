import pytest

from nutclient.config import (
    DEFAULT_POLL_INTERVAL,
    DEFAULT_RECONNECT_INTERVAL,
    ClientConfig,
    MonitorConfig,
    default_on_battery,
    parse_addr,
)


@pytest.mark.parametrize(
    "addr, expected",
    [
        (None, ("localhost", 3493)),
        ("", ("localhost", 3493)),
        ("nas", ("nas", 3493)),
        ("nas:3494", ("nas", 3494)),
        (":3494", ("localhost", 3494)),
        ("192.168.1.10:3493", ("192.168.1.10", 3493)),
        ("[::1]:3494", ("::1", 3494)),
        ("[::1]", ("::1", 3493)),
        ("fe80::1", ("fe80::1", 3493)),
    ],
)
def test_parse_addr(addr, expected):
    assert parse_addr(addr) == expected


@pytest.mark.parametrize("addr", ["nas:port", "nas:0", "nas:70000", "[::1"])
def test_parse_addr_invalid(addr):
    with pytest.raises(ValueError):
        parse_addr(addr)


def test_client_defaults():
    cfg = ClientConfig()
    assert (cfg.host, cfg.port, cfg.name) == ("localhost", 3493, "ups")
    assert cfg.reconnect_interval == DEFAULT_RECONNECT_INTERVAL
    assert cfg.keepalive_interval is None
    assert cfg.io_timeout is None


def test_unset_values_take_defaults():
    cfg = ClientConfig(addr="", name="", reconnect_interval=0, keepalive_interval=0)
    assert cfg.addr == "localhost:3493"
    assert cfg.name == "ups"
    assert cfg.reconnect_interval == DEFAULT_RECONNECT_INTERVAL
    assert cfg.keepalive_interval is None


@pytest.mark.parametrize("field", ["reconnect_interval", "keepalive_interval", "io_timeout"])
def test_negative_interval_rejected(field):
    with pytest.raises(ValueError):
        ClientConfig(**{field: -1})


def test_credentials_come_in_pairs():
    with pytest.raises(ValueError):
        ClientConfig(username="admin")
    assert ClientConfig(username="admin", password="").password == ""


def test_invalid_addr_rejected_early():
    with pytest.raises(ValueError):
        ClientConfig(addr="nas:nope")


def test_monitor_config():
    cfg = MonitorConfig(addr="nas:3494", name="rack", poll_interval=None, reconnect_interval=5)
    assert cfg.poll_interval == DEFAULT_POLL_INTERVAL
    client_cfg = cfg.client_config()
    assert (client_cfg.host, client_cfg.port, client_cfg.name) == ("nas", 3494, "rack")
    assert client_cfg.reconnect_interval == 5.0
    with pytest.raises(ValueError):
        MonitorConfig(poll_interval=-0.5)


@pytest.mark.parametrize(
    "status, on_battery",
    [
        ("OL", False),
        ("OL CHRG", False),
        ("OB", True),
        ("OB DISCHRG LB", True),
        ("", True),
        ("OLD", True),
    ],
)
def test_default_on_battery(status, on_battery):
    assert default_on_battery(status) is on_battery
    assert MonitorConfig().is_on_battery(status) is on_battery


@pytest.mark.parametrize("username, password", [("a\nb", "x"), ("admin", "pw\r")])
def test_credentials_must_be_single_tokens(username, password):
    with pytest.raises(ValueError):
        ClientConfig(username=username, password=password)
