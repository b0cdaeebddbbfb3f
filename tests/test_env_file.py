import pytest
import requests

from labchain import env_file
from labchain.errors import ConfigMissing
from labchain.env_file import detect_public_ip, is_ipv4, read_env_value, set_env_value


def test_set_replaces_existing_value(tmp_path):
    path = tmp_path / ".env"
    path.write_text("NETWORK=labchain\nBEACON_ENR_ADDRESS=1.2.3.4\nOTHER=x\n")

    previous = set_env_value(path, "BEACON_ENR_ADDRESS", "5.6.7.8")

    assert previous == "1.2.3.4"
    assert path.read_text() == "NETWORK=labchain\nBEACON_ENR_ADDRESS=5.6.7.8\nOTHER=x\n"


def test_set_appends_missing_key(tmp_path):
    path = tmp_path / ".env"
    path.write_text("NETWORK=labchain\n")

    assert set_env_value(path, "BEACON_ENR_ADDRESS", "5.6.7.8") is None
    assert read_env_value(path, "BEACON_ENR_ADDRESS") == "5.6.7.8"


def test_missing_env_file(tmp_path):
    with pytest.raises(ConfigMissing):
        set_env_value(tmp_path / ".env", "KEY", "value")


@pytest.mark.parametrize("value, expected", [
    ("192.168.1.100", True),
    ("10.0.0.1\n", True),
    ("256.1.1.1", False),
    ("2001:db8::1", False),
    ("", False),
    (None, False),
])
def test_is_ipv4(value, expected):
    assert is_ipv4(value) is expected


class FakeResponse:
    def __init__(self, text):
        self.text = text

    def raise_for_status(self):
        pass


def test_public_ip_falls_through_services(monkeypatch):
    calls = []

    def fake_get(url, timeout):
        calls.append(url)
        if len(calls) == 1:
            raise requests.ConnectionError("down")
        if len(calls) == 2:
            return FakeResponse("<html>rate limited</html>")
        return FakeResponse("203.0.113.7\n")

    monkeypatch.setattr(env_file.requests, "get", fake_get)

    assert detect_public_ip() == "203.0.113.7"
    assert len(calls) == 3
