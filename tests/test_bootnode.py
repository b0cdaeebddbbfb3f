import pytest
import requests

from labchain import bootnode
from labchain.bootnode import get_bootnode_enode, get_bootnode_enr
from labchain.errors import ExternalToolFailure

ENR = "enr:-Iq4QJk4WqRkjsX5c2CXtOra6HnxN-BMXnWhmhEQO9Bn9iABTJGdjUOurM7Btj1ouKaFkvTRoju5vz2GPmVON2dffQKGAX53x8JigmlkgnY0"
ENODE = "enode://" + "ab" * 64 + "@10.0.0.1:30303"


class FakeResponse:
    def __init__(self, status_code, body):
        self.status_code = status_code
        self._body = body
        self.text = str(body)

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        return self._body


def fake_web3(response):
    class Provider:
        def make_request(self, method, params):
            assert method == "admin_nodeInfo"
            return response

    class Web3:
        HTTPProvider = staticmethod(lambda url, request_kwargs=None: url)

        def __init__(self, provider):
            self.provider = Provider()

    return Web3


def test_enr(monkeypatch):
    monkeypatch.setattr(bootnode.requests, "get",
                        lambda url, timeout: FakeResponse(200, {"data": {"enr": ENR}}))

    assert get_bootnode_enr("http://127.0.0.1:5052/") == ENR


@pytest.mark.parametrize("response", [
    FakeResponse(200, {"data": {"enr": None}}),
    FakeResponse(200, {"data": {}}),
    FakeResponse(503, {"message": "unavailable"}),
])
def test_enr_unavailable(monkeypatch, response):
    monkeypatch.setattr(bootnode.requests, "get", lambda url, timeout: response)

    with pytest.raises(ExternalToolFailure):
        get_bootnode_enr("http://127.0.0.1:5052")


def test_enode(monkeypatch):
    monkeypatch.setattr(bootnode, "Web3", fake_web3({"jsonrpc": "2.0", "id": 1, "result": {"enode": ENODE}}))

    assert get_bootnode_enode("http://127.0.0.1:8545") == ENODE


def test_enode_error_includes_response(monkeypatch):
    response = {"jsonrpc": "2.0", "id": 1, "error": {"code": -32601, "message": "method not found"}}
    monkeypatch.setattr(bootnode, "Web3", fake_web3(response))

    with pytest.raises(ExternalToolFailure) as exc:
        get_bootnode_enode("http://127.0.0.1:8545")
    assert "method not found" in exc.value.output
