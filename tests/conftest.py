"""Shared fakes for the Docker daemon, the compose runtime and the deposit wallet."""

import json
from pathlib import Path

import docker
import pytest
from web3.providers import BaseProvider

from labchain.models import Role

SENDER = "0x" + "ab" * 20
SIGNING_KEY = "0x" + "11" * 32
WITHDRAWAL = "0xAbC0000000000000000000000000000000000123"


def make_pubkey(i: int) -> str:
    return f"{i + 1:02x}" * 48


def make_deposit(i: int) -> dict:
    return {
        "pubkey": make_pubkey(i),
        "withdrawal_credentials": "01" + "00" * 11 + "ab" * 20,
        "signature": "cd" * 96,
        "deposit_data_root": f"{i + 1:02x}" * 32,
        "amount": 32000000000,
    }


def make_manifest_entry(pubkey, password="pw"):
    keystore = {"version": 4, "crypto": {}, "path": "m/12381/3600/0/0/0"}
    if pubkey is not None:
        keystore["pubkey"] = pubkey
    return {
        "enabled": True,
        "voting_keystore": json.dumps(keystore),
        "voting_keystore_password": password,
    }


class FakeImages:
    def __init__(self, present=True, pull_error=None):
        self.present = present
        self.pull_error = pull_error
        self.pulled = []

    def get(self, image):
        if not self.present:
            raise docker.errors.ImageNotFound(f"{image} not found")
        return image

    def pull(self, image):
        if self.pull_error is not None:
            raise self.pull_error
        self.pulled.append(image)
        self.present = True


class FakeContainer:
    def __init__(self, name):
        self.name = name
        self.status = "running"


class FakeContainers:
    def __init__(self, on_run=None, running=()):
        self.on_run = on_run
        self.running = list(running)
        self.runs = []

    def run(self, image, command, mounts=None, **kwargs):
        self.runs.append({"image": image, "command": command, "mounts": mounts, **kwargs})
        if self.on_run is not None:
            self.on_run(command, {m["Target"]: Path(m["Source"]) for m in mounts or []})
        return b"done\n"

    def list(self, filters=None):
        return [FakeContainer(name) for name in self.running]


class FakeDocker:
    def __init__(self, on_run=None, running=(), image_present=True):
        self.images = FakeImages(image_present)
        self.containers = FakeContainers(on_run, running)


def lighthouse_writes(entries, deposits):
    """Return an ``on_run`` hook that writes the files validator-manager produces."""
    def on_run(command, mounts):
        output = mounts["/output"]
        (output / "validators.json").write_text(json.dumps(entries))
        (output / "deposits.json").write_text(json.dumps(deposits))
    return on_run


class FakeRuntime:
    """In-memory stand-in for ComposeRuntime."""

    def __init__(self, running=()):
        self.running = set(running)
        self.calls = []

    def running_containers(self, role):
        return [f"{role.short_name}-1"] if role in self.running else []

    def up(self, group):
        self.calls.append(("up", group))
        self.running.add(group.role)

    def down(self, group):
        self.calls.append(("down", group))
        self.running.discard(group.role)

    def follow_logs(self, groups, tail):
        self.calls.append(("logs", tuple(groups), tail))
        return 0


class FakeWallet:
    def __init__(self, address=SENDER, balance=10 ** 24, block=100, fail_on=(),
                 balance_error=None, rpc_error=None):
        self.address = address
        self.balance = balance
        self.block = block
        self.fail_on = set(fail_on)
        self.balance_error = balance_error
        self.rpc_error = rpc_error
        self.sent = []

    def block_number(self):
        if self.rpc_error is not None:
            raise self.rpc_error
        return self.block

    def balance_wei(self):
        if self.balance_error is not None:
            raise self.balance_error
        return self.balance

    def send_deposit(self, deposit, contract_address):
        if deposit.pubkey in self.fail_on:
            raise ValueError("insufficient funds for gas * price + value")
        self.sent.append((deposit.pubkey, contract_address))
        return "0x" + f"{len(self.sent):064x}"



class StubProvider(BaseProvider):
    """JSON-RPC provider answering from a method -> result table and recording requests."""

    def __init__(self, results=None, errors=None):
        super().__init__()
        self.results = dict(results or {})
        self.errors = dict(errors or {})
        self.requests = []

    def make_request(self, method, params):
        self.requests.append((method, params))
        response = {"jsonrpc": "2.0", "id": len(self.requests)}
        if method in self.errors:
            response["error"] = {"code": -32000, "message": self.errors[method]}
        else:
            response["result"] = self.results[method]
        return response

    def is_connected(self, show_traceback=False):
        return True

    def params_of(self, method):
        return [params for m, params in self.requests if m == method]


@pytest.fixture
def wallet():
    return FakeWallet()


@pytest.fixture
def wallet_factory(wallet):
    created = []

    def factory(rpc_url, key, chain_id, timeout=None):
        created.append((rpc_url, key, chain_id))
        return wallet

    factory.created = created
    return factory


@pytest.fixture
def deposits_file(tmp_path):
    path = tmp_path / "deposits.json"
    path.write_text(json.dumps([make_deposit(i) for i in range(3)]))
    return path


@pytest.fixture
def runtime():
    return FakeRuntime()


ALL_ROLES = (Role.EXECUTION, Role.CONSENSUS, Role.VALIDATOR)
