import subprocess

import pytest

from conftest import FakeDocker
from labchain import runtime as runtime_module
from labchain.config import NodeConfig
from labchain.errors import ConfigMissing, DependencyMissing, ExternalToolFailure
from labchain.models import NodeProcessGroup, Role
from labchain.runtime import ComposeRuntime


class Recorder:
    def __init__(self, returncode=0, stdout="", stderr=""):
        self.commands = []
        self.returncode = returncode
        self.stdout = stdout
        self.stderr = stderr

    def __call__(self, command, **kwargs):
        self.commands.append(command)
        return subprocess.CompletedProcess(command, self.returncode, self.stdout, self.stderr)


@pytest.fixture
def node_root(tmp_path):
    for d in ("EL", "CL", "VC"):
        (tmp_path / d).mkdir()
        (tmp_path / d / "docker-compose.yml").write_text("services: {}\n")
    return tmp_path


@pytest.fixture(autouse=True)
def docker_on_path(monkeypatch):
    monkeypatch.setattr(runtime_module.shutil, "which", lambda name: f"/usr/bin/{name}")


def test_up_runs_compose_with_profile(node_root):
    runner = Recorder()
    rt = ComposeRuntime(NodeConfig(root=node_root), docker_client=FakeDocker(), runner=runner)

    rt.up(NodeProcessGroup(Role.EXECUTION, "bootnode"))

    assert runner.commands == [[
        "docker", "compose", "-f", str(node_root / "EL" / "docker-compose.yml"),
        "--profile", "bootnode", "up", "-d",
    ]]


def test_down_failure_carries_output(node_root):
    runner = Recorder(returncode=1, stderr="no such service")
    rt = ComposeRuntime(NodeConfig(root=node_root), docker_client=FakeDocker(), runner=runner)

    with pytest.raises(ExternalToolFailure) as exc:
        rt.down(NodeProcessGroup(Role.VALIDATOR))

    assert exc.value.exit_code == 1
    assert "no such service" in exc.value.output


def test_missing_compose_file(tmp_path):
    rt = ComposeRuntime(NodeConfig(root=tmp_path), docker_client=FakeDocker(), runner=Recorder())

    with pytest.raises(ConfigMissing):
        rt.up(NodeProcessGroup(Role.CONSENSUS))


def test_missing_docker_binary(node_root, monkeypatch):
    monkeypatch.setattr(runtime_module.shutil, "which", lambda name: None)
    rt = ComposeRuntime(NodeConfig(root=node_root), docker_client=FakeDocker(), runner=Recorder())

    with pytest.raises(DependencyMissing):
        rt.up(NodeProcessGroup(Role.EXECUTION))


def test_running_containers_match_role_patterns(node_root):
    client = FakeDocker(running=["reth", "lighthouse", "lighthouse-vc", "prometheus"])
    rt = ComposeRuntime(NodeConfig(root=node_root), docker_client=client, runner=Recorder())

    assert rt.running_containers(Role.EXECUTION) == ["reth"]
    assert rt.running_containers(Role.CONSENSUS) == ["lighthouse"]
    assert rt.running_containers(Role.VALIDATOR) == ["lighthouse-vc"]


def test_follow_logs_combines_compose_files(node_root):
    runner = Recorder()
    rt = ComposeRuntime(NodeConfig(root=node_root), docker_client=FakeDocker(), runner=runner)

    rt.follow_logs([NodeProcessGroup(r) for r in (Role.EXECUTION, Role.CONSENSUS)], tail=50)

    command = runner.commands[0]
    assert command.count("-f") == 3
    assert command[-3:] == ["logs", "-f", "--tail=50"]
