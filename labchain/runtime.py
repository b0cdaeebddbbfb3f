"""Docker Compose backed process groups for the node roles."""

import logging
import re
import shutil
import subprocess
from typing import Callable, Sequence

import docker

from .config import NodeConfig
from .errors import ConfigMissing, DependencyMissing, ExternalToolFailure
from .models import NodeProcessGroup, Role

logger = logging.getLogger(__name__)

DOCKER_REMEDIATION = "install Docker with the compose plugin: https://docs.docker.com/engine/install/"


class ComposeRuntime:
    """Runs ``docker compose`` per role and reads live container state.

    Nothing is cached: every query goes to the Docker daemon.
    """

    def __init__(self, config: NodeConfig, docker_client=None,
                 runner: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self.config = config
        self._docker = docker_client
        self._run = runner

    @property
    def docker(self):
        if self._docker is None:
            try:
                self._docker = docker.from_env()
            except docker.errors.DockerException as e:
                raise DependencyMissing("docker", f"daemon unreachable: {e}") from e
        return self._docker

    def check_dependencies(self) -> None:
        if shutil.which("docker") is None:
            raise DependencyMissing("docker", DOCKER_REMEDIATION)

    def compose_command(self, groups: Sequence[NodeProcessGroup]) -> list[str]:
        command = ["docker", "compose"]
        for group in groups:
            compose_file = self.config.compose_file(group.role)
            if not compose_file.is_file():
                raise ConfigMissing(compose_file, f"{group.role.value} compose file")
            command += ["-f", str(compose_file)]
        for variant in sorted({g.variant for g in groups if g.variant}):
            command += ["--profile", variant]
        return command

    def running_containers(self, role: Role) -> list[str]:
        pattern = re.compile(self.config.container_patterns[role])
        try:
            containers = self.docker.containers.list(filters={"status": "running"})
        except docker.errors.APIError as e:
            raise ExternalToolFailure("docker ps", str(e)) from e
        return sorted(c.name for c in containers if pattern.fullmatch(c.name))

    def up(self, group: NodeProcessGroup) -> None:
        self._compose([group], ["up", "-d"])

    def down(self, group: NodeProcessGroup) -> None:
        self._compose([group], ["down"])

    def follow_logs(self, groups: Sequence[NodeProcessGroup], tail: int) -> int:
        """Attach to the log stream until the process exits or is interrupted."""
        self.check_dependencies()
        command = self.compose_command(groups) + ["logs", "-f", f"--tail={tail}"]
        return self._run(command, check=False).returncode

    def _compose(self, groups: Sequence[NodeProcessGroup], args: list[str]) -> str:
        self.check_dependencies()
        command = self.compose_command(groups) + args
        logger.debug(f"running {' '.join(command)}")
        result = self._run(command, capture_output=True, text=True, check=False)
        output = (result.stdout or "") + (result.stderr or "")
        if result.returncode != 0:
            raise ExternalToolFailure(" ".join(command[:2] + args), output.strip(), result.returncode)
        return output
