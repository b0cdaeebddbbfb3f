import logging
import time
from typing import Callable, Optional

from .config import NodeConfig
from .errors import LabchainError, ReadinessTimeout
from .models import ROLE_ORDER, GroupStatus, NodeProcessGroup, Role
from .probes import (
    beacon_head_slot,
    beacon_is_healthy,
    execution_block_number,
    execution_is_ready,
    try_metric,
    wait_until,
)
from .runtime import ComposeRuntime

logger = logging.getLogger(__name__)


class NodeLifecycleManager():
    """Start, stop and inspect the execution, consensus and validator stacks.

    Current state is read from the container runtime on every call. Roles are
    started in dependency order, each one gated on the previous one answering
    its API, and stopped in reverse.
    """

    def __init__(self, config: NodeConfig, runtime: Optional[ComposeRuntime] = None,
                 readiness: Optional[dict] = None,
                 sleep: Callable[[float], None] = time.sleep):
        self.config = config
        self.runtime = runtime or ComposeRuntime(config)
        self._sleep = sleep
        if readiness is None:
            readiness = {
                Role.EXECUTION: lambda: execution_is_ready(config.execution_rpc_url, config.probe_timeout),
                Role.CONSENSUS: lambda: beacon_is_healthy(config.beacon_api_url, config.probe_timeout),
            }
        self.readiness = readiness

    def is_running(self, role: Role) -> bool:
        return bool(self.runtime.running_containers(role))

    def start(self, role: Role, variant: Optional[str] = None) -> bool:
        """Start a role; returns False when it was already running."""
        group = NodeProcessGroup(role, variant)
        if self.is_running(role):
            logger.info(f"{group} is already running")
            return False
        logger.info(f"Starting {group}...")
        self.runtime.up(group)
        logger.info(f"{group} started")
        return True

    def wait_ready(self, role: Role) -> None:
        check = self.readiness.get(role)
        if check is None:
            return
        logger.info(f"Waiting for {role.value} to become ready...")
        ready = wait_until(
            check,
            timeout=self.config.readiness_timeout,
            interval=self.config.readiness_interval,
            sleep=self._sleep,
        )
        if not ready:
            raise ReadinessTimeout(role.value, self.config.readiness_timeout)
        logger.info(f"{role.value} is ready")

    def start_all(self, variant: Optional[str] = None) -> dict:
        logger.info("Starting all nodes...")
        started = {}
        for role in ROLE_ORDER:
            started[role] = self.start(role, variant)
            if role is not ROLE_ORDER[-1]:
                self.wait_ready(role)
        logger.info("All nodes started")
        return started

    def stop(self, role: Role, variant: Optional[str] = None) -> bool:
        """Stop a role; returns False (with a warning) when it was not running.

        ``down`` runs either way so exited containers and the role's network are removed.
        """
        group = NodeProcessGroup(role, variant)
        was_running = self.is_running(role)
        if was_running:
            logger.info(f"Stopping {group}...")
        else:
            logger.warning(f"{group} was not running, removing leftover containers")
        self.runtime.down(group)
        if was_running:
            logger.info(f"{group} stopped")
        return was_running

    def stop_all(self, variant: Optional[str] = None) -> dict:
        logger.info("Stopping all nodes...")
        stopped = {}
        for role in reversed(ROLE_ORDER):
            try:
                stopped[role] = self.stop(role, variant)
            except LabchainError as e:
                logger.error(f"Failed to stop {role.value}: {e}")
                stopped[role] = False
        logger.info("All nodes stopped")
        return stopped

    def restart(self, role: Role, variant: Optional[str] = None) -> None:
        logger.info(f"Restarting {role.short_name}...")
        self.stop(role, variant)
        self._sleep(self.config.restart_delay)
        self.start(role, variant)

    def restart_all(self, variant: Optional[str] = None) -> None:
        logger.info("Restarting all nodes...")
        self.stop_all(variant)
        self._sleep(self.config.restart_all_delay)
        self.start_all(variant)

    def status(self) -> dict:
        statuses = {}
        for role in ROLE_ORDER:
            containers = self.runtime.running_containers(role)
            status = GroupStatus(role=role, running=bool(containers), containers=containers)
            if containers:
                status.detail = self._metric(role)
            statuses[role] = status
        return statuses

    def _metric(self, role: Role) -> Optional[str]:
        timeout = self.config.probe_timeout
        if role is Role.EXECUTION:
            block = try_metric(lambda: execution_block_number(self.config.execution_rpc_url, timeout))
            return None if block is None else f"block number: {block}"
        if role is Role.CONSENSUS:
            slot = try_metric(lambda: beacon_head_slot(self.config.beacon_api_url, timeout))
            return None if slot is None else f"head slot: {slot}"
        return None

    def logs(self, role: Optional[Role] = None, variant: Optional[str] = None,
             tail: Optional[int] = None) -> int:
        """Follow logs of one role, or of every role when ``role`` is None."""
        roles = ROLE_ORDER if role is None else (role,)
        groups = [NodeProcessGroup(r, variant) for r in roles]
        if tail is None:
            tail = self.config.log_tail if role is not None else min(self.config.log_tail, 50)
        return self.runtime.follow_logs(groups, tail)
