"""Configuration for labchain tooling."""

from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional, Union

import yaml

from .errors import ConfigMissing, ValidationError
from .models import Role

ZERO_ADDRESS = "0x" + "00" * 20


@dataclass
class NodeConfig:
    """Where the node stacks live and how to reach them."""

    root: Path = Path(".")
    compose_files: dict = field(default_factory=lambda: {
        Role.EXECUTION: "EL/docker-compose.yml",
        Role.CONSENSUS: "CL/docker-compose.yml",
        Role.VALIDATOR: "VC/docker-compose.yml",
    })
    container_patterns: dict = field(default_factory=lambda: {
        Role.EXECUTION: r"reth.*",
        Role.CONSENSUS: r"lighthouse(?!-vc).*",
        Role.VALIDATOR: r"lighthouse-vc.*",
    })
    data_dirs: dict = field(default_factory=lambda: {
        Role.EXECUTION: "EL/data",
        Role.CONSENSUS: "CL/data",
        Role.VALIDATOR: "VC/data",
    })
    execution_rpc_url: str = "http://localhost:8545"
    beacon_api_url: str = "http://localhost:5052"
    cl_env_file: str = "CL/.env"
    readiness_timeout: float = 120.0
    readiness_interval: float = 2.0
    restart_delay: float = 2.0
    restart_all_delay: float = 3.0
    log_tail: int = 100
    probe_timeout: float = 5.0

    def path(self, relative: Union[str, Path]) -> Path:
        return self.root / relative

    def compose_file(self, role: Role) -> Path:
        return self.path(self.compose_files[role])

    def data_dir(self, role: Role) -> Path:
        return self.path(self.data_dirs[role])


@dataclass
class ProvisionConfig:
    output_dir: Path = Path("./output")
    managed_root: Path = Path("./managed-keystores")
    consensus_dir: Path = Path("./config/metadata")
    withdrawal_address: str = ZERO_ADDRESS
    count: int = 64
    first_index: int = 0
    image: str = "sigp/lighthouse:latest"
    mnemonic_path: Optional[Path] = None
    fee_recipient: Optional[str] = None


@dataclass
class BroadcastConfig:
    rpc_url: str = "http://localhost:8545"
    chain_id: int = 5222
    deposit_contract: str = "0x" + "54" * 20
    deposits_file: Path = Path("./output/deposits.json")
    inter_tx_delay: float = 2.0
    rpc_timeout: float = 10.0


@dataclass
class Config:
    node: NodeConfig = field(default_factory=NodeConfig)
    provision: ProvisionConfig = field(default_factory=ProvisionConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)


_ROLE_KEYED = ("compose_files", "container_patterns", "data_dirs")


def _coerce(section_cls, values: dict):
    """Build a config section from a YAML mapping, keeping defaults for absent keys."""
    known = {f.name: f for f in fields(section_cls)}
    unknown = set(values) - set(known)
    if unknown:
        raise ValidationError(
            f"unknown {section_cls.__name__} keys: {', '.join(sorted(unknown))}"
        )

    section = section_cls()
    updates = {}
    for name, value in values.items():
        default = getattr(section, name)
        if name in _ROLE_KEYED:
            merged = dict(default)
            for role_name, role_value in (value or {}).items():
                merged[Role.parse(role_name)] = role_value
            value = merged
        elif name.endswith(("_address", "_contract", "_recipient")):
            # YAML reads unquoted 0x... values as integers
            if value is not None and not isinstance(value, str):
                raise ValidationError(f"{name} must be a quoted string")
        elif isinstance(default, Path) or name.endswith(("_dir", "_root", "_path", "_file")):
            value = Path(value) if value is not None else None
        elif isinstance(default, bool):
            value = bool(value)
        elif isinstance(default, int):
            value = int(value)
        elif isinstance(default, float):
            value = float(value)
        updates[name] = value
    return replace(section, **updates)


def load_config(path: Optional[Union[str, Path]] = None) -> Config:
    """Load a YAML config file with ``node``, ``provision`` and ``broadcast`` sections."""
    if path is None:
        return Config()

    path = Path(path)
    if not path.is_file():
        raise ConfigMissing(path, "config file")

    with open(path, "r") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValidationError(f"{path}: expected a mapping at the top level")

    sections = {"node": NodeConfig, "provision": ProvisionConfig, "broadcast": BroadcastConfig}
    unknown = set(raw) - set(sections)
    if unknown:
        raise ValidationError(f"{path}: unknown sections: {', '.join(sorted(unknown))}")

    config = Config()
    for name, section_cls in sections.items():
        if raw.get(name):
            setattr(config, name, _coerce(section_cls, raw[name]))

    # node paths are relative to the config file unless given absolute
    if "root" not in (raw.get("node") or {}):
        config.node.root = path.parent
    return config
