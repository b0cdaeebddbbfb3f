from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional

from eth_utils import is_hex, remove_0x_prefix

from .errors import ValidationError


class Role(str, Enum):
    EXECUTION = "execution"
    CONSENSUS = "consensus"
    VALIDATOR = "validator"

    @property
    def short_name(self) -> str:
        return _SHORT_NAMES[self]

    @classmethod
    def parse(cls, name: str) -> "Role":
        name = name.lower()
        for role, short in _SHORT_NAMES.items():
            if name in (role.value, short):
                return role
        raise ValidationError(f"unknown node role: {name}")


_SHORT_NAMES = {
    Role.EXECUTION: "el",
    Role.CONSENSUS: "cl",
    Role.VALIDATOR: "vc",
}

# Start order. Stop order is the reverse.
ROLE_ORDER = (Role.EXECUTION, Role.CONSENSUS, Role.VALIDATOR)


@dataclass(frozen=True)
class NodeProcessGroup:
    role: Role
    variant: Optional[str] = None

    def __str__(self) -> str:
        if self.variant:
            return f"{self.role.short_name}[{self.variant}]"
        return self.role.short_name


@dataclass
class GroupStatus:
    role: Role
    running: bool
    containers: list[str] = field(default_factory=list)
    detail: Optional[str] = None


@dataclass(frozen=True)
class ValidatorRecord:
    index: int
    pubkey: str
    voting_keystore: str = field(repr=False)
    voting_password: str = field(repr=False)


# name -> expected length in bytes
DEPOSIT_FIELDS = {
    "pubkey": 48,
    "withdrawal_credentials": 32,
    "signature": 96,
    "deposit_data_root": 32,
}


@dataclass(frozen=True)
class DepositRecord:
    """One entry of a deposits file, hex fields stored without ``0x``."""

    pubkey: Optional[str]
    withdrawal_credentials: Optional[str]
    signature: Optional[str]
    deposit_data_root: Optional[str]

    @classmethod
    def from_dict(cls, data: dict) -> "DepositRecord":
        values = {}
        for name in DEPOSIT_FIELDS:
            value = data.get(name)
            if isinstance(value, str) and value:
                value = remove_0x_prefix(value).lower()
            else:
                value = None
            values[name] = value
        return cls(**values)

    def validate(self) -> None:
        for name, length in DEPOSIT_FIELDS.items():
            value = getattr(self, name)
            if not value:
                raise ValidationError(f"deposit is missing {name}")
            if not is_hex(value) or len(value) != length * 2:
                raise ValidationError(
                    f"deposit {name} must be {length} bytes of hex, got {len(value)} chars"
                )

    def as_bytes(self, name: str) -> bytes:
        return bytes.fromhex(getattr(self, name))

    @property
    def short_pubkey(self) -> str:
        if not self.pubkey:
            return "<missing pubkey>"
        return f"0x{self.pubkey[:16]}...{self.pubkey[-8:]}"


class DepositStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class DepositOutcome:
    index: int
    pubkey: Optional[str]
    status: DepositStatus
    tx_hash: Optional[str] = None
    error: Optional[str] = None


@dataclass
class BroadcastSummary:
    dry_run: bool
    per_deposit: list[DepositOutcome] = field(default_factory=list)

    @property
    def succeeded(self) -> int:
        return sum(1 for o in self.per_deposit if o.status is DepositStatus.SUCCESS)

    @property
    def failed(self) -> int:
        return sum(1 for o in self.per_deposit if o.status is DepositStatus.FAILED)


@dataclass
class ProvisionResult:
    validators: list[ValidatorRecord]
    deposits: list[DepositRecord]
    deposits_path: Path
    skipped: list[int] = field(default_factory=list)
