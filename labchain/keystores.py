"""Validator keystore generation with ``lighthouse validator-manager``.

The Lighthouse container derives the keys and writes ``validators.json`` and
``deposits.json`` to the output directory. This module then lays the
keystores out the way the Lighthouse validator client reads them::

    <managed_root>/validators/0x<pubkey>/voting-keystore.json
    <managed_root>/secrets/0x<pubkey>

Existing key material is never overwritten.
"""

import json
import logging
import os
from pathlib import Path
from typing import Optional, Union

import docker
from docker.types import Mount
from eth_utils import is_hex, is_hex_address, remove_0x_prefix

from .config import ProvisionConfig
from .deposits import load_deposits
from .errors import (
    ConfigMissing,
    DependencyMissing,
    DuplicateValidator,
    ProvisionFailed,
    ValidationError,
)
from .models import ProvisionResult, ValidatorRecord

logger = logging.getLogger(__name__)

KEYSTORE_FILENAME = "voting-keystore.json"
MANIFEST_FILENAME = "validators.json"
DEPOSITS_FILENAME = "deposits.json"

# owner read-only
SECRET_FILE_MODE = 0o400


def normalize_pubkey(raw: str) -> str:
    """Lower-case hex with a single ``0x`` prefix, whatever the input had."""
    stripped = remove_0x_prefix(raw.strip()).lower()
    if not stripped or not is_hex(stripped):
        raise ValidationError(f"pubkey is not hex: {raw!r}")
    return "0x" + stripped


def _write_secret(path: Path, content: str) -> None:
    # O_EXCL: fail rather than clobber a file created since the duplicate scan
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content + "\n")
    os.chmod(path, SECRET_FILE_MODE)


class KeystoreProvisioner:
    def __init__(self, config: ProvisionConfig, docker_client=None):
        self.config = config
        self._docker = docker_client

    @property
    def docker(self):
        if self._docker is None:
            try:
                self._docker = docker.from_env()
            except docker.errors.DockerException as e:
                raise DependencyMissing(
                    "docker", f"is the Docker daemon running? {e}"
                ) from e
        return self._docker

    def provision(
        self,
        count: int,
        first_index: int,
        withdrawal_address: str,
        output_dir: Union[str, Path],
        consensus_dir: Union[str, Path],
    ) -> ProvisionResult:
        if count <= 0:
            raise ValidationError(f"count must be positive, got {count}")
        if first_index < 0:
            raise ValidationError(f"first index must not be negative, got {first_index}")
        if not is_hex_address(withdrawal_address or ""):
            raise ValidationError(f"invalid withdrawal address: {withdrawal_address!r}")

        consensus_dir = Path(consensus_dir)
        if not consensus_dir.is_dir():
            raise ConfigMissing(consensus_dir, "consensus metadata")
        mnemonic_path = self.config.mnemonic_path
        if mnemonic_path is not None and not Path(mnemonic_path).is_file():
            raise ConfigMissing(mnemonic_path, "mnemonic file")

        output_dir = Path(output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)

        logger.info(f"Creating {count} validators (first index {first_index})")
        self.run_validator_manager(count, first_index, withdrawal_address, output_dir, consensus_dir)

        manifest = self.read_manifest(output_dir / MANIFEST_FILENAME)
        if len(manifest) != count:
            logger.warning(
                f"validator-manager returned {len(manifest)} entries, {count} were requested"
            )
        validators, skipped = self.extract(manifest, first_index)
        deposits_path = output_dir / DEPOSITS_FILENAME
        deposits = load_deposits(deposits_path)

        logger.info(
            f"Finished: {len(validators)} validators ready under {self.config.managed_root}"
        )
        logger.info(f"Deposits located at {deposits_path}")
        return ProvisionResult(
            validators=validators,
            deposits=deposits,
            deposits_path=deposits_path,
            skipped=skipped,
        )

    def run_validator_manager(self, count, first_index, withdrawal_address,
                              output_dir: Path, consensus_dir: Path) -> None:
        image = self.config.image
        try:
            self.docker.images.get(image)
        except docker.errors.ImageNotFound:
            logger.info(f"Pulling {image}...")
            try:
                self.docker.images.pull(image)
            except docker.errors.APIError as e:
                raise ProvisionFailed("docker pull", str(e)) from e
        except docker.errors.APIError as e:
            raise ProvisionFailed("docker image inspect", str(e)) from e

        mounts = [
            Mount(target="/output", source=str(output_dir.resolve()), type="bind"),
            Mount(target="/consensus", source=str(consensus_dir.resolve()), type="bind", read_only=True),
        ]
        command = [
            "lighthouse", "validator-manager", "create",
            "--testnet-dir", "/consensus",
            "--first-index", str(first_index),
            "--count", str(count),
            "--eth1-withdrawal-address", withdrawal_address,
            "--output-path", "/output",
        ]
        if self.config.mnemonic_path is not None:
            mnemonic = Path(self.config.mnemonic_path).resolve()
            mounts.append(Mount(target="/mnemonic", source=str(mnemonic.parent), type="bind", read_only=True))
            command += ["--mnemonic-path", f"/mnemonic/{mnemonic.name}"]
        if self.config.fee_recipient:
            command += ["--suggested-fee-recipient", self.config.fee_recipient]

        try:
            output = self.docker.containers.run(
                image=image,
                command=command,
                mounts=mounts,
                remove=True,
                detach=False,
                stdout=True,
                stderr=True,
            )
        except docker.errors.ContainerError as e:
            stderr = e.stderr.decode("utf-8", "replace") if e.stderr else str(e)
            raise ProvisionFailed("lighthouse validator-manager", stderr, e.exit_status) from e
        except docker.errors.APIError as e:
            raise ProvisionFailed("lighthouse validator-manager", str(e)) from e

        if output:
            logger.debug(f"validator-manager output:\n{output.decode('utf-8', 'replace')}")

    def read_manifest(self, path: Path) -> list:
        if not path.is_file():
            raise ConfigMissing(path, "validator manifest")
        try:
            with open(path, "r") as f:
                manifest = json.load(f)
        except json.JSONDecodeError as e:
            raise ValidationError(f"{path} is not valid JSON: {e}") from e
        if not isinstance(manifest, list):
            raise ValidationError(f"{path} must contain a JSON array")
        return manifest

    def extract(self, manifest: list, first_index: int) -> tuple[list[ValidatorRecord], list[int]]:
        """Write keystores and passwords for every manifest entry.

        All pubkeys are checked for collisions before the first file is written.
        """
        records = []
        skipped = []
        for position, entry in enumerate(manifest):
            index = first_index + position
            pubkey = self._entry_pubkey(entry)
            if pubkey is None:
                logger.warning(f"Validator {index} has no usable pubkey in the manifest, skipping")
                skipped.append(index)
                continue
            records.append(ValidatorRecord(
                index=index,
                pubkey=pubkey,
                voting_keystore=entry["voting_keystore"],
                voting_password=str(entry.get("voting_keystore_password") or ""),
            ))

        self._check_duplicates(records)

        keys_dir, secrets_dir = self.keys_dir, self.secrets_dir
        keys_dir.mkdir(parents=True, exist_ok=True)
        secrets_dir.mkdir(parents=True, exist_ok=True)

        for record in records:
            validator_dir = keys_dir / record.pubkey
            validator_dir.mkdir(exist_ok=True)
            _write_secret(validator_dir / KEYSTORE_FILENAME, record.voting_keystore)
            _write_secret(secrets_dir / record.pubkey, record.voting_password)
            logger.info(f"Extracted pubkey {record.pubkey}")
        return records, skipped

    @property
    def keys_dir(self) -> Path:
        return Path(self.config.managed_root) / "validators"

    @property
    def secrets_dir(self) -> Path:
        return Path(self.config.managed_root) / "secrets"

    def _entry_pubkey(self, entry) -> Optional[str]:
        if not isinstance(entry, dict) or not isinstance(entry.get("voting_keystore"), str):
            return None
        try:
            keystore = json.loads(entry["voting_keystore"])
        except json.JSONDecodeError:
            return None
        raw = keystore.get("pubkey") if isinstance(keystore, dict) else None
        if not raw or not isinstance(raw, str):
            return None
        try:
            return normalize_pubkey(raw)
        except ValidationError:
            return None

    def _check_duplicates(self, records: list[ValidatorRecord]) -> None:
        seen = set()
        for record in records:
            if record.pubkey in seen:
                raise DuplicateValidator(record.pubkey, "the same batch")
            seen.add(record.pubkey)
            for path in (self.keys_dir / record.pubkey / KEYSTORE_FILENAME,
                         self.secrets_dir / record.pubkey):
                if path.exists():
                    raise DuplicateValidator(record.pubkey, path)
