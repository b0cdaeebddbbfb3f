"""Broadcasting validator deposits to the deposit contract."""

import json
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional, Sequence, Union

import requests
from eth_utils import from_wei, is_hex, is_hex_address, remove_0x_prefix, to_wei
from web3.exceptions import Web3Exception

from .config import BroadcastConfig
from .errors import (
    ConfigMissing,
    InvalidKey,
    OperatorAbort,
    RpcUnavailable,
    ValidationError,
)
from .models import BroadcastSummary, DepositOutcome, DepositRecord, DepositStatus
from .wallet import DEPOSIT_AMOUNT_ETHER, DepositWallet

logger = logging.getLogger(__name__)

# Errors a single send may raise without invalidating the rest of the batch.
SEND_ERRORS = (Web3Exception, ValueError, requests.RequestException)


def load_deposits(path: Union[str, Path]) -> list[DepositRecord]:
    """Read a deposits file produced by ``lighthouse validator-manager create``."""
    path = Path(path)
    if not path.is_file():
        raise ConfigMissing(path, "deposits file")
    try:
        with open(path, "r") as f:
            entries = json.load(f)
    except json.JSONDecodeError as e:
        raise ValidationError(f"{path} is not valid JSON: {e}") from e
    if not isinstance(entries, list) or not all(isinstance(e, dict) for e in entries):
        raise ValidationError(f"{path} must contain a JSON array of objects")
    return [DepositRecord.from_dict(entry) for entry in entries]


def normalize_private_key(key: str) -> str:
    """Return ``0x`` + 64 hex chars, or raise InvalidKey."""
    stripped = remove_0x_prefix((key or "").strip())
    if len(stripped) != 64 or not is_hex(stripped):
        raise InvalidKey("private key must be 32 bytes of hex (64 characters)")
    return "0x" + stripped.lower()


@dataclass
class BalanceCheck:
    address: str
    required_wei: int
    balance_wei: Optional[int]

    @property
    def known(self) -> bool:
        return self.balance_wei is not None

    @property
    def sufficient(self) -> bool:
        return self.known and self.balance_wei >= self.required_wei

    def describe(self) -> str:
        required = from_wei(self.required_wei, "ether")
        if not self.known:
            return f"balance of {self.address} unknown, {required} required"
        balance = from_wei(self.balance_wei, "ether")
        return f"balance of {self.address} is {balance}, {required} required"


class DepositBroadcaster:
    def __init__(
        self,
        config: BroadcastConfig,
        wallet_factory: Callable[..., DepositWallet] = DepositWallet,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self._wallet_factory = wallet_factory
        self._sleep = sleep

    def connect(self, sender: str, signing_key: str) -> DepositWallet:
        """Validate credentials and return a wallet bound to a live endpoint."""
        key = normalize_private_key(signing_key)
        if not is_hex_address(sender or ""):
            raise ValidationError(f"invalid sender address: {sender!r}")
        if not is_hex_address(self.config.deposit_contract or ""):
            raise ValidationError(
                f"invalid deposit contract address: {self.config.deposit_contract!r}"
            )

        try:
            wallet = self._wallet_factory(
                self.config.rpc_url, key, self.config.chain_id, timeout=self.config.rpc_timeout
            )
        except ValueError as e:
            # 32 bytes of hex can still fall outside the secp256k1 curve order
            raise InvalidKey(f"private key rejected: {e}") from e
        if wallet.address.lower() != sender.lower():
            raise ValidationError(
                f"sender {sender} does not match the signing key's address {wallet.address}"
            )

        logger.info(f"Checking RPC connection to {self.config.rpc_url}")
        try:
            block = wallet.block_number()
        except SEND_ERRORS as e:
            raise RpcUnavailable("rpc", f"{self.config.rpc_url}: {e}") from e
        logger.info(f"RPC connected, current block: {block}")
        return wallet

    def check_balance(self, wallet: DepositWallet, deposit_count: int) -> BalanceCheck:
        required = to_wei(DEPOSIT_AMOUNT_ETHER * deposit_count, "ether")
        try:
            balance = wallet.balance_wei()
        except SEND_ERRORS as e:
            logger.warning(f"Could not check balance: {e}")
            balance = None
        return BalanceCheck(address=wallet.address, required_wei=required, balance_wei=balance)

    def broadcast(
        self,
        deposits: Sequence[DepositRecord],
        sender: str,
        signing_key: str,
        dry_run: bool = False,
        confirm_balance: Optional[Callable[[BalanceCheck], bool]] = None,
        confirm_send: Optional[Callable[[], bool]] = None,
    ) -> BroadcastSummary:
        """Send one deposit transaction per record, continuing past failures.

        A low or unknown balance is a warning; ``confirm_balance`` may veto the
        run by returning False, as may ``confirm_send``, asked once every
        precondition has passed. Success means the node accepted the transaction,
        not that it was mined.
        """
        wallet = self.connect(sender, signing_key)

        balance = self.check_balance(wallet, len(deposits))
        if balance.sufficient:
            logger.info(balance.describe())
        else:
            logger.warning(f"Insufficient or unknown balance: {balance.describe()}")
            if confirm_balance is not None and not confirm_balance(balance):
                raise OperatorAbort("cancelled on insufficient balance")

        if confirm_send is not None and not confirm_send():
            raise OperatorAbort("cancelled by user")

        summary = BroadcastSummary(dry_run=dry_run)
        total = len(deposits)
        for index, deposit in enumerate(deposits):
            num = index + 1
            logger.info(f"[{num}/{total}] Processing deposit {deposit.short_pubkey}")

            try:
                deposit.validate()
            except ValidationError as e:
                logger.error(f"Deposit {num} is malformed, not sent: {e}")
                summary.per_deposit.append(DepositOutcome(
                    index=index, pubkey=deposit.pubkey,
                    status=DepositStatus.FAILED, error=str(e),
                ))
                continue

            if dry_run:
                logger.info(
                    f"[DRY-RUN] Would deposit {DEPOSIT_AMOUNT_ETHER} to "
                    f"{self.config.deposit_contract} for 0x{deposit.pubkey}"
                )
                summary.per_deposit.append(DepositOutcome(
                    index=index, pubkey=deposit.pubkey, status=DepositStatus.SUCCESS,
                ))
                continue

            try:
                tx_hash = wallet.send_deposit(deposit, self.config.deposit_contract)
            except SEND_ERRORS as e:
                logger.error(f"Failed to broadcast deposit {num}: {e}")
                summary.per_deposit.append(DepositOutcome(
                    index=index, pubkey=deposit.pubkey,
                    status=DepositStatus.FAILED, error=str(e),
                ))
                continue

            logger.info(f"Deposit {num}/{total} broadcast: {tx_hash}")
            summary.per_deposit.append(DepositOutcome(
                index=index, pubkey=deposit.pubkey,
                status=DepositStatus.SUCCESS, tx_hash=tx_hash,
            ))

            if num < total:
                logger.info(f"Waiting {self.config.inter_tx_delay:g}s before next deposit")
                self._sleep(self.config.inter_tx_delay)

        logger.info(f"Deposit summary: {summary.succeeded} succeeded, {summary.failed} failed")
        return summary
