"""Lightweight liveness and metric queries against running nodes."""

import logging
import time
from typing import Callable, Optional

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

logger = logging.getLogger(__name__)

PROBE_ERRORS = (Web3Exception, ValueError, KeyError, TypeError, requests.RequestException)


def execution_block_number(rpc_url: str, timeout: float = 5.0) -> int:
    web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    return web3.eth.block_number


def beacon_head_slot(beacon_url: str, timeout: float = 5.0) -> int:
    resp = requests.get(f"{beacon_url.rstrip('/')}/eth/v1/beacon/headers/head", timeout=timeout)
    resp.raise_for_status()
    return int(resp.json()["data"]["header"]["message"]["slot"])


def beacon_is_healthy(beacon_url: str, timeout: float = 5.0) -> bool:
    # 206 means syncing, which is enough for a validator client to attach
    resp = requests.get(f"{beacon_url.rstrip('/')}/eth/v1/node/health", timeout=timeout)
    return resp.status_code in (200, 206)


def execution_is_ready(rpc_url: str, timeout: float = 5.0) -> bool:
    execution_block_number(rpc_url, timeout)
    return True


def try_metric(query: Callable[[], int]) -> Optional[int]:
    """Run a metric query, returning None when the node does not answer."""
    try:
        return query()
    except PROBE_ERRORS as e:
        logger.debug(f"metric unavailable: {e}")
        return None


def wait_until(
    check: Callable[[], bool],
    timeout: float,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """Poll ``check`` until it returns True or ``timeout`` elapses."""
    deadline = clock() + timeout
    while True:
        try:
            if check():
                return True
        except PROBE_ERRORS as e:
            logger.debug(f"not ready yet: {e}")
        if clock() >= deadline:
            return False
        sleep(interval)
