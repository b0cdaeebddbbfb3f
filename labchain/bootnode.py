"""Read the bootnode records follower nodes need to join the network."""

import json

import requests
from web3 import Web3
from web3.exceptions import Web3Exception

from .errors import ExternalToolFailure


def get_bootnode_enode(rpc_url: str, timeout: float = 10.0) -> str:
    """Return the ``enode://`` record of the execution node at ``rpc_url``."""
    web3 = Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
    try:
        response = web3.provider.make_request("admin_nodeInfo", [])
    except (Web3Exception, requests.RequestException) as e:
        raise ExternalToolFailure("admin_nodeInfo", f"{rpc_url}: {e}") from e

    result = response.get("result") or {}
    enode = result.get("enode") if isinstance(result, dict) else None
    if not enode:
        raise ExternalToolFailure(
            "admin_nodeInfo",
            f"unable to extract enode from {rpc_url}. Full response:\n{json.dumps(dict(response))}",
        )
    return enode


def get_bootnode_enr(beacon_url: str, timeout: float = 10.0) -> str:
    """Return the ENR of the beacon node at ``beacon_url``."""
    url = f"{beacon_url.rstrip('/')}/eth/v1/node/identity"
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
        body = resp.json()
    except (requests.RequestException, ValueError) as e:
        raise ExternalToolFailure("node identity", f"{url}: {e}") from e

    enr = (body.get("data") or {}).get("enr") if isinstance(body, dict) else None
    if not enr:
        raise ExternalToolFailure(
            "node identity", f"unable to extract ENR from {url}. Full response:\n{resp.text}"
        )
    return enr
