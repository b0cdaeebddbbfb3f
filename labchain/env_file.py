"""Host address detection and ``.env`` editing for node init."""

import ipaddress
import logging
import socket
from pathlib import Path
from typing import Optional, Union

import requests

from .errors import ConfigMissing

logger = logging.getLogger(__name__)

PUBLIC_IP_SERVICES = (
    "https://api.ipify.org",
    "https://ifconfig.me",
    "https://icanhazip.com",
    "https://ipinfo.io/ip",
)

ENR_ADDRESS_KEY = "BEACON_ENR_ADDRESS"


def is_ipv4(value: Optional[str]) -> bool:
    try:
        ipaddress.IPv4Address((value or "").strip())
    except ipaddress.AddressValueError:
        return False
    return True


def detect_public_ip(timeout: float = 5.0) -> Optional[str]:
    for service in PUBLIC_IP_SERVICES:
        try:
            resp = requests.get(service, timeout=timeout)
            resp.raise_for_status()
        except requests.RequestException as e:
            logger.debug(f"{service}: {e}")
            continue
        ip = resp.text.strip()
        if is_ipv4(ip):
            return ip
    return None


def detect_internal_ip() -> Optional[str]:
    # connecting a UDP socket sends nothing; it only selects the outbound interface
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sock:
            sock.connect(("1.1.1.1", 80))
            ip = sock.getsockname()[0]
    except OSError as e:
        logger.debug(f"internal IP detection failed: {e}")
        return None
    if is_ipv4(ip) and not ip.startswith("127."):
        return ip
    return None


def read_env_value(path: Union[str, Path], key: str) -> Optional[str]:
    path = Path(path)
    if not path.is_file():
        raise ConfigMissing(path, "env file")
    for line in path.read_text().splitlines():
        if line.startswith(f"{key}="):
            return line.split("=", 1)[1]
    return None


def set_env_value(path: Union[str, Path], key: str, value: str) -> Optional[str]:
    """Set ``key=value`` in an env file, returning the previous value if any."""
    path = Path(path)
    previous = read_env_value(path, key)

    lines = path.read_text().splitlines()
    if previous is None:
        lines.append(f"{key}={value}")
    else:
        lines = [f"{key}={value}" if l.startswith(f"{key}=") else l for l in lines]
    path.write_text("\n".join(lines) + "\n")
    return previous
