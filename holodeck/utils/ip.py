"""Public IP detection for security group ingress rules."""

from __future__ import annotations

import ipaddress
from typing import Final

import httpx
from loguru import logger

from holodeck.exceptions import PublicIPError

IP_SERVICES: Final = (
    "https://api.ipify.org?format=text",
    "https://ifconfig.me/ip",
    "https://icanhazip.com",
    "https://ident.me",
)
IP_SERVICE_TIMEOUT: Final = 5.0
USER_AGENT: Final = "Holodeck"


def is_public_ipv4(value: str) -> bool:
    try:
        ip = ipaddress.ip_address(value)
    except ValueError:
        return False
    if ip.version != 4:
        return False
    return not (
        ip.is_private
        or ip.is_loopback
        or ip.is_link_local
        or ip.is_multicast
        or ip.is_reserved
        or ip.is_unspecified
    )


def _query(client: httpx.Client, url: str) -> str:
    response = client.get(url)
    response.raise_for_status()
    ip = response.text.strip()
    if not is_public_ipv4(ip):
        raise PublicIPError(f"invalid public IP {ip!r} returned by {url}")
    return ip


def get_ip_address(services: tuple[str, ...] = IP_SERVICES) -> str:
    """Detect the public IPv4 address of this host.

    Services are queried in order and the first valid answer wins.

    Returns:
        The address as a single-host CIDR, e.g. ``"203.0.113.7/32"``.

    Raises:
        PublicIPError: If no service returned a valid public IPv4 address.
    """
    failures: list[str] = []
    with httpx.Client(timeout=IP_SERVICE_TIMEOUT, headers={"User-Agent": USER_AGENT}) as client:
        for url in services:
            try:
                ip = _query(client, url)
            except (httpx.HTTPError, PublicIPError) as e:
                logger.debug(f"Public IP lookup via {url} failed: {e}")
                failures.append(f"{url}: {e}")
                continue
            logger.debug(f"Detected public IP {ip} via {url}")
            return f"{ip}/32"

    raise PublicIPError(f"failed to detect public IP address: {'; '.join(failures)}")
