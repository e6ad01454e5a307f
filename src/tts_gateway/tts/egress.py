"""
Egress Address Rotation.

The gTTS endpoint has no API key and rate-limits per source address. When
the host owns a routed IPv6 block (a /64 or /48 is typical), every
outbound call can present a different source address by binding the
connection to a random address from that block.

Usage:
    rotator = EgressRotator.from_block("2001:db8:1234::/48")
    addr = rotator.pick_source_address()      # "2001:db8:1234:9f3a:..."
    transport = rotator.transport()           # httpx transport bound to a fresh address

With no block configured the rotator is a no-op: pick_source_address()
returns None and transport() returns a plain transport, so callers never
special-case the "disabled" configuration.
"""
from __future__ import annotations

import ipaddress
import random
from typing import Optional, Union

import httpx

from tts_gateway.core.logging import debug, get_logger

_LOG = get_logger("tts-gateway.egress")

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class EgressRotator:
    """
    Picks outbound source addresses uniformly at random from a network.

    Stateless apart from the immutable network and an OS-backed random
    source, so it is safe to share between threads.
    """

    def __init__(self, network: Optional[IPNetwork] = None):
        self._network = network
        self._random = random.SystemRandom()

    @classmethod
    def from_block(cls, block: Optional[str]) -> "EgressRotator":
        """
        Build a rotator from a CIDR string.

        Args:
            block: e.g. "2001:db8::/48". None, "" and "DISABLE" disable rotation.

        Raises:
            ValueError: If the block is not a valid network.
        """
        if not block or block.strip().upper() == "DISABLE":
            return cls(None)
        return cls(ipaddress.ip_network(block.strip(), strict=False))

    @property
    def enabled(self) -> bool:
        return self._network is not None

    @property
    def network(self) -> Optional[IPNetwork]:
        return self._network

    def pick_source_address(self) -> Optional[str]:
        """
        Pick one address from the pool.

        Returns:
            The address as a string, or None when no pool is configured
            (use the system's default egress).
        """
        if self._network is None:
            return None

        offset = self._random.randrange(self._network.num_addresses)
        address = str(self._network.network_address + offset)
        debug(_LOG, "egress_address", address=address)
        return address

    def transport(self, **kwargs) -> httpx.HTTPTransport:
        """
        Build an httpx transport bound to a freshly picked source address.

        Extra keyword arguments are passed to httpx.HTTPTransport.
        """
        address = self.pick_source_address()
        if address is not None:
            kwargs["local_address"] = address
        return httpx.HTTPTransport(**kwargs)
