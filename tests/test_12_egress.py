"""Tests for egress address rotation."""
import ipaddress

import httpx
import pytest

from tts_gateway.tts.egress import EgressRotator


class TestEgressRotator:

    @pytest.mark.parametrize("block", [None, "", "DISABLE", "disable"])
    def test_disabled(self, block):
        rotator = EgressRotator.from_block(block)
        assert rotator.enabled is False
        assert rotator.pick_source_address() is None

    def test_addresses_inside_block(self):
        rotator = EgressRotator.from_block("2001:db8:1234::/48")
        network = ipaddress.ip_network("2001:db8:1234::/48")

        addresses = {rotator.pick_source_address() for _ in range(50)}
        assert all(ipaddress.ip_address(a) in network for a in addresses)
        assert len(addresses) > 1

    def test_single_address_block(self):
        rotator = EgressRotator.from_block("2001:db8::1/128")
        assert rotator.pick_source_address() == "2001:db8::1"

    def test_host_bits_allowed(self):
        rotator = EgressRotator.from_block("2001:db8::5/64")
        assert str(rotator.network) == "2001:db8::/64"

    def test_invalid_block(self):
        with pytest.raises(ValueError):
            EgressRotator.from_block("not-a-network")

    def test_transport(self):
        assert isinstance(EgressRotator().transport(), httpx.HTTPTransport)
        assert isinstance(EgressRotator.from_block("::1/128").transport(), httpx.HTTPTransport)
