"""Tests for endpoint address assignment."""

import pytest

from gamehub.config import AddressPool
from gamehub.provisioning.endpoints import assign_endpoint_address


class TestAssignEndpointAddress:
    def test_address_within_pool(self) -> None:
        pools = [AddressPool(label="eu-1", prefix="10.20.30", region="eu", host_min=10, host_max=20)]

        for _ in range(200):
            endpoint = assign_endpoint_address(pools)
            prefix, _, host = endpoint.address.rpartition(".")
            assert prefix == "10.20.30"
            assert 10 <= int(host) <= 20
            assert endpoint.label == "eu-1"
            assert endpoint.region == "eu"

    def test_picks_across_pools(self) -> None:
        pools = [
            AddressPool(label="a", prefix="10.0.0", region="ra", host_min=1, host_max=1),
            AddressPool(label="b", prefix="10.0.1", region="rb", host_min=1, host_max=1),
        ]
        labels = {assign_endpoint_address(pools).label for _ in range(200)}
        assert labels == {"a", "b"}

    def test_no_pools(self) -> None:
        with pytest.raises(ValueError):
            assign_endpoint_address([])
