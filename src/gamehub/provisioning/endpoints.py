"""Public endpoint address assignment."""

import secrets

from pydantic import BaseModel

from gamehub.config import AddressPool


class EndpointAssignment(BaseModel):
    """Public address assigned to an instance."""

    address: str
    label: str
    region: str

    model_config = {"frozen": True}


def assign_endpoint_address(pools: list[AddressPool]) -> EndpointAssignment:
    """Pick a random regional pool and a random host within it.

    Raises:
        ValueError: If no pools are configured.
    """
    if not pools:
        raise ValueError("No address pools configured")
    pool = secrets.choice(pools)
    host = pool.host_min + secrets.randbelow(pool.host_max - pool.host_min + 1)
    return EndpointAssignment(
        address=f"{pool.prefix}.{host}",
        label=pool.label,
        region=pool.region,
    )
