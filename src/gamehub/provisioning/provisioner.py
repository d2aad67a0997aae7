"""Credential and endpoint provisioning."""

import logging
from datetime import datetime

from pydantic import BaseModel

from gamehub.config import ProvisioningConfig, RuntimeConfig
from gamehub.core.models import utc_now
from gamehub.logging_schema import LogEvent
from gamehub.provisioning.credentials import generate_secret
from gamehub.provisioning.endpoints import assign_endpoint_address
from gamehub.provisioning.ports import PortArena

logger = logging.getLogger(__name__)


class ProvisioningResult(BaseModel):
    """Network identity and credential for a new instance.

    Contains the secret; returned to the caller exactly once.
    """

    instance_id: str
    port: int
    address: str
    address_label: str
    region: str
    secret: str
    rcon_port: int
    provisioned_at: datetime

    model_config = {"frozen": True}


class Provisioner:
    """Allocates port, secret and public address for an instance."""

    def __init__(
        self,
        arena: PortArena,
        config: ProvisioningConfig,
        runtime_config: RuntimeConfig,
    ) -> None:
        self._arena = arena
        self._config = config
        self._runtime_config = runtime_config

    @property
    def arena(self) -> PortArena:
        return self._arena

    def generate_secret(self) -> str:
        return generate_secret(self._config.secret_length, self._config.min_entropy_bits)

    async def provision(self, instance_id: str, owner_user_id: str) -> ProvisioningResult:
        """Reserve a port, then generate secret and address.

        The port is released again if a later step fails.

        Raises:
            PortsExhaustedError: If no port is available.
        """
        port = await self._arena.allocate(instance_id)
        try:
            secret = self.generate_secret()
            endpoint = assign_endpoint_address(self._config.address_pools)
        except Exception as exc:
            await self._arena.release(port, instance_id=instance_id)
            logger.error(
                "Provisioning failed after port reservation",
                extra={
                    "event": LogEvent.PROVISION_FAILED,
                    "instance_id": instance_id,
                    "port": port,
                    "error": str(exc),
                },
            )
            raise

        logger.info(
            "Instance provisioned",
            extra={
                "event": LogEvent.PROVISIONED,
                "instance_id": instance_id,
                "owner_user_id": owner_user_id,
                "port": port,
                "region": endpoint.region,
            },
        )
        return ProvisioningResult(
            instance_id=instance_id,
            port=port,
            address=endpoint.address,
            address_label=endpoint.label,
            region=endpoint.region,
            secret=secret,
            rcon_port=self._runtime_config.rcon_port,
            provisioned_at=utc_now(),
        )

    async def allocate_port(self, instance_id: str) -> int:
        return await self._arena.allocate(instance_id)

    async def release_port(
        self, port: int, instance_id: str, quarantine: bool = False
    ) -> bool:
        return await self._arena.release(port, instance_id=instance_id, quarantine=quarantine)
