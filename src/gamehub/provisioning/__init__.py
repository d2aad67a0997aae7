"""Credential and endpoint provisioning."""

from gamehub.provisioning.credentials import generate_secret
from gamehub.provisioning.endpoints import EndpointAssignment, assign_endpoint_address
from gamehub.provisioning.ports import PortArena, make_bind_probe
from gamehub.provisioning.provisioner import Provisioner, ProvisioningResult

__all__ = [
    "EndpointAssignment",
    "PortArena",
    "Provisioner",
    "ProvisioningResult",
    "assign_endpoint_address",
    "generate_secret",
    "make_bind_probe",
]
