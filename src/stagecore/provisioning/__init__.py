"""Provisioning collaborators: the protocol, its config model, and the Terraform adapter."""

from stagecore.provisioning.base import Provisioner, ProvisioningConfig
from stagecore.provisioning.terraform import TerraformProvisioner

__all__ = ["Provisioner", "ProvisioningConfig", "TerraformProvisioner"]
