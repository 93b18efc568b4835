"""
Provisioner protocol and configuration model.

The provisioning tool is a black box to the stage engine: it receives a
ProvisioningConfig and either returns outputs or raises ProvisioningError.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Dict, List, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

if TYPE_CHECKING:
    from stagecore.outputs import Outputs


class ProvisioningConfig(BaseModel):
    """
    Parameters for one provisioning run.

    Persisted by the deploy stage so teardown can rebuild it, even in a
    later process invocation.
    """
    model_config = ConfigDict(extra="forbid")

    module_dir: str = Field(..., description="Directory holding the infrastructure module")
    vars: Dict[str, Any] = Field(default_factory=dict, description="Input variables (strings, numbers)")
    env_vars: Dict[str, str] = Field(default_factory=dict, description="Extra environment for the tool")
    var_files: List[str] = Field(default_factory=list, description="Variable files passed to the tool")
    no_color: bool = Field(default=True, description="Disable colored tool output")


@runtime_checkable
class Provisioner(Protocol):
    """Operations the stage engine needs from an infrastructure tool."""

    def init_and_apply(self, config: ProvisioningConfig) -> "Outputs":
        """Create or update the resources described by ``config``."""
        ...

    def destroy(self, config: ProvisioningConfig) -> None:
        """Destroy every resource created for ``config``."""
        ...

    def outputs(self, config: ProvisioningConfig) -> "Outputs":
        """Return all declared outputs."""
        ...

    def output(self, config: ProvisioningConfig, key: str) -> str:
        """Return one declared output as a string."""
        ...
