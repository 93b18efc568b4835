"""
Terraform CLI adapter.

Runs ``terraform`` (or ``tofu``) as a subprocess against the module
directory named in a ProvisioningConfig. Failures whose output matches a
known transient error are retried a bounded number of times; everything
else surfaces as ProvisioningError with the command, exit code and stderr.
"""

from __future__ import annotations

import json
import logging
import os
import re
import shutil
import subprocess
import time
from typing import Any, Dict, List, Mapping, Optional

from stagecore.contracts.timeouts import (
    DEFAULT_MAX_RETRIES,
    DEFAULT_RETRY_DELAY_S,
    TERRAFORM_APPLY_TIMEOUT_S,
    TERRAFORM_DESTROY_TIMEOUT_S,
    TERRAFORM_INIT_TIMEOUT_S,
    TERRAFORM_OUTPUT_TIMEOUT_S,
    TERRAFORM_RETRYABLE_ERRORS,
)
from stagecore.errors import ProvisioningError
from stagecore.outputs import Outputs
from stagecore.provisioning.base import ProvisioningConfig

logger = logging.getLogger(__name__)


def format_var(value: Any) -> str:
    """Render a variable value the way ``-var name=value`` expects it."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple, dict)):
        return json.dumps(value)
    if value is None:
        return "null"
    return str(value)


def format_args(config: ProvisioningConfig) -> List[str]:
    """Build the -var / -var-file / -no-color flags shared by apply and destroy."""
    args: List[str] = []
    for name in sorted(config.vars):
        args.extend(["-var", f"{name}={format_var(config.vars[name])}"])
    for var_file in config.var_files:
        args.extend(["-var-file", var_file])
    if config.no_color:
        args.append("-no-color")
    return args


class TerraformProvisioner:
    """
    Provision resources by shelling out to Terraform.

    Example:
        provisioner = TerraformProvisioner()
        outputs = provisioner.init_and_apply(config)
        print(outputs.get_str("public_ip"))
    """

    def __init__(
        self,
        binary: str = "terraform",
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_sleep_seconds: float = DEFAULT_RETRY_DELAY_S,
        retryable_errors: Optional[Mapping[str, str]] = None,
    ):
        """
        Initialize the adapter.

        Args:
            binary: Terraform executable name or path
            max_retries: Retries for failures matching a retryable error
            retry_sleep_seconds: Delay between retries
            retryable_errors: Regex -> description of transient failures
        """
        self.binary = binary
        self.max_retries = max_retries
        self.retry_sleep_seconds = retry_sleep_seconds
        self.retryable_errors = dict(
            TERRAFORM_RETRYABLE_ERRORS if retryable_errors is None else retryable_errors
        )

    @classmethod
    def from_config(cls, config) -> "TerraformProvisioner":
        """Build from a StageCoreConfig."""
        return cls(
            binary=config.terraform_binary,
            max_retries=config.terraform_max_retries,
            retry_sleep_seconds=config.terraform_retry_sleep_seconds,
        )

    # ------------------------------------------------------------------
    # Provisioner protocol
    # ------------------------------------------------------------------

    def init(self, config: ProvisioningConfig) -> str:
        """Run ``terraform init``."""
        args = ["init", "-upgrade=false", "-input=false"]
        if config.no_color:
            args.append("-no-color")
        return self._run_with_retry(config, args, TERRAFORM_INIT_TIMEOUT_S, "terraform init")

    def apply(self, config: ProvisioningConfig) -> str:
        """Run ``terraform apply`` without prompting."""
        args = ["apply", "-input=false", "-auto-approve", "-lock=true"] + format_args(config)
        return self._run_with_retry(config, args, TERRAFORM_APPLY_TIMEOUT_S, "terraform apply")

    def init_and_apply(self, config: ProvisioningConfig) -> Outputs:
        """Run ``terraform init`` then ``terraform apply`` and return the outputs."""
        self.init(config)
        self.apply(config)
        return self.outputs(config)

    def destroy(self, config: ProvisioningConfig) -> None:
        """Run ``terraform destroy`` without prompting."""
        args = ["destroy", "-input=false", "-auto-approve", "-lock=true"] + format_args(config)
        self._run_with_retry(config, args, TERRAFORM_DESTROY_TIMEOUT_S, "terraform destroy")

    def outputs(self, config: ProvisioningConfig) -> Outputs:
        """Return all outputs from ``terraform output -json``."""
        stdout = self._run(
            config,
            ["output", "-no-color", "-json"],
            TERRAFORM_OUTPUT_TIMEOUT_S,
            "terraform output",
        )
        try:
            payload = json.loads(stdout or "{}")
        except json.JSONDecodeError as e:
            raise ProvisioningError(f"terraform output returned invalid JSON: {e}") from e
        if not isinstance(payload, dict):
            raise ProvisioningError(
                f"terraform output returned {type(payload).__name__}, expected an object"
            )
        return Outputs.from_terraform_json(payload)

    def output(self, config: ProvisioningConfig, key: str) -> str:
        """Return one output; non-string values are rendered as JSON."""
        value = self.outputs(config)[key]
        if isinstance(value, str):
            return value
        return json.dumps(value)

    # ------------------------------------------------------------------
    # Subprocess handling
    # ------------------------------------------------------------------

    def _env(self, config: ProvisioningConfig) -> Dict[str, str]:
        env = os.environ.copy()
        env["TF_IN_AUTOMATION"] = "1"
        env.update(config.env_vars)
        return env

    def _run(
        self,
        config: ProvisioningConfig,
        args: List[str],
        timeout: float,
        context: str,
    ) -> str:
        """
        Run one terraform command.

        Returns:
            stdout of the command

        Raises:
            ProvisioningError: On missing binary, timeout, or non-zero exit
        """
        if not shutil.which(self.binary) and not os.path.isfile(self.binary):
            raise ProvisioningError(
                f"{self.binary} not found in PATH. Install Terraform or set STAGECORE_TERRAFORM_BINARY."
            )

        cmd = [self.binary] + args
        logger.info(f"Running {' '.join(cmd)} in {config.module_dir}")
        try:
            result = subprocess.run(
                cmd,
                cwd=config.module_dir,
                env=self._env(config),
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ProvisioningError(
                f"{context} timed out after {timeout} seconds", cmd=cmd
            ) from e
        except OSError as e:
            raise ProvisioningError(f"{context} could not be started: {e}", cmd=cmd) from e

        if result.stdout:
            logger.debug(result.stdout)

        if result.returncode != 0:
            raise ProvisioningError(
                f"{context} failed",
                cmd=cmd,
                returncode=result.returncode,
                stdout=result.stdout,
                stderr=result.stderr,
            )
        return result.stdout

    def _retryable_reason(self, error: ProvisioningError) -> Optional[str]:
        output = f"{error.stdout}\n{error.stderr}"
        for pattern, description in self.retryable_errors.items():
            if re.search(pattern, output, re.MULTILINE):
                return description
        return None

    def _run_with_retry(
        self,
        config: ProvisioningConfig,
        args: List[str],
        timeout: float,
        context: str,
    ) -> str:
        attempt = 0
        while True:
            try:
                return self._run(config, args, timeout, context)
            except ProvisioningError as e:
                reason = self._retryable_reason(e)
                if reason is None or attempt >= self.max_retries:
                    raise
                attempt += 1
                logger.warning(
                    f"{context} failed with a retryable error ({reason}); "
                    f"retry {attempt}/{self.max_retries} in {self.retry_sleep_seconds}s"
                )
                time.sleep(self.retry_sleep_seconds)
